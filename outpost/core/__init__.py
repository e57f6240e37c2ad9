"""Core domain: records, stores, vault and instance orchestration."""
