"""Network-facing adapters."""
