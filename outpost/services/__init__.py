"""Services that reach into running instances over SSH."""
