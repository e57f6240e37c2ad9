"""Outpost - provision, reconcile and operate workspace cloud instances."""

__version__ = "0.1.0"
