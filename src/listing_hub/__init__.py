"""Reconcile scraped real-estate listings into a normalized property catalog."""

__version__ = "0.1.0"
