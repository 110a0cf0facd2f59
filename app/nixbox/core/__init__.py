"""Core reconciliation engine for nixbox."""
