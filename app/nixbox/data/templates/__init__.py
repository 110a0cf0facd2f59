"""File templates rendered with string.Template."""
