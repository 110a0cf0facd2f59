"""Bundled data files for nixbox."""
