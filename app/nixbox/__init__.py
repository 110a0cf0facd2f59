"""nixbox - declarative per-project Nix package sets."""

__version__ = "0.1.0"
