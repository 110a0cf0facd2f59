"""Built-in plugin definitions."""
