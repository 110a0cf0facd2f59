"""Process execution and console helpers shared by nixbox modules."""
