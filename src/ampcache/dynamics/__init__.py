"""Barrier factors and lineshapes of decaying particles."""
