"""Integration tests: the whole pipeline, from component bytes to calls."""
