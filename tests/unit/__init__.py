"""Unit tests for the component runner.

Fast, isolated tests for individual pipeline pieces.
No network (requests is mocked), no external transpiler.
"""
