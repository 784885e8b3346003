"""Bundled portfolio corpus and canned answers."""
