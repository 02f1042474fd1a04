"""Gloss export: publish completed book glosses to a content store."""

__version__ = "0.1.0"
