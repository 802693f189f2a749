"""Quarry: local document indexing, semantic search and cited answers."""

__version__ = "0.3.0"
