"""Catalog parsing and merging."""
