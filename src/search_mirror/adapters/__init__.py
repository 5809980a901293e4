"""Adapters for the search backend and the primary record store."""
