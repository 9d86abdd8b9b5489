"""Shared helpers (file IO, logging)."""
