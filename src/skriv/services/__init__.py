"""Persistence, configuration and process-level services."""
