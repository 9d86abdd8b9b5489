"""Tab data model, registry and most-recently-used ordering."""
