"""Core data model and pure helpers (geometry, text similarity)."""
