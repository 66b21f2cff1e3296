"""Viewstamped Replication, an in-memory OCC transactional store and their client-side helpers."""

__version__ = "0.1.0"