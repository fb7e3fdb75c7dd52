"""Application layer: services, queries and background workers."""
