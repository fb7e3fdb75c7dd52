"""Infrastructure layer: persistence, upstream integrations, observability."""
