"""peekstash: multi-instance Stash catalog mirror with per-user views."""

__version__ = "0.1.0"
