"""HTTP gateway in front of an embedding provider and a pgvector store."""

__version__ = "1.0.0"
