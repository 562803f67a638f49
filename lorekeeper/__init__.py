"""LoreKeeper: RAG knowledge-base ingestion and deletion pipelines."""

__version__ = "0.1.0"
