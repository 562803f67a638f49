"""Relational repository implementations."""

from lorekeeper.providers.repository.sqlite_knowledge_repository import SQLiteKnowledgeRepository

__all__ = ["SQLiteKnowledgeRepository"]
