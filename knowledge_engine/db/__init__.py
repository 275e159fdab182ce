"""Database client and repository layer."""

from knowledge_engine.db.query_executor import timed_query
from knowledge_engine.db.repository import (
    KnowledgeRepository,
    SupabaseKnowledgeRepository,
)

__all__ = [
    "timed_query",
    "KnowledgeRepository",
    "SupabaseKnowledgeRepository",
]
