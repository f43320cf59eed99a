"""agentmem storage layer."""

from agentmem.db.cache import CacheKey, EmbeddingCache, content_hash
from agentmem.db.connection import Database
from agentmem.db.migrations import MIGRATIONS, run_migrations
from agentmem.db.models import Chunk, FileRecord, SourceCounts
from agentmem.db.store import IndexStore
from agentmem.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "CacheKey",
    "Chunk",
    "Database",
    "EmbeddingCache",
    "FileRecord",
    "IndexStore",
    "MIGRATIONS",
    "SourceCounts",
    "content_hash",
    "ensure_vec_table",
    "model_to_slug",
    "run_migrations",
    "vec_table_name",
]
