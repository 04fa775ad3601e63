"""
Storage backends for the Marketplace Service.

Both backends expose the same row oriented interface with transactions
and unique constraint checks. Use the in-memory backend for local runs
and tests, PostgreSQL otherwise.
"""

from .base import DuplicateEntryError, Persistence
from .memory import InMemoryPersistence

__all__ = ["DuplicateEntryError", "InMemoryPersistence", "Persistence"]
