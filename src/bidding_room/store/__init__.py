"""Session, quote and rating storage backends."""

from .memory import InMemoryQuoteStore, InMemoryRatingProvider, InMemorySessionStore
from .sql import SqlQuoteStore, SqlRatingProvider, SqlSessionStore

__all__ = [
    "InMemoryQuoteStore",
    "InMemoryRatingProvider",
    "InMemorySessionStore",
    "SqlQuoteStore",
    "SqlRatingProvider",
    "SqlSessionStore",
]
