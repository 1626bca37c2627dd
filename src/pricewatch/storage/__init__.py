"""Durable sample storage."""

from pricewatch.storage.store import SampleStore, SqliteSampleStore, create_store

__all__ = [
    "SampleStore",
    "SqliteSampleStore",
    "create_store",
]
