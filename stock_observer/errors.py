from __future__ import annotations

from typing import Optional


class StockObserverError(Exception):
    """Base class for ingestion errors."""


class TransportError(StockObserverError):
    """Network or transport failure. Fails only the owning task."""


class DecodeError(StockObserverError):
    """Malformed response body, archive or table file."""


class JoinMissError(StockObserverError):
    """A raw rate references an id absent from its cycle's mappings.

    Collected by the joiner and counted, never raised out of a cycle.
    """

    def __init__(self, table: str, missing_id: int, record: object):
        super().__init__(f"{table} id {missing_id} not found")
        self.table = table
        self.missing_id = missing_id
        self.record = record


class CycleAbortError(StockObserverError):
    """A fail-fast dependency failed and the whole cycle was discarded."""

    def __init__(self, message: str, task: Optional[str] = None):
        super().__init__(message)
        self.task = task
