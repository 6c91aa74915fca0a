#!/usr/bin/env python3
"""Common error types shared across modules.

Startup errors (SourceUnavailable, StoreUnavailable) abort a run. Every other
kind is raised inside one unit of work (a feed or an article) and is turned
into an outcome value at that unit's task boundary.
"""

from typing import Dict, Any, Optional


class FeedHoseError(Exception):
    """Base class for all pipeline errors.

    Attributes:
        details: Optional payload for diagnostics (endpoint, status, ...).
    """

    kind = "error"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class SourceUnavailable(FeedHoseError):
    """The feed list could not be opened or read."""

    kind = "source_unavailable"


class StoreUnavailable(FeedHoseError):
    """Persistent storage could not be opened or queried at startup."""

    kind = "store_unavailable"


class NetworkError(FeedHoseError):
    """A fetch failed at the transport level (timeout, connection, bad status)."""

    kind = "network"


class ParseError(FeedHoseError):
    """A feed or article body could not be parsed."""

    kind = "parse"


class NoContent(FeedHoseError):
    """The content extractor found no article HTML on the page."""

    kind = "no_content"


class PersistenceError(FeedHoseError):
    """A batch write failed for a reason other than a duplicate key."""

    kind = "persistence"


class TaskFaulted(FeedHoseError):
    """An unexpected exception escaped a unit of work."""

    kind = "faulted"


__all__ = [
    "FeedHoseError",
    "SourceUnavailable",
    "StoreUnavailable",
    "NetworkError",
    "ParseError",
    "NoContent",
    "PersistenceError",
    "TaskFaulted",
]
