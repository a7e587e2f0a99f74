"""
Exception taxonomy for shard stream consumption.

Provider adapters raise ThrottledError, ShardGoneError, IteratorExpiredError
or ProviderError; the engine decides per kind whether to defer, retire the
shard, or fail the poll cycle.
"""

from typing import Optional


class StreamError(Exception):
    """Base exception for shard stream errors."""

    def __init__(
        self,
        message: str = "",
        attempts: Optional[int] = None,
        total_retry_delay: Optional[float] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.total_retry_delay = total_retry_delay


class ThrottledError(StreamError):
    """Provider rate-limited the request. Always retried on a later cycle."""
    pass


class ShardGoneError(StreamError):
    """Shard (or stream) no longer exists."""
    pass


class IteratorExpiredError(StreamError):
    """Shard iterator is too old to be used."""
    pass


class ProviderError(StreamError):
    """Unclassified provider failure. Fatal for the poll cycle."""
    pass


class UnknownEventError(StreamError):
    """Record carries an event name outside INSERT/MODIFY/REMOVE."""
    pass


class PollInProgressError(StreamError):
    """A poll cycle is already running on this stream."""
    pass


class StreamStateError(StreamError):
    """Snapshot handed to import_state() is malformed."""
    pass


class CheckpointError(StreamError):
    """Error saving/loading a shard state checkpoint."""
    pass
