"""
Listener registration for shard stream notifications.

Listeners are registered per ShardStream instance. Subclass
ShardStreamListener and override what you need, or wrap plain callables
with CallbackListener.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .metrics import stream_provider_errors

logger = logging.getLogger(__name__)


class ShardStreamListener:
    """Receives notifications from a ShardStream. All hooks default to no-ops."""

    def on_new_shards(self, shard_ids: List[str]) -> None:
        pass

    def on_removed_shards(self, shard_ids: List[str]) -> None:
        pass

    def on_insert(self, new_record: Any, keys: Any) -> None:
        pass

    def on_modify(self, new_record: Any, old_record: Any, keys: Any) -> None:
        pass

    def on_remove(self, old_record: Any, keys: Any) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        """Advisory only. The cycle continues unless the error is re-raised."""
        pass


class CallbackListener(ShardStreamListener):
    """
    Listener built from callables keyed by event name.

    Example:
        >>> listener = CallbackListener({
        ...     "insert record": lambda record, keys: print(record),
        ...     "error": log_error,
        ... })
        >>> stream.add_listener(listener)
    """

    EVENTS = (
        "new shards",
        "removed shards",
        "insert record",
        "modify record",
        "remove record",
        "error",
    )

    def __init__(self, callbacks: Optional[Dict[str, Callable[..., None]]] = None):
        self.callbacks: Dict[str, Callable[..., None]] = {}
        for event, callback in (callbacks or {}).items():
            self.on(event, callback)

    def on(self, event: str, callback: Callable[..., None]) -> "CallbackListener":
        if event not in self.EVENTS:
            raise ValueError(f"Unknown event '{event}', expected one of {self.EVENTS}")
        self.callbacks[event] = callback
        return self

    def _call(self, event: str, *args: Any) -> None:
        callback = self.callbacks.get(event)
        if callback is not None:
            callback(*args)

    def on_new_shards(self, shard_ids):
        self._call("new shards", shard_ids)

    def on_removed_shards(self, shard_ids):
        self._call("removed shards", shard_ids)

    def on_insert(self, new_record, keys):
        self._call("insert record", new_record, keys)

    def on_modify(self, new_record, old_record, keys):
        self._call("modify record", new_record, old_record, keys)

    def on_remove(self, old_record, keys):
        self._call("remove record", old_record, keys)

    def on_error(self, error):
        self._call("error", error)


class ListenerSet(ShardStreamListener):
    """Fans each notification out to every registered listener, in registration order."""

    def __init__(self):
        self._listeners: List[ShardStreamListener] = []

    def add(self, listener: ShardStreamListener) -> None:
        if not isinstance(listener, ShardStreamListener):
            raise TypeError("listener must be a ShardStreamListener instance")
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove(self, listener: ShardStreamListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def on_new_shards(self, shard_ids):
        for listener in list(self._listeners):
            listener.on_new_shards(list(shard_ids))

    def on_removed_shards(self, shard_ids):
        for listener in list(self._listeners):
            listener.on_removed_shards(list(shard_ids))

    def on_insert(self, new_record, keys):
        for listener in list(self._listeners):
            listener.on_insert(new_record, keys)

    def on_modify(self, new_record, old_record, keys):
        for listener in list(self._listeners):
            listener.on_modify(new_record, old_record, keys)

    def on_remove(self, old_record, keys):
        for listener in list(self._listeners):
            listener.on_remove(old_record, keys)

    def on_error(self, error):
        for listener in list(self._listeners):
            listener.on_error(error)


def report_error(
    listeners: ShardStreamListener,
    stream_arn: str,
    operation: str,
    error: Exception,
    shard_id: Optional[str] = None,
) -> None:
    """Count, log and broadcast a provider error before it is handled or re-raised."""
    error_type = type(error).__name__
    stream_provider_errors.labels(
        stream=stream_arn,
        operation=operation,
        error_type=error_type
    ).inc()
    logger.warning(
        f"{operation} failed: {error}",
        extra={
            "stream_arn": stream_arn,
            "shard_id": shard_id,
            "operation": operation,
            "error_type": error_type,
            "attempts": getattr(error, "attempts", None),
            "total_retry_delay": getattr(error, "total_retry_delay", None),
        }
    )
    listeners.on_error(error)
