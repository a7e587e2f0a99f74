"""
Polling consumer for a sharded change stream (DynamoDB Streams).

One poll cycle:
1. Prune shards exhausted by the previous cycle
2. Refresh the shard directory (new shards are announced)
3. Resolve LATEST iterators for shards that have none
4. Fetch one batch per shard, bounded concurrency
5. Prune shards exhausted by this cycle
6. Emit insert/modify/remove events in batch order

The engine keeps no durable state. Use export_state()/import_state() to
checkpoint shard iterators across restarts.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import PollInProgressError
from .listeners import ListenerSet, ShardStreamListener
from .metrics import stream_poll_duration
from .models import ShardState
from .cursor_resolver import CursorResolver
from .record_fetcher import RecordFetcher
from .shard_directory import ShardDirectory
from .translator import Decoder, RecordTranslator
from ...utils.concurrency import DEFAULT_CONCURRENCY

logger = logging.getLogger(__name__)

PROVIDER_OPERATIONS = ("list_shards", "get_shard_iterator", "get_records")


@dataclass
class StreamConfig:
    """Configuration for a ShardStream."""
    max_concurrency: int = DEFAULT_CONCURRENCY  # in-flight provider calls per fan-out

    def __post_init__(self):
        """Validate configuration values."""
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")

    @classmethod
    def from_settings(cls, settings) -> "StreamConfig":
        return cls(max_concurrency=settings.max_concurrency)


class ShardStream:
    """
    Tracks the shards of one stream and turns their records into events.

    Features:
    - Shard discovery with paginated listing, pruning of drained/gone shards
    - Per-shard iterator tracking (pending, active, throttled, exhausted)
    - Bounded-concurrency iterator resolution and record fetching
    - Listener notifications for shards, records and advisory errors
    - Snapshot/restore of shard iterators

    Concurrency: designed for a single asyncio event loop. Overlapping poll
    cycles are rejected with PollInProgressError.

    Example:
        >>> stream = ShardStream(provider, stream_arn, decode=unmarshall)
        >>> stream.add_listener(CallbackListener({"insert record": handle_insert}))
        >>> await stream.poll_once()
    """

    def __init__(
        self,
        provider,
        stream_arn: str,
        decode: Optional[Decoder] = None,
        config: Optional[StreamConfig] = None,
    ):
        """
        Initialize shard stream.

        Args:
            provider: StreamProvider implementation (list_shards, get_shard_iterator, get_records)
            stream_arn: Identifier of the stream to consume
            decode: Optional function turning provider attribute maps into plain values
            config: Stream configuration

        Raises:
            TypeError: If provider, stream_arn or decode are invalid
            ValueError: If stream_arn is empty
        """
        for operation in PROVIDER_OPERATIONS:
            if not callable(getattr(provider, operation, None)):
                raise TypeError(f"provider must implement {operation}()")

        if not isinstance(stream_arn, str):
            raise TypeError("stream_arn must be a string")
        if not stream_arn:
            raise ValueError("stream_arn must not be empty")

        if decode is not None and not callable(decode):
            raise TypeError("decode must be callable")

        self.provider = provider
        self.stream_arn = stream_arn
        self.config = config or StreamConfig()

        self.listeners = ListenerSet()
        self.directory = ShardDirectory(provider, stream_arn, self.listeners)
        self.resolver = CursorResolver(
            provider, stream_arn, self.listeners, self.config.max_concurrency
        )
        self.fetcher = RecordFetcher(
            provider, stream_arn, self.listeners, self.config.max_concurrency
        )
        self.translator = RecordTranslator(self.listeners, decode, stream_arn)

        self._in_flight: Optional[str] = None

        logger.info(
            f"Initialized ShardStream for {stream_arn}",
            extra={
                "stream_arn": stream_arn,
                "max_concurrency": self.config.max_concurrency,
                "decode_enabled": decode is not None
            }
        )

    def add_listener(self, listener: ShardStreamListener) -> ShardStreamListener:
        self.listeners.add(listener)
        return listener

    def remove_listener(self, listener: ShardStreamListener) -> None:
        self.listeners.remove(listener)

    @property
    def shards(self) -> List[ShardState]:
        return list(self.directory)

    @property
    def is_polling(self) -> bool:
        return self._in_flight is not None

    async def poll_once(self) -> List[Dict[str, Any]]:
        """
        Run one full poll cycle.

        Returns:
            Raw records fetched this cycle, after their events were emitted

        Raises:
            PollInProgressError: If another cycle is running
            ProviderError: On an unclassified provider failure
            UnknownEventError: On a record with an unknown event name
        """
        with self._single_flight("poll_once"):
            with stream_poll_duration.labels(stream=self.stream_arn).time():
                await self._refresh_shards()
                return await self._fetch_records()

    async def refresh_shards(self) -> List[str]:
        """Prune exhausted shards and discover new ones. Returns the new shard ids."""
        with self._single_flight("refresh_shards"):
            return await self._refresh_shards()

    async def fetch_records(self) -> List[Dict[str, Any]]:
        """Resolve iterators, fetch, prune and emit, without refreshing the directory."""
        with self._single_flight("fetch_records"):
            return await self._fetch_records()

    def export_state(self) -> Dict[str, Dict[str, Any]]:
        """
        Get a copy of the current shard state.

        The result is plain data (strings and None) and safe to serialize.
        """
        return self.directory.export_state()

    def import_state(self, state: Dict[str, Dict[str, Any]]) -> None:
        """
        Replace the shard directory with a previously exported state.

        Raises:
            PollInProgressError: If a cycle is running
            StreamStateError: If the state is malformed
        """
        if self._in_flight is not None:
            raise PollInProgressError(
                f"Cannot import state while {self._in_flight} is running"
            )
        self.directory.import_state(state)

    async def _refresh_shards(self) -> List[str]:
        self.directory.prune()
        return await self.directory.refresh()

    async def _fetch_records(self) -> List[Dict[str, Any]]:
        if len(self.directory) == 0:
            logger.debug("No shards found, nothing to fetch", extra={"stream_arn": self.stream_arn})
            return []

        self.directory.rearm_throttled()
        await self.resolver.resolve(self.directory)
        records = await self.fetcher.fetch(self.directory)

        self.directory.prune()
        self.translator.emit(records)
        return records

    @contextmanager
    def _single_flight(self, operation: str):
        if self._in_flight is not None:
            raise PollInProgressError(
                f"Cannot start {operation} while {self._in_flight} is running"
            )
        self._in_flight = operation
        try:
            yield
        finally:
            self._in_flight = None
