"""
In-memory directory of the shards of one stream and their cursor state.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from .errors import StreamStateError, ThrottledError
from .listeners import ShardStreamListener, report_error
from .metrics import stream_known_shards, stream_shards_added, stream_shards_removed
from .models import CursorStatus, ShardState

logger = logging.getLogger(__name__)


class ShardDirectory:
    """
    Authoritative set of known shards for a stream.

    refresh() only ever adds shards; prune() is the only way a shard leaves,
    and only once its cursor is exhausted.

    Thread Safety: NOT thread-safe. Owned by a single ShardStream and only
    touched from its event loop.
    """

    def __init__(self, provider, stream_arn: str, listeners: ShardStreamListener):
        self.provider = provider
        self.stream_arn = stream_arn
        self.listeners = listeners
        self._shards: Dict[str, ShardState] = {}

    def __len__(self) -> int:
        return len(self._shards)

    def __contains__(self, shard_id: str) -> bool:
        return shard_id in self._shards

    def __iter__(self) -> Iterator[ShardState]:
        return iter(list(self._shards.values()))

    def get(self, shard_id: str) -> Optional[ShardState]:
        return self._shards.get(shard_id)

    async def refresh(self) -> List[str]:
        """
        Walk the provider's shard listing and add shards not seen before.

        A throttled page stops the walk early; shards collected so far are
        kept and the rest are picked up by the next refresh. Any other error
        is reported and re-raised.

        Returns:
            Newly discovered shard ids, in listing order
        """
        new_shard_ids: List[str] = []
        start_shard_id: Optional[str] = None

        try:
            while True:
                if start_shard_id:
                    logger.debug(
                        f"Continuing shard listing after {start_shard_id}",
                        extra={"stream_arn": self.stream_arn}
                    )
                try:
                    page = await self.provider.list_shards(self.stream_arn, start_shard_id)
                except ThrottledError as e:
                    report_error(self.listeners, self.stream_arn, "list_shards", e)
                    logger.info(
                        "Shard listing throttled, deferring the rest to the next refresh",
                        extra={
                            "stream_arn": self.stream_arn,
                            "attempts": e.attempts,
                            "total_retry_delay": e.total_retry_delay
                        }
                    )
                    break
                except Exception as e:
                    report_error(self.listeners, self.stream_arn, "list_shards", e)
                    raise

                for shard_id in page.shard_ids:
                    if shard_id not in self._shards:
                        self._shards[shard_id] = ShardState(shard_id=shard_id)
                        new_shard_ids.append(shard_id)

                start_shard_id = page.last_evaluated_shard_id
                if not start_shard_id:
                    break
        finally:
            self._update_gauge()
            if new_shard_ids:
                logger.info(
                    f"Added {len(new_shard_ids)} new shards",
                    extra={"stream_arn": self.stream_arn, "shard_ids": new_shard_ids}
                )
                stream_shards_added.labels(stream=self.stream_arn).inc(len(new_shard_ids))
                self.listeners.on_new_shards(new_shard_ids)

        return new_shard_ids

    def prune(self) -> List[str]:
        """
        Remove every shard whose cursor is exhausted.

        Returns:
            Removed shard ids
        """
        removed = [
            shard_id for shard_id, shard in self._shards.items()
            if shard.status == CursorStatus.EXHAUSTED
        ]
        for shard_id in removed:
            logger.debug(f"Deleting shard {shard_id}", extra={"stream_arn": self.stream_arn})
            del self._shards[shard_id]

        if removed:
            self._update_gauge()
            stream_shards_removed.labels(stream=self.stream_arn).inc(len(removed))
            self.listeners.on_removed_shards(removed)
        return removed

    def rearm_throttled(self) -> List[str]:
        """Return throttled shards to pending/active so this cycle retries them."""
        rearmed = []
        for shard in self._shards.values():
            if shard.status == CursorStatus.THROTTLED:
                shard.rearm()
                rearmed.append(shard.shard_id)
        if rearmed:
            logger.debug(
                f"Retrying {len(rearmed)} throttled shards",
                extra={"stream_arn": self.stream_arn, "shard_ids": rearmed}
            )
        return rearmed

    def export_state(self) -> Dict[str, Dict[str, Any]]:
        return {shard_id: shard.to_snapshot() for shard_id, shard in self._shards.items()}

    def import_state(self, state: Dict[str, Dict[str, Any]]) -> None:
        """Replace every known shard with the given snapshot. Nothing is merged."""
        if not isinstance(state, dict):
            raise StreamStateError("Shard state must be a mapping of shard id to entry")

        shards = {
            shard_id: ShardState.from_snapshot(shard_id, entry)
            for shard_id, entry in state.items()
        }
        self._shards = shards
        self._update_gauge()
        logger.info(
            f"Restored state for {len(shards)} shards",
            extra={"stream_arn": self.stream_arn}
        )

    def _update_gauge(self) -> None:
        stream_known_shards.labels(stream=self.stream_arn).set(len(self._shards))
