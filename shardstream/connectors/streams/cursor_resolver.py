"""
Initial iterator acquisition for shards that have never been read.
"""

import logging
from typing import List

from .errors import ShardGoneError, ThrottledError
from .listeners import ShardStreamListener, report_error
from .models import CursorStatus, ShardState
from .shard_directory import ShardDirectory
from ...utils.concurrency import DEFAULT_CONCURRENCY, bounded_map

logger = logging.getLogger(__name__)


class CursorResolver:
    """
    Requests a LATEST iterator for every pending shard.

    Only records written after resolution are seen; a brand-new shard is
    never replayed from its beginning.
    """

    def __init__(
        self,
        provider,
        stream_arn: str,
        listeners: ShardStreamListener,
        max_concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self.provider = provider
        self.stream_arn = stream_arn
        self.listeners = listeners
        self.max_concurrency = max_concurrency

    async def resolve(self, directory: ShardDirectory) -> List[str]:
        """
        Resolve iterators for all pending shards in the directory.

        Active, throttled and exhausted shards are left untouched.

        Returns:
            Ids of shards that received an iterator
        """
        pending = [shard for shard in directory if shard.status == CursorStatus.PENDING]
        if not pending:
            return []

        results = await bounded_map(pending, self.resolve_shard, self.max_concurrency)
        return [shard.shard_id for shard, resolved in zip(pending, results) if resolved]

    async def resolve_shard(self, shard: ShardState) -> bool:
        if shard.status != CursorStatus.PENDING:
            logger.debug(
                f"Shard {shard.shard_id} is {shard.status.value}, skipping",
                extra={"stream_arn": self.stream_arn, "shard_id": shard.shard_id}
            )
            return False

        try:
            iterator = await self.provider.get_shard_iterator(self.stream_arn, shard.shard_id)
        except ShardGoneError as e:
            report_error(self.listeners, self.stream_arn, "get_shard_iterator", e, shard.shard_id)
            logger.info(
                f"Shard {shard.shard_id} no longer exists, marking exhausted",
                extra={"stream_arn": self.stream_arn, "shard_id": shard.shard_id}
            )
            shard.exhaust()
            return False
        except ThrottledError as e:
            report_error(self.listeners, self.stream_arn, "get_shard_iterator", e, shard.shard_id)
            shard.throttle()
            return False
        except Exception as e:
            report_error(self.listeners, self.stream_arn, "get_shard_iterator", e, shard.shard_id)
            raise

        if not iterator:
            # a LATEST iterator is always issued for a live shard
            shard.exhaust()
            return False

        shard.activate(iterator)
        return True
