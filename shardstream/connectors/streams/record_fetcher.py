"""
Per-shard record retrieval.
"""

import logging
from typing import Any, Dict, List

from .errors import IteratorExpiredError, ShardGoneError, ThrottledError
from .listeners import ShardStreamListener, report_error
from .models import ShardState
from .shard_directory import ShardDirectory
from ...utils.concurrency import DEFAULT_CONCURRENCY, bounded_map

logger = logging.getLogger(__name__)


class RecordFetcher:
    """
    Reads one batch per active shard and advances or retires its iterator.

    An expired iterator retires the shard. Records between the last
    successful read and the expiry are not recovered.
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

    async def fetch(self, directory: ShardDirectory) -> List[Dict[str, Any]]:
        """
        Fetch one batch from every shard holding an iterator.

        Returns:
            All records, shard by shard in directory order; each shard's
            records keep the provider's order
        """
        shards = list(directory)
        if not shards:
            return []

        batches = await bounded_map(shards, self.fetch_shard, self.max_concurrency)
        records = [record for batch in batches for record in batch]

        logger.debug(
            f"Fetched {len(records)} records from {len(shards)} shards",
            extra={"stream_arn": self.stream_arn}
        )
        return records

    async def fetch_shard(self, shard: ShardState) -> List[Dict[str, Any]]:
        if not shard.has_iterator:
            return []

        try:
            page = await self.provider.get_records(shard.iterator)
        except IteratorExpiredError as e:
            report_error(self.listeners, self.stream_arn, "get_records", e, shard.shard_id)
            logger.warning(
                f"Iterator expired for shard {shard.shard_id}, unread records are lost",
                extra={"stream_arn": self.stream_arn, "shard_id": shard.shard_id}
            )
            shard.exhaust()
            return []
        except ShardGoneError as e:
            report_error(self.listeners, self.stream_arn, "get_records", e, shard.shard_id)
            logger.info(
                f"Shard {shard.shard_id} no longer exists, marking exhausted",
                extra={"stream_arn": self.stream_arn, "shard_id": shard.shard_id}
            )
            shard.exhaust()
            return []
        except ThrottledError as e:
            report_error(self.listeners, self.stream_arn, "get_records", e, shard.shard_id)
            shard.throttle()
            return []
        except Exception as e:
            report_error(self.listeners, self.stream_arn, "get_records", e, shard.shard_id)
            raise

        if page.next_iterator:
            shard.activate(page.next_iterator)
        else:
            logger.info(
                f"Shard {shard.shard_id} is closed and drained",
                extra={"stream_arn": self.stream_arn, "shard_id": shard.shard_id}
            )
            shard.exhaust()

        return list(page.records)
