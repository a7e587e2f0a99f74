"""
Stream provider interface and the boto3-backed DynamoDB Streams adapter.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    IteratorExpiredError,
    ProviderError,
    ShardGoneError,
    StreamError,
    ThrottledError,
)
from .models import RecordPage, ShardPage

logger = logging.getLogger(__name__)

THROTTLING_ERROR_CODES = frozenset({
    "ThrottlingException",
    "LimitExceededException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
})
SHARD_GONE_ERROR_CODES = frozenset({"ResourceNotFoundException"})
EXPIRED_ITERATOR_ERROR_CODES = frozenset({"ExpiredIteratorException"})


class StreamProvider(Protocol):
    """Operations the engine needs from the change log service."""

    async def list_shards(
        self, stream_arn: str, exclusive_start_shard_id: Optional[str] = None
    ) -> ShardPage:
        ...

    async def get_shard_iterator(self, stream_arn: str, shard_id: str) -> str:
        ...

    async def get_records(self, iterator: str) -> RecordPage:
        ...


def translate_client_error(error: ClientError, elapsed: Optional[float] = None) -> StreamError:
    """
    Map a botocore ClientError onto the stream error taxonomy.

    botocore reports how many retries it made but not how long it waited, so
    total_retry_delay is the wall time of the whole call (``elapsed``), and
    only set when at least one retry happened.
    """
    response = getattr(error, "response", None) or {}
    code = response.get("Error", {}).get("Code", "")
    message = response.get("Error", {}).get("Message") or str(error)
    attempts = response.get("ResponseMetadata", {}).get("RetryAttempts")

    if code in THROTTLING_ERROR_CODES:
        error_class = ThrottledError
    elif code in SHARD_GONE_ERROR_CODES:
        error_class = ShardGoneError
    elif code in EXPIRED_ITERATOR_ERROR_CODES:
        error_class = IteratorExpiredError
    else:
        error_class = ProviderError

    total_retry_delay = elapsed if attempts else None
    return error_class(
        f"{code}: {message}" if code else message,
        attempts=attempts,
        total_retry_delay=total_retry_delay,
    )


class DynamoDBStreamsProvider:
    """
    StreamProvider backed by a boto3 ``dynamodbstreams`` client.

    boto3 calls block, so each one runs in a worker thread. botocore's own
    retry policy still applies before an error reaches the engine.

    Example:
        >>> provider = DynamoDBStreamsProvider(region="us-east-1")
        >>> stream = ShardStream(provider, stream_arn, decode=unmarshall)
    """

    def __init__(
        self,
        client=None,
        records_limit: int = 1000,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        max_pool_connections: int = 50,
    ):
        """
        Initialize provider.

        Args:
            client: Existing boto3 dynamodbstreams client (built from the other args if None)
            records_limit: Maximum records per get_records call (1-1000)
            region: AWS region for a new client
            endpoint_url: Endpoint override for a new client (local DynamoDB, LocalStack)
            max_pool_connections: HTTP pool size for a new client

        Raises:
            ValueError: If records_limit is out of range
        """
        if not 1 <= records_limit <= 1000:
            raise ValueError("records_limit must be between 1 and 1000")

        if client is None:
            client = boto3.client(
                "dynamodbstreams",
                region_name=region,
                endpoint_url=endpoint_url,
                config=Config(max_pool_connections=max_pool_connections),
            )

        self.client = client
        self.records_limit = records_limit

    @classmethod
    def from_settings(cls, settings) -> "DynamoDBStreamsProvider":
        """Build a provider from the application Settings."""
        return cls(
            records_limit=settings.stream.records_limit,
            region=settings.aws.region,
            endpoint_url=settings.aws.endpoint_url,
            max_pool_connections=settings.aws.max_pool_connections,
        )

    async def list_shards(
        self, stream_arn: str, exclusive_start_shard_id: Optional[str] = None
    ) -> ShardPage:
        params: Dict[str, Any] = {"StreamArn": stream_arn}
        if exclusive_start_shard_id:
            params["ExclusiveStartShardId"] = exclusive_start_shard_id

        response = await self._call("describe_stream", **params)
        description = response.get("StreamDescription", {})
        return ShardPage(
            shard_ids=[shard["ShardId"] for shard in description.get("Shards", [])],
            last_evaluated_shard_id=description.get("LastEvaluatedShardId"),
        )

    async def get_shard_iterator(self, stream_arn: str, shard_id: str) -> str:
        response = await self._call(
            "get_shard_iterator",
            StreamArn=stream_arn,
            ShardId=shard_id,
            ShardIteratorType="LATEST",
        )
        return response.get("ShardIterator")

    async def get_records(self, iterator: str) -> RecordPage:
        response = await self._call(
            "get_records",
            ShardIterator=iterator,
            Limit=self.records_limit,
        )
        return RecordPage(
            records=response.get("Records", []),
            next_iterator=response.get("NextShardIterator"),
        )

    async def _call(self, operation: str, **params) -> Dict[str, Any]:
        method = getattr(self.client, operation)
        started = time.monotonic()
        try:
            return await asyncio.to_thread(method, **params)
        except ClientError as e:
            error = translate_client_error(e, elapsed=time.monotonic() - started)
            logger.debug(
                f"DynamoDB Streams {operation} failed: {error}",
                extra={"operation": operation, "error_type": type(error).__name__}
            )
            raise error from e
        except BotoCoreError as e:
            raise ProviderError(f"{operation} failed: {e}") from e
