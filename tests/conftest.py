"""Shared fixtures: an in-memory stream provider and a recording listener."""

from typing import Any, Dict, List, Optional, Tuple

import pytest
from boto3.dynamodb.types import TypeSerializer

from shardstream.connectors.streams.errors import ShardGoneError
from shardstream.connectors.streams.listeners import ShardStreamListener
from shardstream.connectors.streams.models import RecordPage, ShardPage

STREAM_ARN = "arn:aws:dynamodb:us-east-1:123456789012:table/orders/stream/2024-01-01T00:00:00.000"

_serializer = TypeSerializer()


def marshall(item: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if item is None:
        return None
    return {name: _serializer.serialize(value) for name, value in item.items()}


def make_record(event_name: str, keys: Dict[str, Any], new=None, old=None) -> Dict[str, Any]:
    """Build a record in the DynamoDB Streams wire shape."""
    payload = {"Keys": marshall(keys)}
    if new is not None:
        payload["NewImage"] = marshall(new)
    if old is not None:
        payload["OldImage"] = marshall(old)
    return {"eventName": event_name, "dynamodb": payload}


class FakeStreamProvider:
    """
    In-memory change stream.

    Each shard is an append-only list of records. Iterators are positions in
    that list; a LATEST iterator points past the last record. Failures queued
    with fail() are raised once, in order, by the matching call.
    """

    def __init__(self, page_size: int = 100):
        self.page_size = page_size
        self.shards: Dict[str, List[Dict[str, Any]]] = {}
        self.closed: set = set()
        self.gone: set = set()
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.failures: Dict[Tuple[str, Optional[str]], List[Exception]] = {}
        self._iterators: Dict[str, Tuple[str, int]] = {}

    # test controls

    def add_shard(self, shard_id: str) -> None:
        self.shards.setdefault(shard_id, [])

    def put(self, shard_id: str, record: Dict[str, Any]) -> None:
        self.shards[shard_id].append(record)

    def close_shard(self, shard_id: str) -> None:
        self.closed.add(shard_id)

    def delete_shard(self, shard_id: str) -> None:
        self.gone.add(shard_id)

    def fail(self, operation: str, error: Exception, key: Optional[str] = None) -> None:
        self.failures.setdefault((operation, key), []).append(error)

    def calls_for(self, operation: str) -> List[Optional[str]]:
        return [key for op, key in self.calls if op == operation]

    def _maybe_fail(self, operation: str, key: Optional[str]) -> None:
        self.calls.append((operation, key))
        queued = self.failures.get((operation, key))
        if queued:
            raise queued.pop(0)

    def _issue(self, shard_id: str, position: int) -> str:
        token = f"{shard_id}#{position}"
        self._iterators[token] = (shard_id, position)
        return token

    # provider interface

    async def list_shards(self, stream_arn: str, exclusive_start_shard_id: Optional[str] = None) -> ShardPage:
        self._maybe_fail("list_shards", exclusive_start_shard_id)
        shard_ids = [shard_id for shard_id in self.shards if shard_id not in self.gone]
        start = 0
        if exclusive_start_shard_id is not None:
            start = shard_ids.index(exclusive_start_shard_id) + 1
        page = shard_ids[start:start + self.page_size]
        more = start + self.page_size < len(shard_ids)
        return ShardPage(shard_ids=page, last_evaluated_shard_id=page[-1] if more and page else None)

    async def get_shard_iterator(self, stream_arn: str, shard_id: str) -> str:
        self._maybe_fail("get_shard_iterator", shard_id)
        if shard_id in self.gone or shard_id not in self.shards:
            raise ShardGoneError(f"Requested resource not found: Shard {shard_id} does not exist")
        return self._issue(shard_id, len(self.shards[shard_id]))

    async def get_records(self, iterator: str) -> RecordPage:
        shard_id, position = self._iterators[iterator]
        self._maybe_fail("get_records", shard_id)
        if shard_id in self.gone:
            raise ShardGoneError(f"Requested resource not found: Shard {shard_id} does not exist")

        records = self.shards[shard_id][position:]
        end = len(self.shards[shard_id])
        if shard_id in self.closed:
            return RecordPage(records=records, next_iterator=None)
        return RecordPage(records=records, next_iterator=self._issue(shard_id, end))


class EventLog(ShardStreamListener):
    """Listener recording every notification as a tuple."""

    def __init__(self):
        self.events: List[Tuple] = []
        self.errors: List[Exception] = []

    def on_new_shards(self, shard_ids):
        self.events.append(("new shards", shard_ids))

    def on_removed_shards(self, shard_ids):
        self.events.append(("removed shards", shard_ids))

    def on_insert(self, new_record, keys):
        self.events.append(("insert record", new_record, keys))

    def on_modify(self, new_record, old_record, keys):
        self.events.append(("modify record", new_record, old_record, keys))

    def on_remove(self, old_record, keys):
        self.events.append(("remove record", old_record, keys))

    def on_error(self, error):
        self.errors.append(error)

    def of(self, name: str) -> List[Tuple]:
        return [event for event in self.events if event[0] == name]

    def clear(self) -> None:
        self.events.clear()
        self.errors.clear()


@pytest.fixture
def stream_arn():
    return STREAM_ARN


@pytest.fixture
def provider():
    return FakeStreamProvider()


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def record():
    """Factory for DynamoDB Streams shaped records."""
    return make_record
