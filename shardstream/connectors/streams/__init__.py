"""
Shard stream module for DynamoDB Streams change-data-capture.
"""

from .errors import (
    StreamError,
    ThrottledError,
    ShardGoneError,
    IteratorExpiredError,
    ProviderError,
    UnknownEventError,
    PollInProgressError,
    StreamStateError,
    CheckpointError,
)
from .models import CursorStatus, EventName, ShardState, ShardPage, RecordPage
from .listeners import ShardStreamListener, CallbackListener, ListenerSet
from .shard_directory import ShardDirectory
from .cursor_resolver import CursorResolver
from .record_fetcher import RecordFetcher
from .translator import RecordTranslator
from .shard_stream import ShardStream, StreamConfig
from .provider import StreamProvider, DynamoDBStreamsProvider
from .checkpoint_store import ShardStateStore, ShardCheckpoint

__all__ = [
    "StreamError",
    "ThrottledError",
    "ShardGoneError",
    "IteratorExpiredError",
    "ProviderError",
    "UnknownEventError",
    "PollInProgressError",
    "StreamStateError",
    "CheckpointError",
    "CursorStatus",
    "EventName",
    "ShardState",
    "ShardPage",
    "RecordPage",
    "ShardStreamListener",
    "CallbackListener",
    "ListenerSet",
    "ShardDirectory",
    "CursorResolver",
    "RecordFetcher",
    "RecordTranslator",
    "ShardStream",
    "StreamConfig",
    "StreamProvider",
    "DynamoDBStreamsProvider",
    "ShardStateStore",
    "ShardCheckpoint",
]
