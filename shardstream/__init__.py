"""
shardstream: change-data-capture consumer for sharded change streams.
"""

from .connectors.streams import (
    CallbackListener,
    DynamoDBStreamsProvider,
    ShardStream,
    ShardStreamListener,
    StreamConfig,
)
from .utils.dynamo_convert import unmarshall

__version__ = "0.1.0"

__all__ = [
    "CallbackListener",
    "DynamoDBStreamsProvider",
    "ShardStream",
    "ShardStreamListener",
    "StreamConfig",
    "unmarshall",
]
