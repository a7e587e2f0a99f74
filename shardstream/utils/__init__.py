"""
Utility functions for shardstream.
"""

from .concurrency import bounded_map
from .dynamo_convert import unmarshall, plain_value

__all__ = ["bounded_map", "unmarshall", "plain_value"]
