"""
Long-running jobs driving shard streams.
"""

from .stream_poller import StreamPoller, StreamPollerError

__all__ = ["StreamPoller", "StreamPollerError"]
