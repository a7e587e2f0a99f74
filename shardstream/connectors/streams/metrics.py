"""
Prometheus metrics for shard stream consumption.
"""

from prometheus_client import Counter, Gauge, Histogram

stream_records_emitted = Counter(
    'shardstream_records_total',
    'Total change records emitted to listeners',
    ['stream', 'event']
)

stream_provider_errors = Counter(
    'shardstream_provider_errors_total',
    'Provider errors by operation and kind',
    ['stream', 'operation', 'error_type']
)

stream_known_shards = Gauge(
    'shardstream_known_shards',
    'Shards currently tracked in the shard directory',
    ['stream']
)

stream_shards_added = Counter(
    'shardstream_shards_added_total',
    'Shards discovered by directory refresh',
    ['stream']
)

stream_shards_removed = Counter(
    'shardstream_shards_removed_total',
    'Exhausted shards pruned from the directory',
    ['stream']
)

stream_poll_duration = Histogram(
    'shardstream_poll_seconds',
    'Time to run one poll cycle',
    ['stream']
)

checkpoint_saves_total = Counter(
    'shardstream_checkpoint_saves_total',
    'Total shard state checkpoint saves',
    ['status']
)

checkpoint_loads_total = Counter(
    'shardstream_checkpoint_loads_total',
    'Total shard state checkpoint loads',
    ['status']
)
