"""Unit tests for StreamPoller."""

import asyncio
from unittest.mock import Mock

import pytest

from shardstream.config.settings import StreamSettings
from shardstream.connectors.streams.checkpoint_store import ShardStateStore
from shardstream.connectors.streams.errors import CheckpointError, ProviderError, UnknownEventError
from shardstream.connectors.streams.listeners import CallbackListener
from shardstream.connectors.streams.shard_stream import ShardStream
from shardstream.jobs.stream_poller import StreamPoller, StreamPollerError
from shardstream.utils.dynamo_convert import unmarshall


@pytest.fixture
def stream(provider, stream_arn, event_log):
    shard_stream = ShardStream(provider, stream_arn, decode=unmarshall)
    shard_stream.add_listener(event_log)
    return shard_stream


@pytest.fixture
def store():
    """Mock checkpoint store."""
    checkpoint_store = Mock(spec=ShardStateStore)
    checkpoint_store.load_state.return_value = None
    return checkpoint_store


@pytest.fixture
def poller(stream, store):
    return StreamPoller(
        stream,
        checkpoint_store=store,
        job_id="test_job",
        poll_interval=0,
        retry_backoff_base=0.001,
        max_retries=2,
    )


class TestStreamPollerInit:
    """Test StreamPoller construction."""

    def test_validates_checkpoint_store(self, stream):
        with pytest.raises(TypeError, match="checkpoint_store must be a ShardStateStore"):
            StreamPoller(stream, checkpoint_store="not_a_store")

    @pytest.mark.parametrize("kwargs,message", [
        ({"poll_interval": -1}, "poll_interval must be non-negative"),
        ({"poll_timeout": 0}, "poll_timeout must be positive"),
        ({"max_retries": -1}, "max_retries must be non-negative"),
    ])
    def test_validates_timing(self, stream, kwargs, message):
        with pytest.raises(ValueError, match=message):
            StreamPoller(stream, **kwargs)

    def test_from_settings(self, stream, store):
        settings = StreamSettings(job_id="orders", poll_interval=5, poll_timeout=30, max_retries=7)

        poller = StreamPoller.from_settings(stream, settings, checkpoint_store=store)

        assert poller.job_id == "orders"
        assert poller.poll_interval == 5
        assert poller.poll_timeout == 30
        assert poller.max_retries == 7
        assert poller.checkpoint_store is store


class TestRestore:
    """Test restoring from a checkpoint."""

    def test_restores_saved_state(self, poller, store, stream, stream_arn):
        state = {"S1": {"shard_id": "S1", "iterator": "S1#0", "status": "active"}}
        store.load_state.return_value = state

        assert poller.restore() is True
        assert stream.export_state() == state
        store.load_state.assert_called_once_with("test_job", stream_arn)

    def test_nothing_saved(self, poller):
        assert poller.restore() is False

    def test_load_failure_starts_fresh(self, poller, store, stream):
        store.load_state.side_effect = CheckpointError("Database error")

        assert poller.restore() is False
        assert stream.export_state() == {}

    def test_without_store(self, stream):
        assert StreamPoller(stream).restore() is False


class TestRun:
    """Test the poll loop."""

    @pytest.mark.asyncio
    async def test_runs_cycles_and_checkpoints(self, poller, provider, store, stream_arn, record):
        provider.add_shard("S1")
        calls = []

        def put_after_first_cycle(job_id, arn, state, records_processed=0):
            calls.append((dict(state), records_processed))
            if len(calls) == 1:
                provider.put("S1", record("INSERT", {"pk": "a"}, new={"pk": "a"}))

        store.save_state.side_effect = put_after_first_cycle

        assert await poller.run(max_cycles=2) == 2

        assert poller.cycles_completed == 2
        assert poller.records_processed == 1
        assert [processed for _, processed in calls] == [0, 1]
        assert calls[-1][0]["S1"]["status"] == "active"

    @pytest.mark.asyncio
    async def test_retries_provider_errors(self, poller, provider, event_log):
        provider.add_shard("S1")
        provider.fail("list_shards", ProviderError("InternalServerError"))
        provider.fail("list_shards", ProviderError("InternalServerError"))

        assert await poller.run(max_cycles=1) == 1

        assert provider.calls_for("list_shards") == [None, None, None]
        assert len(event_log.errors) == 2

    @pytest.mark.asyncio
    async def test_retried_cycle_rereads_records_of_healthy_shards(
        self, poller, provider, stream, event_log, record
    ):
        """Test a failed cycle is rolled back so no shard skips its records."""
        provider.add_shard("S1")
        provider.add_shard("S2")
        await stream.poll_once()
        provider.put("S2", record("INSERT", {"pk": "b"}, new={"pk": "b"}))
        provider.fail("get_records", ProviderError("InternalServerError"), key="S1")

        assert await poller.run(max_cycles=1) == 1

        assert event_log.of("insert record") == [("insert record", {"pk": "b"}, {"pk": "b"})]
        assert poller.records_processed == 1

    @pytest.mark.asyncio
    async def test_timed_out_cycle_rereads_records(self, stream, provider, event_log, record):
        provider.add_shard("S1")
        provider.add_shard("S2")
        await stream.poll_once()
        provider.put("S2", record("INSERT", {"pk": "b"}, new={"pk": "b"}))

        get_records = provider.get_records
        stalled = []

        async def stall_first_s1_read(iterator):
            if iterator.startswith("S1") and not stalled:
                stalled.append(iterator)
                await asyncio.sleep(10)
            return await get_records(iterator)

        provider.get_records = stall_first_s1_read
        poller = StreamPoller(stream, poll_interval=0, poll_timeout=0.05, retry_backoff_base=0.001)

        assert await poller.run(max_cycles=1) == 1
        assert event_log.of("insert record") == [("insert record", {"pk": "b"}, {"pk": "b"})]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, poller, provider, store):
        for _ in range(3):
            provider.fail("list_shards", ProviderError("InternalServerError"))

        with pytest.raises(StreamPollerError, match="Max retries exceeded") as exc_info:
            await poller.run(max_cycles=1)

        assert isinstance(exc_info.value.__cause__, ProviderError)
        assert not store.save_state.called

    @pytest.mark.asyncio
    async def test_each_run_gets_a_fresh_retry_budget(self, poller, provider):
        provider.add_shard("S1")
        for _ in range(2):
            provider.fail("list_shards", ProviderError("boom"))

        assert await poller.run(max_cycles=1) == 1
        for _ in range(2):
            provider.fail("list_shards", ProviderError("boom"))
        assert await poller.run(max_cycles=1) == 1

    @pytest.mark.asyncio
    async def test_success_resets_retry_count(self, poller, provider, store):
        """Test failures only count while consecutive."""
        provider.add_shard("S1")
        for _ in range(2):
            provider.fail("list_shards", ProviderError("boom"))

        def fail_twice_more(*args, **kwargs):
            if store.save_state.call_count == 1:
                for _ in range(2):
                    provider.fail("list_shards", ProviderError("boom"))

        store.save_state.side_effect = fail_twice_more

        assert await poller.run(max_cycles=2) == 2
        assert len(provider.calls_for("list_shards")) == 6

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, stream, provider):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        provider.list_shards = hang
        poller = StreamPoller(stream, poll_timeout=0.01, max_retries=0)

        with pytest.raises(StreamPollerError) as exc_info:
            await poller.run(max_cycles=1)

        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)
        assert not stream.is_polling

    @pytest.mark.asyncio
    async def test_unknown_event_not_retried(self, poller, provider, stream, record):
        provider.add_shard("S1")
        await stream.poll_once()
        provider.put("S1", record("TRUNCATE", {"pk": "a"}))

        with pytest.raises(UnknownEventError):
            await poller.run()

        assert provider.calls_for("list_shards") == [None, None]

    @pytest.mark.asyncio
    async def test_checkpoint_failure_does_not_stop_polling(self, poller, provider, store):
        provider.add_shard("S1")
        store.save_state.side_effect = CheckpointError("Database error")

        assert await poller.run(max_cycles=3) == 3
        assert store.save_state.call_count == 3

    @pytest.mark.asyncio
    async def test_stop_from_listener(self, stream, provider):
        provider.add_shard("S1")
        poller = StreamPoller(stream, poll_interval=10)
        stream.add_listener(CallbackListener({"new shards": lambda ids: poller.stop()}))

        assert await poller.run() == 1
        assert poller.stop_requested

    @pytest.mark.asyncio
    async def test_stop_interrupts_sleep(self, stream):
        poller = StreamPoller(stream, poll_interval=10)

        async def stop_soon():
            await asyncio.sleep(0.01)
            poller.stop()

        stopper = asyncio.create_task(stop_soon())
        completed = await asyncio.wait_for(poller.run(), timeout=2)
        await stopper

        assert completed == 1

    @pytest.mark.asyncio
    async def test_run_cycle_returns_records(self, stream, provider, record):
        provider.add_shard("S1")
        poller = StreamPoller(stream)
        await poller.run_cycle()
        provider.put("S1", record("INSERT", {"pk": "a"}, new={"pk": "a"}))

        records = await poller.run_cycle()

        assert len(records) == 1
        assert poller.records_processed == 1
