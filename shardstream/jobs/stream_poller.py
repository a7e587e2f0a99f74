"""
Long-running poll loop for a ShardStream.

Drives poll_once() on an interval with a per-cycle timeout, retries failed
cycles with exponential backoff, and checkpoints shard state after every
successful cycle.
"""

import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional

from ..connectors.streams.errors import CheckpointError, ProviderError, StreamError
from ..connectors.streams.shard_stream import ShardStream
from ..utils.logging import PollCycleContext

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (ProviderError, asyncio.TimeoutError)


class StreamPollerError(StreamError):
    """Poller gave up after too many consecutive failed cycles."""
    pass


class StreamPoller:
    """
    Poll a ShardStream until stopped.

    Delivery is at-least-once: state is checkpointed after a cycle's events
    were emitted, so a crash in between replays that cycle's records.

    Example:
        >>> poller = StreamPoller(stream, checkpoint_store=store, job_id="orders")
        >>> await poller.run()
    """

    def __init__(
        self,
        stream: ShardStream,
        checkpoint_store=None,
        job_id: str = "shardstream",
        poll_interval: float = 1.0,
        poll_timeout: float = 60.0,
        max_retries: int = 5,
        retry_backoff_base: float = 2.0,
        max_retry_delay: float = 60.0,
        handle_signals: bool = False,
    ):
        """
        Initialize poller.

        Args:
            stream: Stream to poll
            checkpoint_store: Optional store with save_state/load_state
            job_id: Job identifier for checkpoint storage
            poll_interval: Seconds between cycles
            poll_timeout: Seconds before a cycle is abandoned
            max_retries: Consecutive failed cycles tolerated
            retry_backoff_base: Backoff is base ** attempt seconds
            max_retry_delay: Cap on backoff seconds
            handle_signals: Stop gracefully on SIGTERM/SIGINT

        Raises:
            TypeError: If checkpoint_store lacks save_state/load_state
            ValueError: If timing values out of range
        """
        if checkpoint_store is not None and not (
            hasattr(checkpoint_store, "save_state") and hasattr(checkpoint_store, "load_state")
        ):
            raise TypeError("checkpoint_store must be a ShardStateStore instance")
        if poll_interval < 0:
            raise ValueError("poll_interval must be non-negative")
        if poll_timeout <= 0:
            raise ValueError("poll_timeout must be positive")
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self.stream = stream
        self.checkpoint_store = checkpoint_store
        self.job_id = job_id
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self.max_retry_delay = max_retry_delay
        self.handle_signals = handle_signals

        self.records_processed: int = 0
        self.cycles_completed: int = 0
        self._stop_event = asyncio.Event()

    @classmethod
    def from_settings(cls, stream: ShardStream, settings, checkpoint_store=None) -> "StreamPoller":
        """Build a poller from StreamSettings."""
        return cls(
            stream,
            checkpoint_store=checkpoint_store,
            job_id=settings.job_id,
            poll_interval=settings.poll_interval,
            poll_timeout=settings.poll_timeout,
            max_retries=settings.max_retries,
            retry_backoff_base=settings.retry_backoff_base,
            max_retry_delay=settings.max_retry_delay,
        )

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        logger.info(
            f"Stopping poller for {self.stream.stream_arn}",
            extra={"job_id": self.job_id, "stream_arn": self.stream.stream_arn}
        )
        self._stop_event.set()

    def restore(self) -> bool:
        """
        Load the last checkpoint into the stream.

        Returns:
            True if a checkpoint was restored
        """
        if self.checkpoint_store is None:
            return False

        try:
            state = self.checkpoint_store.load_state(self.job_id, self.stream.stream_arn)
        except CheckpointError as e:
            logger.warning(
                f"Failed to load checkpoint, starting from LATEST: {e}",
                extra={"job_id": self.job_id, "stream_arn": self.stream.stream_arn}
            )
            return False

        if not state:
            return False

        self.stream.import_state(state)
        logger.info(
            f"Resuming {len(state)} shards from checkpoint",
            extra={"job_id": self.job_id, "stream_arn": self.stream.stream_arn}
        )
        return True

    async def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Poll until stopped (or until ``max_cycles`` successful cycles).

        Returns:
            Number of successful cycles

        Raises:
            StreamPollerError: After more than max_retries consecutive failures
            StreamError: On a non-retryable error (unknown event, bad state)
        """
        self._stop_event.clear()
        self.restore()
        if self.handle_signals:
            self._setup_signal_handlers()

        attempt = 0
        completed = 0
        try:
            while not self.stop_requested:
                if max_cycles is not None and completed >= max_cycles:
                    break

                try:
                    await self.run_cycle()
                except RETRYABLE_ERRORS as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.error(
                            "Max retries exceeded for poll cycles",
                            extra={
                                "job_id": self.job_id,
                                "stream_arn": self.stream.stream_arn,
                                "attempt": attempt,
                                "error": str(e)
                            }
                        )
                        raise StreamPollerError(f"Max retries exceeded: {e}") from e

                    await self._sleep(self._backoff(e, attempt))
                    continue

                attempt = 0
                completed += 1
                if max_cycles is None or completed < max_cycles:
                    await self._sleep(self.poll_interval)
        finally:
            if self.handle_signals:
                self._restore_signal_handlers()

        logger.info(
            f"Poller finished after {completed} cycles",
            extra={
                "job_id": self.job_id,
                "stream_arn": self.stream.stream_arn,
                "records_processed": self.records_processed
            }
        )
        return completed

    async def run_cycle(self) -> List[Dict[str, Any]]:
        """
        Run one poll cycle under the timeout and checkpoint afterwards.

        A cycle failing with a retryable error rolls the stream back to the
        state it had before the cycle, so iterators advanced by shards that
        did succeed are re-read on retry instead of skipping their records.
        """
        with PollCycleContext():
            snapshot = self.stream.export_state()
            try:
                records = await asyncio.wait_for(self.stream.poll_once(), timeout=self.poll_timeout)
            except RETRYABLE_ERRORS:
                self.stream.import_state(snapshot)
                logger.info(
                    f"Rolled back {len(snapshot)} shards after failed cycle",
                    extra={"job_id": self.job_id, "stream_arn": self.stream.stream_arn}
                )
                raise


            self.records_processed += len(records)
            self.cycles_completed += 1
            self._checkpoint()

            if records:
                logger.info(
                    f"Processed {len(records)} records",
                    extra={
                        "job_id": self.job_id,
                        "stream_arn": self.stream.stream_arn,
                        "total_processed": self.records_processed
                    }
                )
            return records

    def _checkpoint(self) -> None:
        if self.checkpoint_store is None:
            return
        try:
            self.checkpoint_store.save_state(
                self.job_id,
                self.stream.stream_arn,
                self.stream.export_state(),
                records_processed=self.records_processed
            )
        except CheckpointError as e:
            # next successful cycle checkpoints again
            logger.error(
                f"Failed to save checkpoint: {e}",
                extra={"job_id": self.job_id, "stream_arn": self.stream.stream_arn}
            )

    def _backoff(self, error: Exception, attempt: int) -> float:
        delay = min(self.retry_backoff_base ** attempt, self.max_retry_delay)
        logger.warning(
            f"Poll cycle failed, retrying in {delay}s (attempt {attempt}/{self.max_retries})",
            extra={
                "job_id": self.job_id,
                "stream_arn": self.stream.stream_arn,
                "attempt": attempt,
                "max_retries": self.max_retries,
                "delay_seconds": delay,
                "error": str(error),
                "error_type": type(error).__name__
            }
        )
        return delay

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early if stop() is called."""
        if seconds <= 0 or self.stop_requested:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self.stop)
            except (NotImplementedError, RuntimeError):
                logger.warning(
                    f"Cannot install handler for signal {signum}",
                    extra={"job_id": self.job_id}
                )

    def _restore_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass
