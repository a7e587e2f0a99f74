"""
SQLAlchemy-backed checkpoint store for shard stream state.

Persists the snapshot returned by ShardStream.export_state() so a restarted
consumer can resume from the same shard iterators.
"""

from sqlalchemy import create_engine, Column, String, DateTime, JSON, BigInteger, UniqueConstraint, Index, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, OperationalError, IntegrityError
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import logging
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from .errors import CheckpointError
from .metrics import checkpoint_saves_total, checkpoint_loads_total

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ShardCheckpoint(Base):
    """
    Shard state checkpoint model.

    Stores:
    - job_id: Consumer identifier
    - stream_arn: Stream the state belongs to
    - shard_state: Snapshot from ShardStream.export_state() (JSON)
    - records_processed: Total records processed
    - created_at: First checkpoint time
    - updated_at: Last update time
    """
    __tablename__ = "shard_checkpoints"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    job_id = Column(String(255), nullable=False, index=True)
    stream_arn = Column(String(2048), nullable=False)
    shard_state = Column(JSON, nullable=False)
    records_processed = Column(BigInteger, default=0)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint('job_id', 'stream_arn', name='uq_shard_checkpoints_job_stream'),
        Index('idx_shard_checkpoints_updated_at', 'updated_at'),
    )


def validate_shard_state(state: Any) -> bool:
    """Check the snapshot is a mapping of shard id to entry carrying that id."""
    if not isinstance(state, dict):
        return False
    for shard_id, entry in state.items():
        if not isinstance(shard_id, str) or not isinstance(entry, dict):
            return False
        if entry.get("shard_id", shard_id) != shard_id:
            return False
    return True


class ShardStateStore:
    """
    Checkpoint store for shard stream state.

    Features:
    - ACID transactions
    - Automatic retry on transient failures
    - Connection pooling
    - Metrics instrumentation

    Thread Safety: YES (SQLAlchemy session per call)

    Example:
        >>> store = ShardStateStore(database_url)
        >>> store.save_state(job_id, stream_arn, stream.export_state())
        >>> stream.import_state(store.load_state(job_id, stream_arn) or {})
    """

    def __init__(self, database_url: str, pool_size: int = 5, max_overflow: int = 10):
        """
        Initialize checkpoint store.

        Args:
            database_url: SQLAlchemy connection URL
            pool_size: Connection pool size
            max_overflow: Max overflow connections

        Raises:
            CheckpointError: If database connection fails
        """
        try:
            engine_options: Dict[str, Any] = {
                "pool_pre_ping": True,
                "pool_recycle": 3600,
                "echo": False,
            }
            if not database_url.startswith("sqlite"):
                engine_options["pool_size"] = pool_size
                engine_options["max_overflow"] = max_overflow

            self.engine = create_engine(database_url, **engine_options)

            self.SessionLocal = sessionmaker(
                bind=self.engine,
                autoflush=False
            )

            Base.metadata.create_all(self.engine)

            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            logger.info("ShardStateStore initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize ShardStateStore: {e}")
            raise CheckpointError(f"Database connection failed: {e}") from e

    @classmethod
    def from_settings(cls, settings) -> "ShardStateStore":
        """Build a store from CheckpointSettings."""
        return cls(
            settings.database_url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(OperationalError),
        reraise=True
    )
    def _upsert(
        self,
        job_id: str,
        stream_arn: str,
        shard_state: Dict[str, Dict[str, Any]],
        records_processed: int
    ) -> None:
        session: Optional[Session] = None
        try:
            session = self.SessionLocal()

            with session.begin():
                checkpoint = session.query(ShardCheckpoint).filter_by(
                    job_id=job_id,
                    stream_arn=stream_arn
                ).with_for_update().first()

                if checkpoint:
                    checkpoint.shard_state = shard_state
                    checkpoint.records_processed = records_processed
                    checkpoint.updated_at = _utcnow()
                else:
                    checkpoint = ShardCheckpoint(
                        job_id=job_id,
                        stream_arn=stream_arn,
                        shard_state=shard_state,
                        records_processed=records_processed
                    )
                    session.add(checkpoint)
        except SQLAlchemyError:
            if session:
                session.rollback()
            raise
        finally:
            if session:
                session.close()

    def save_state(
        self,
        job_id: str,
        stream_arn: str,
        shard_state: Dict[str, Dict[str, Any]],
        records_processed: int = 0
    ) -> None:
        """
        Save shard state (upsert).

        Args:
            job_id: Consumer identifier
            stream_arn: Stream the state belongs to
            shard_state: Snapshot from ShardStream.export_state()
            records_processed: Total records processed so far

        Raises:
            CheckpointError: If save fails after retries
        """
        if not validate_shard_state(shard_state):
            checkpoint_saves_total.labels(status='invalid').inc()
            raise CheckpointError("Invalid shard state structure")

        try:
            self._upsert(job_id, stream_arn, shard_state, records_processed)

        except IntegrityError as e:
            logger.error(
                f"Integrity error saving checkpoint: {e}",
                extra={"job_id": job_id, "stream_arn": stream_arn}
            )
            checkpoint_saves_total.labels(status='error').inc()
            raise CheckpointError(f"Integrity error: {e}") from e

        except SQLAlchemyError as e:
            logger.error(
                f"Database error saving checkpoint: {e}",
                extra={"job_id": job_id, "stream_arn": stream_arn}
            )
            checkpoint_saves_total.labels(status='error').inc()
            raise CheckpointError(f"Database error: {e}") from e

        checkpoint_saves_total.labels(status='success').inc()
        logger.debug(
            f"Saved checkpoint for job {job_id}",
            extra={
                "job_id": job_id,
                "stream_arn": stream_arn,
                "shard_count": len(shard_state),
                "records_processed": records_processed
            }
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(OperationalError),
        reraise=True
    )
    def _fetch(self, job_id: str, stream_arn: str) -> Optional[ShardCheckpoint]:
        session: Optional[Session] = None
        try:
            session = self.SessionLocal()
            return session.query(ShardCheckpoint).filter_by(
                job_id=job_id,
                stream_arn=stream_arn
            ).first()
        finally:
            if session:
                session.close()

    def load_state(
        self,
        job_id: str,
        stream_arn: str
    ) -> Optional[Dict[str, Dict[str, Any]]]:
        """
        Load shard state for job+stream.

        Returns:
            Shard state snapshot if one exists and is well-formed, None otherwise

        Raises:
            CheckpointError: If load fails after retries
        """
        try:
            checkpoint = self._fetch(job_id, stream_arn)
        except SQLAlchemyError as e:
            logger.error(
                f"Database error loading checkpoint: {e}",
                extra={"job_id": job_id, "stream_arn": stream_arn}
            )
            checkpoint_loads_total.labels(status='error').inc()
            raise CheckpointError(f"Database error: {e}") from e

        if not checkpoint:
            checkpoint_loads_total.labels(status='not_found').inc()
            logger.debug(
                f"No checkpoint found for job {job_id}",
                extra={"job_id": job_id, "stream_arn": stream_arn}
            )
            return None

        shard_state = checkpoint.shard_state
        if not validate_shard_state(shard_state):
            logger.warning(
                "Invalid shard state structure in checkpoint",
                extra={"job_id": job_id, "stream_arn": stream_arn}
            )
            checkpoint_loads_total.labels(status='invalid').inc()
            return None

        checkpoint_loads_total.labels(status='success').inc()
        logger.debug(
            f"Loaded checkpoint for job {job_id}",
            extra={
                "job_id": job_id,
                "stream_arn": stream_arn,
                "shard_count": len(shard_state),
                "records_processed": checkpoint.records_processed
            }
        )
        return {shard_id: dict(entry) for shard_id, entry in shard_state.items()}

    def delete_state(self, job_id: str, stream_arn: str) -> None:
        """Delete the checkpoint for job+stream (used for consumer reset)."""
        session: Optional[Session] = None
        try:
            session = self.SessionLocal()

            with session.begin():
                checkpoint = session.query(ShardCheckpoint).filter_by(
                    job_id=job_id,
                    stream_arn=stream_arn
                ).first()

                if checkpoint:
                    session.delete(checkpoint)
                    logger.info(
                        f"Deleted checkpoint for job {job_id}",
                        extra={"job_id": job_id, "stream_arn": stream_arn}
                    )
                else:
                    logger.debug(
                        f"No checkpoint to delete for job {job_id}",
                        extra={"job_id": job_id, "stream_arn": stream_arn}
                    )

        except SQLAlchemyError as e:
            if session:
                session.rollback()
            logger.error(
                f"Database error deleting checkpoint: {e}",
                extra={"job_id": job_id, "stream_arn": stream_arn}
            )
            raise CheckpointError(f"Database error: {e}") from e

        finally:
            if session:
                session.close()

    def list_checkpoints(self, job_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List checkpoints (metadata only), optionally for one job."""
        session: Optional[Session] = None
        try:
            session = self.SessionLocal()
            query = session.query(ShardCheckpoint)
            if job_id is not None:
                query = query.filter_by(job_id=job_id)
            return [
                {
                    "job_id": checkpoint.job_id,
                    "stream_arn": checkpoint.stream_arn,
                    "shard_count": len(checkpoint.shard_state or {}),
                    "records_processed": checkpoint.records_processed,
                    "updated_at": checkpoint.updated_at,
                }
                for checkpoint in query.order_by(ShardCheckpoint.updated_at.desc()).all()
            ]
        except SQLAlchemyError as e:
            logger.error(f"Database error listing checkpoints: {e}")
            raise CheckpointError(f"Database error: {e}") from e
        finally:
            if session:
                session.close()
