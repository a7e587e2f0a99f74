"""
Shard and page models for stream consumption.
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel, Field, ValidationError

from .errors import StreamStateError


class CursorStatus(str, Enum):
    """Cursor lifecycle of a shard."""
    PENDING = "pending"        # never requested
    ACTIVE = "active"          # holds a usable iterator
    THROTTLED = "throttled"    # retry next cycle, never pruned
    EXHAUSTED = "exhausted"    # drained or gone, pruned on next pass


class EventName(str, Enum):
    """Change kinds delivered by the provider."""
    INSERT = "INSERT"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


class ShardState(BaseModel):
    """Cursor state of one shard."""
    shard_id: str = Field(..., description="Provider-assigned shard identifier")
    status: CursorStatus = Field(default=CursorStatus.PENDING, description="Cursor lifecycle state")
    iterator: Optional[str] = Field(None, description="Shard iterator token")

    @property
    def has_iterator(self) -> bool:
        return self.status == CursorStatus.ACTIVE and bool(self.iterator)

    def activate(self, iterator: str) -> None:
        self.status = CursorStatus.ACTIVE
        self.iterator = iterator

    def exhaust(self) -> None:
        self.status = CursorStatus.EXHAUSTED
        self.iterator = None

    def throttle(self) -> None:
        # keeps whatever iterator the shard had, so a throttled fetch resumes in place
        self.status = CursorStatus.THROTTLED

    def rearm(self) -> None:
        """Make a throttled shard eligible again for resolution or fetch."""
        if self.status != CursorStatus.THROTTLED:
            return
        self.status = CursorStatus.ACTIVE if self.iterator else CursorStatus.PENDING

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "shard_id": self.shard_id,
            "iterator": self.iterator,
            "status": self.status.value,
        }

    @classmethod
    def from_snapshot(cls, shard_id: str, entry: Dict[str, Any]) -> "ShardState":
        """
        Build a shard from a snapshot entry.

        Entries without a ``status`` are read from the iterator alone:
        a token means active, an explicit None means exhausted, and a
        missing iterator key means pending.
        """
        if not isinstance(entry, dict):
            raise StreamStateError(f"Snapshot entry for shard {shard_id} must be a mapping")

        data = dict(entry)
        data.setdefault("shard_id", shard_id)
        if data["shard_id"] != shard_id:
            raise StreamStateError(
                f"Snapshot key {shard_id} does not match entry shard_id {data['shard_id']}"
            )

        if "status" not in data:
            if "iterator" not in data:
                data["status"] = CursorStatus.PENDING
            elif data["iterator"] is None:
                data["status"] = CursorStatus.EXHAUSTED
            else:
                data["status"] = CursorStatus.ACTIVE

        try:
            shard = cls.model_validate(data)
        except ValidationError as e:
            raise StreamStateError(f"Invalid snapshot entry for shard {shard_id}: {e}") from e

        if shard.status == CursorStatus.ACTIVE and not shard.iterator:
            raise StreamStateError(f"Active shard {shard_id} has no iterator")
        return shard


class ShardPage(BaseModel):
    """One page of a shard listing."""
    shard_ids: List[str] = Field(default_factory=list)
    last_evaluated_shard_id: Optional[str] = None


class RecordPage(BaseModel):
    """One batch of records read from a shard."""
    records: List[Dict[str, Any]] = Field(default_factory=list)
    next_iterator: Optional[str] = None
