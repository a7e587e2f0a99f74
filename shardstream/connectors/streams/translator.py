"""
Turns raw change records into listener notifications.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import UnknownEventError
from .listeners import ShardStreamListener
from .metrics import stream_records_emitted
from .models import EventName

logger = logging.getLogger(__name__)

Decoder = Callable[[Mapping[str, Any]], Any]


class RecordTranslator:
    """
    Decodes keys and images of each record and emits one event per record.

    Without a decoder, keys and images are handed to listeners in the raw
    provider shape.
    """

    def __init__(
        self,
        listeners: ShardStreamListener,
        decode: Optional[Decoder] = None,
        stream_arn: str = "",
    ):
        self.listeners = listeners
        self.decode = decode
        self.stream_arn = stream_arn

    def transform(self, value: Optional[Mapping[str, Any]]) -> Any:
        if value is None:
            return None
        if self.decode is None:
            return value
        return self.decode(value)

    def emit(self, records: List[Dict[str, Any]]) -> None:
        """
        Emit events for ``records`` in the given order.

        Raises:
            UnknownEventError: On an event name outside INSERT/MODIFY/REMOVE
        """
        for record in records:
            event_name = record.get("eventName")
            payload = record.get("dynamodb") or {}

            keys = self.transform(payload.get("Keys"))
            new_record = self.transform(payload.get("NewImage"))
            old_record = self.transform(payload.get("OldImage"))

            if event_name == EventName.INSERT.value:
                self.listeners.on_insert(new_record, keys)
            elif event_name == EventName.MODIFY.value:
                self.listeners.on_modify(new_record, old_record, keys)
            elif event_name == EventName.REMOVE.value:
                self.listeners.on_remove(old_record, keys)
            else:
                logger.error(
                    f"Unknown stream event {event_name}",
                    extra={"stream_arn": self.stream_arn, "event_id": record.get("eventID")}
                )
                error = UnknownEventError(f"unknown stream event {event_name}")
                self.listeners.on_error(error)
                raise error

            stream_records_emitted.labels(stream=self.stream_arn, event=event_name).inc()
