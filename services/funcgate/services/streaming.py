"""
Server-Sent Events emitter.

Formats events for one streaming invocation and queues them for the
``StreamingResponse`` body. Writes may come from the event loop or from a
worker thread running a sync function; both go through
``loop.call_soon_threadsafe`` so ordering is preserved.
"""

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, FrozenSet, Optional, Set

from services.funcgate.core.utils import format_header_key
from services.funcgate.models.schema import FunctionDefinition
from services.funcgate.services import type_schema
from services.funcgate.services.mode_resolver import (
    BEGIN_EVENT,
    ERROR_EVENT,
    RESPONSE_EVENT,
    STDERR_EVENT,
    STDOUT_EVENT,
)

logger = logging.getLogger("funcgate.streaming")

SSE_CONTENT_TYPE = "text/event-stream; charset=utf-8"
DATA_CHUNK_SIZE = 1024
RESERVED_EVENTS = frozenset({BEGIN_EVENT, STDOUT_EVENT, STDERR_EVENT, ERROR_EVENT})

_CLOSE = None


def iso_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def format_event(event: str, data: str, event_id: Optional[str] = None) -> str:
    chunks = [f"data: {data[i:i + DATA_CHUNK_SIZE]}" for i in range(0, len(data), DATA_CHUNK_SIZE)]
    lines = ""
    if event_id:
        lines += f"id: {event_id}\n"
    if event:
        lines += f"event: {event}\n"
    return lines + "\n".join(chunks) + "\n\n"


class ServerSentEmitter:
    """
    Event sink for one execution.

    Args:
        definition: definition whose ``streams`` payloads are validated against
        execution_uuid: suffix of every event id
        events: event names written to the body; others are dropped
        loop: event loop owning the queue (defaults to the running loop)
    """

    def __init__(
        self,
        definition: FunctionDefinition,
        execution_uuid: str,
        events: FrozenSet[str],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.definition = definition
        self.execution_uuid = execution_uuid
        self.events = events
        self.loop = loop or asyncio.get_running_loop()
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.closed = False
        self._ids: Set[str] = set()
        self._lock = threading.Lock()

    # ===========================================
    # Event ids & queueing
    # ===========================================

    def next_id(self) -> str:
        time = iso_timestamp()[:-1]
        counter = 0
        event_id = f"{time}{counter:06d}Z/{self.execution_uuid}"
        while event_id in self._ids:
            counter += 1
            event_id = f"{time}{counter:06d}Z/{self.execution_uuid}"
        self._ids.add(event_id)
        return event_id

    def _put(self, item: Optional[str]) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, item)

    def emit(self, event: str, data: str, with_id: bool = True) -> None:
        with self._lock:
            if self.closed or event not in self.events:
                return
            event_id = self.next_id() if with_id else None
            self._put(format_event(event, data, event_id))

    # ===========================================
    # Sink interface
    # ===========================================

    def begin(self) -> None:
        self.emit(BEGIN_EVENT, json.dumps(iso_timestamp()))

    def log(self, event: str, text: str) -> None:
        self.emit(event, json.dumps(text))

    def stream_error(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        logger.warning(f"Stream error in {self.definition.name}: {message}")
        payload: Dict[str, Any] = {"type": "StreamError", "message": message}
        if details is not None:
            payload["details"] = details
        self.emit(ERROR_EVENT, json.dumps(payload))

    def write(self, channel: str, value: Any) -> None:
        """Validate ``value`` against the declared stream and emit it."""
        spec = self.definition.streams.get(channel)
        if spec is None:
            if channel in RESERVED_EVENTS:
                self.emit(channel, type_schema.dumps(value))
                return
            self.stream_error(
                f'No such stream "{channel}" in function definition. '
                f'Please use the syntax "@stream {{string}} name description" '
                f"after @params to define a stream."
            )
            return
        result, details = type_schema.validate_slot(spec, type_schema.jsonify(value), root=spec.name or "$")
        if details is not None:
            self.stream_error(
                f'Stream Parameter Error: "{channel}". Please make sure the data type you are '
                f"sending to the stream matches the definition for the stream in the function.",
                {channel: details},
            )
            return
        self.emit(channel, type_schema.dumps(result))

    def respond(self, status_code: int, headers: Dict[str, str], body: Any) -> None:
        """Emit the final ``@response`` event and close the stream."""
        if isinstance(body, (bytes, bytearray)):
            body_text = type_schema.dumps(bytes(body))
        else:
            body_text = body if isinstance(body, str) else type_schema.dumps(body)
        payload = {
            "statusCode": status_code,
            "headers": {format_header_key(key): value for key, value in headers.items()},
            "body": body_text,
        }
        self.emit(RESPONSE_EVENT, json.dumps(payload), with_id=False)
        self.close()

    def close(self) -> None:
        with self._lock:
            if not self.closed:
                self.closed = True
                self._put(_CLOSE)

    async def iter_events(self) -> AsyncIterator[str]:
        while True:
            item = await self.queue.get()
            if item is _CLOSE:
                break
            yield item
