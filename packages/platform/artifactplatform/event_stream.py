"""WebSocket event streamer — pushes new write events to connected clients."""

from __future__ import annotations

import asyncio
import json

from fastapi import WebSocket

from artifactos.runtime.event_log import EventLog
from artifactos.schemas.events import BaseEvent


def event_to_dict(event: BaseEvent) -> dict:
    return {
        "seq": event.seq,
        "timestamp": event.timestamp.isoformat(),
        "event_type": event.event_type.value,
        "artifact_id": event.artifact_id,
        "payload": event.payload,
    }


class EventStreamer:
    """Streams events from an EventLog to WebSocket clients.

    Polls the event log at a configurable interval and pushes any new
    events (after the client's last-seen sequence number) as JSON. Search
    indexers and other downstream consumers subscribe this way.

    Args:
        poll_interval: Seconds between polls.
        max_idle_polls: Stop after this many consecutive empty polls.
            ``None`` streams until the client disconnects.
    """

    def __init__(self, *, poll_interval: float = 0.1, max_idle_polls: int | None = None) -> None:
        self._poll_interval = poll_interval
        self._max_idle_polls = max_idle_polls

    async def stream(self, websocket: WebSocket, event_log: EventLog, after_seq: int = 0) -> None:
        """Push every event with ``seq > after_seq`` as JSON, then keep following."""
        last_seq = after_seq
        idle_count = 0

        while True:
            events = event_log.query_after(last_seq, limit=500)
            if events:
                idle_count = 0
                for event in events:
                    await websocket.send_text(json.dumps(event_to_dict(event)))
                    if event.seq > last_seq:
                        last_seq = event.seq
            else:
                idle_count += 1
                if self._max_idle_polls is not None and idle_count >= self._max_idle_polls:
                    break

            await asyncio.sleep(self._poll_interval)
