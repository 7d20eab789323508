"""Per-room fan-out of committed game events.

Every subscriber owns a bounded queue. ``broadcast`` only ever does
``put_nowait`` so a slow reader can never hold up the game session or any
other reader; a reader whose queue overflows is dropped and its stream ends.
Events carry a per-room sequence number assigned in broadcast order, which is
commit order because the session broadcasts while holding the room lock.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any
from uuid import uuid4

from pydantic import BaseModel

from cardroom.core.config import get_settings
from cardroom.schemas.events import RoomEventType

logger = logging.getLogger("cardroom.realtime.hub")


@dataclass(frozen=True)
class RoomEvent:
    room_id: str
    sequence: int
    kind: RoomEventType
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_sse(self) -> str:
        data = json.dumps(self.payload, separators=(",", ":"), default=str)
        return f"id: {self.sequence}\nevent: {self.kind.value}\ndata: {data}\n\n"


class Subscription:
    def __init__(self, room_id: str, queue_size: int) -> None:
        self.id = uuid4().hex
        self.room_id = room_id
        self._queue: asyncio.Queue[RoomEvent | None] = asyncio.Queue(maxsize=max(1, queue_size))
        self.closed = False

    def offer(self, event: RoomEvent) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # The sentinel must fit even when the queue overflowed.
        while True:
            try:
                self._queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    async def next_event(self, timeout: float | None = None) -> RoomEvent | None:
        """Wait for the next event; ``None`` means the stream ended.

        Raises ``asyncio.TimeoutError`` when ``timeout`` elapses first.
        """
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> RoomEvent:
        event = await self.next_event()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBroadcastHub:
    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._rooms: dict[str, dict[str, Subscription]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = Lock()

    def subscribe(self, room_id: str) -> Subscription:
        subscription = Subscription(room_id, self._queue_size)
        with self._lock:
            self._rooms.setdefault(room_id, {})[subscription.id] = subscription
        logger.debug("Subscriber %s watching room %s", subscription.id, room_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            room_subscriptions = self._rooms.get(subscription.room_id)
            if room_subscriptions is not None:
                room_subscriptions.pop(subscription.id, None)
                if not room_subscriptions:
                    self._rooms.pop(subscription.room_id, None)
                    self._sequences.pop(subscription.room_id, None)
        subscription.close()

    def subscriber_count(self, room_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(room_id, {}))

    def broadcast(
        self,
        room_id: str,
        kind: RoomEventType,
        payload: BaseModel | dict[str, Any],
    ) -> RoomEvent:
        body = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
        with self._lock:
            sequence = self._sequences.get(room_id, 0) + 1
            subscribers = list(self._rooms.get(room_id, {}).values())
            # Only watched rooms keep a counter; it restarts once the last watcher leaves.
            if subscribers:
                self._sequences[room_id] = sequence
            event = RoomEvent(room_id=room_id, sequence=sequence, kind=kind, payload=body)

        dropped = [subscription for subscription in subscribers if not subscription.offer(event)]
        for subscription in dropped:
            logger.warning(
                "Dropping subscriber %s of room %s: queue full at sequence %s",
                subscription.id,
                room_id,
                sequence,
            )
            self.unsubscribe(subscription)
        return event

    def close_room(self, room_id: str) -> None:
        with self._lock:
            subscribers = list(self._rooms.pop(room_id, {}).values())
            self._sequences.pop(room_id, None)
        for subscription in subscribers:
            subscription.close()


room_hub = EventBroadcastHub(queue_size=get_settings().subscriber_queue_size)
