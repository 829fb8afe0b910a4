"""
Room-scoped broadcast hub.

Rooms are keyed by school and role:

- ``school:{school_id}:office``
- ``school:{school_id}:teacher:{homeroom_id}``
- ``school:{school_id}:parent:{parent_id}``

Delivery is best-effort and at-most-once: there is no replay and no ack.
A subscriber whose send fails is dropped. Clients recover by re-fetching.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """Anything that can receive a JSON message (e.g. a Starlette WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


def office_room(school_id: UUID | str) -> str:
    return f"school:{school_id}:office"


def teacher_room(school_id: UUID | str, homeroom_id: UUID | str) -> str:
    return f"school:{school_id}:teacher:{homeroom_id}"


def parent_room(school_id: UUID | str, parent_id: UUID | str) -> str:
    return f"school:{school_id}:parent:{parent_id}"


def rooms_for(
    school_id: UUID | str,
    role: str,
    *,
    user_id: UUID | str | None = None,
    homeroom_id: UUID | str | None = None,
) -> list[str]:
    """Rooms a connection with the given identity should join."""
    if role in ("admin", "office_staff"):
        return [office_room(school_id)]
    if role == "teacher" and homeroom_id:
        return [teacher_room(school_id, homeroom_id)]
    if role == "parent" and user_id:
        return [parent_room(school_id, user_id)]
    return []


class Broadcaster:
    """In-process room registry and fan-out."""

    def __init__(self) -> None:
        self._rooms: dict[str, set[Subscriber]] = defaultdict(set)

    def join(self, room: str, subscriber: Subscriber) -> None:
        self._rooms[room].add(subscriber)

    def leave(self, subscriber: Subscriber) -> None:
        """Remove a subscriber from every room."""
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(subscriber)
            if not members:
                del self._rooms[room]

    def subscribers(self, room: str) -> set[Subscriber]:
        return set(self._rooms.get(room, ()))

    async def publish(self, room: str, message: dict[str, Any]) -> int:
        """Send a message to every subscriber of a room.

        Returns:
            Number of subscribers the message was handed to
        """
        delivered = 0
        for subscriber in self.subscribers(room):
            try:
                await subscriber.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping subscriber in {room} after failed send: {e}")
                self.leave(subscriber)
                continue
            delivered += 1
        return delivered


# Process-wide hub used by the API and the WebSocket endpoint
broadcaster = Broadcaster()
