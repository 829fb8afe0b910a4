"""
Client-side queue reconcilers.

Office dashboards, teacher consoles and parent apps keep a local copy of the
queue. Broadcast events are only a cue that something changed: on every event,
on reconnect and on a fixed interval the reconciler re-fetches the canonical
snapshot over HTTP and replaces its view. Event payload fields are never
applied locally, so missed, duplicated or reordered events cannot leave a
client out of sync for longer than one refresh.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from gopilot.config import settings
from gopilot.dismissal.events import EVENT_NAMES

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/dismissal"


class _WireModel(BaseModel):
    # Accept both snake_case and camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class QueueEntryView(_WireModel):
    """A queue entry as clients see it."""

    id: UUID
    session_id: UUID
    student_id: UUID
    status: str
    position: int = 0
    zone: str | None = None
    guardian_name: str | None = None
    hold_reason: str | None = None
    check_in_at: datetime | None = None
    called_at: datetime | None = None
    released_at: datetime | None = None
    dismissed_at: datetime | None = None
    first_name: str | None = None
    last_name: str | None = None
    homeroom_id: UUID | None = None
    homeroom_name: str | None = None

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class QueueStatsView(_WireModel):
    waiting: int = 0
    called: int = 0
    released: int = 0
    dismissed: int = 0
    held: int = 0
    total: int = 0
    avg_wait_seconds: float | None = None


class QueueEvent(_WireModel):
    event: str
    session_id: UUID | None = None
    entry_id: UUID | None = None
    student_id: UUID | None = None
    status: str | None = None


class QueueReconciler:
    """Keeps a role-scoped view of one session's queue in sync with the server.

    Args:
        client: HTTP client pointed at the API (base_url set)
        school_id: School the session belongs to
        session_id: Session to track
        user_id: Acting user, sent as X-User-Id
        homeroom_id: Teacher's homeroom, sent as X-Homeroom-Id
        refresh_interval: Seconds between periodic refreshes
    """

    role = "office_staff"

    def __init__(
        self,
        client: httpx.AsyncClient,
        school_id: UUID,
        session_id: UUID,
        *,
        user_id: UUID | None = None,
        homeroom_id: UUID | None = None,
        refresh_interval: float | None = None,
    ) -> None:
        self.client = client
        self.school_id = school_id
        self.session_id = session_id
        self.user_id = user_id
        self.homeroom_id = homeroom_id
        self.refresh_interval = refresh_interval or settings.CLIENT_REFRESH_INTERVAL_SECONDS

        self.entries: list[QueueEntryView] = []
        self.stats = QueueStatsView()
        self.last_refreshed_at: datetime | None = None
        self.refresh_count = 0

        self._lock = asyncio.Lock()
        self._pending = False

    @property
    def headers(self) -> dict[str, str]:
        headers = {"X-School-Id": str(self.school_id), "X-User-Role": self.role}
        if self.user_id:
            headers["X-User-Id"] = str(self.user_id)
        if self.homeroom_id:
            headers["X-Homeroom-Id"] = str(self.homeroom_id)
        return headers

    def queue_params(self) -> dict[str, str]:
        return {}

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def by_status(self, status: str) -> list[QueueEntryView]:
        return [e for e in self.entries if e.status == status]

    def find(self, student_id: UUID) -> QueueEntryView | None:
        for entry in self.entries:
            if entry.student_id == student_id and entry.status != "dismissed":
                return entry
        return None

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def _fetch(self) -> bool:
        base = f"{API_PREFIX}/sessions/{self.session_id}"
        try:
            queue_resp = await self.client.get(
                f"{base}/queue", params=self.queue_params(), headers=self.headers
            )
            queue_resp.raise_for_status()
            stats_resp = await self.client.get(f"{base}/stats", headers=self.headers)
            stats_resp.raise_for_status()

            entries = [QueueEntryView.model_validate(item) for item in queue_resp.json()]
            stats = QueueStatsView.model_validate(stats_resp.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.warning(f"Queue refresh failed for session {self.session_id}: {e}")
            return False

        self.entries = entries
        self.stats = stats
        self.last_refreshed_at = datetime.now().astimezone()
        self.refresh_count += 1
        return True

    async def refresh(self) -> bool:
        """Re-fetch the queue snapshot and stats.

        Calls made while a refresh is running are folded into one follow-up
        fetch. A failed fetch keeps the previous view.

        Returns:
            False if the last fetch failed
        """
        self._pending = True
        if self._lock.locked():
            return True

        async with self._lock:
            ok = True
            while self._pending:
                self._pending = False
                ok = await self._fetch()
            return ok

    async def handle_event(self, message: dict[str, Any]) -> bool:
        """React to a broadcast message.

        Returns:
            True if the message triggered a refresh
        """
        try:
            event = QueueEvent.model_validate(message)
        except ValidationError:
            logger.debug(f"Ignoring malformed message: {message!r}")
            return False

        if event.event not in EVENT_NAMES:
            return False
        if event.session_id is not None and event.session_id != self.session_id:
            return False

        await self.refresh()
        return True

    async def on_reconnect(self) -> bool:
        """Events sent while disconnected are lost; resync from scratch."""
        logger.info(f"Reconnected, resyncing session {self.session_id}")
        return await self.refresh()

    async def run(self, stop_event: asyncio.Event) -> None:
        """Refresh periodically until ``stop_event`` is set."""
        await self.refresh()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.refresh_interval)
            except TimeoutError:
                await self.refresh()


class OfficeReconciler(QueueReconciler):
    """Whole-school queue for the office dashboard."""

    role = "office_staff"


class TeacherReconciler(QueueReconciler):
    """One homeroom's queue for a teacher console."""

    role = "teacher"

    def __init__(
        self,
        client: httpx.AsyncClient,
        school_id: UUID,
        session_id: UUID,
        homeroom_id: UUID,
        **kwargs: Any,
    ) -> None:
        super().__init__(client, school_id, session_id, homeroom_id=homeroom_id, **kwargs)

    def queue_params(self) -> dict[str, str]:
        return {"homeroom_id": str(self.homeroom_id)}

    @property
    def awaiting_release(self) -> list[QueueEntryView]:
        """Students called to the curb who are still in class."""
        return self.by_status("called")


class ParentReconciler(QueueReconciler):
    """A parent's own children; the server enforces the scope."""

    role = "parent"

    def __init__(
        self,
        client: httpx.AsyncClient,
        school_id: UUID,
        session_id: UUID,
        user_id: UUID,
        **kwargs: Any,
    ) -> None:
        super().__init__(client, school_id, session_id, user_id=user_id, **kwargs)

    @property
    def ready_for_pickup(self) -> list[QueueEntryView]:
        return self.by_status("released")
