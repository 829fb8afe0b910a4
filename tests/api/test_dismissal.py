"""
Tests for Dismissal API Endpoints

Drives the app through httpx with the database dependency overridden.
"""

from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from gopilot.core.database import get_db
from gopilot.main import app
from gopilot.realtime.broadcast import broadcaster, office_room, parent_room, teacher_room

BASE = "/api/v1/dismissal"


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncClient:
    """Create test client with database dependency override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def headers(roster: SimpleNamespace) -> SimpleNamespace:
    school = str(roster.school.id)
    return SimpleNamespace(
        office={"X-School-Id": school, "X-User-Role": "office_staff", "X-User-Id": str(uuid4())},
        teacher3={
            "X-School-Id": school,
            "X-User-Role": "teacher",
            "X-User-Id": str(roster.hr3.teacher_id),
            "X-Homeroom-Id": str(roster.hr3.id),
        },
        parent={"X-School-Id": school, "X-User-Role": "parent", "X-User-Id": str(roster.parent_id)},
    )


@pytest.fixture
async def session_id(client: AsyncClient, headers) -> str:
    response = await client.post(f"{BASE}/sessions", headers=headers.office)
    assert response.status_code == 200
    return response.json()["id"]


@pytest.fixture
def listeners(roster, recorder_factory):
    """Recording subscribers joined to the app's broadcaster."""
    school_id = roster.school.id
    subs = SimpleNamespace(
        office=recorder_factory(),
        teacher3=recorder_factory(),
        parent=recorder_factory(),
    )
    broadcaster.join(office_room(school_id), subs.office)
    broadcaster.join(teacher_room(school_id, roster.hr3.id), subs.teacher3)
    broadcaster.join(parent_room(school_id, roster.parent_id), subs.parent)
    yield subs
    for sub in vars(subs).values():
        broadcaster.leave(sub)


async def check_in(client, headers, session_id, car="142") -> dict:
    response = await client.post(
        f"{BASE}/sessions/{session_id}/check-in-by-number",
        json={"car_number": car},
        headers=headers.office,
    )
    assert response.status_code == 200, response.text
    return response.json()


def entry_for(data: dict, student_id: UUID) -> dict:
    return next(e for e in data["entries"] if e["student_id"] == str(student_id))


class TestActorHeaders:
    async def test_missing_headers(self, client: AsyncClient, roster):
        response = await client.post(f"{BASE}/sessions")
        assert response.status_code == 401

    async def test_parent_without_user(self, client: AsyncClient, roster):
        response = await client.post(
            f"{BASE}/sessions",
            headers={"X-School-Id": str(roster.school.id), "X-User-Role": "parent"},
        )
        assert response.status_code == 401

    async def test_unknown_school(self, client: AsyncClient, roster):
        response = await client.post(
            f"{BASE}/sessions",
            headers={"X-School-Id": str(uuid4()), "X-User-Role": "office_staff"},
        )
        assert response.status_code == 404


class TestSessions:
    async def test_get_or_create_session(self, client: AsyncClient, headers, session_id):
        again = await client.post(f"{BASE}/sessions", headers=headers.teacher3)

        assert again.status_code == 200
        assert again.json()["id"] == session_id
        assert again.json()["status"] == "active"

    async def test_get_session(self, client: AsyncClient, headers, session_id):
        response = await client.get(f"{BASE}/sessions/{session_id}", headers=headers.parent)
        assert response.status_code == 200
        assert response.json()["id"] == session_id

    async def test_get_unknown_session(self, client: AsyncClient, headers, roster):
        response = await client.get(f"{BASE}/sessions/{uuid4()}", headers=headers.office)
        assert response.status_code == 404

    async def test_pause_blocks_check_in_and_calls(
        self, client: AsyncClient, headers, session_id
    ):
        paused = await client.put(
            f"{BASE}/sessions/{session_id}", json={"status": "paused"}, headers=headers.office
        )
        assert paused.status_code == 200
        assert paused.json()["status"] == "paused"
        assert paused.json()["paused_at"] is not None

        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-number",
            json={"car_number": "142"},
            headers=headers.office,
        )
        assert response.status_code == 409

        response = await client.post(
            f"{BASE}/sessions/{session_id}/call-batch", json={"count": 2}, headers=headers.office
        )
        assert response.status_code == 409

        resumed = await client.put(
            f"{BASE}/sessions/{session_id}", json={"status": "active"}, headers=headers.office
        )
        assert resumed.json()["status"] == "active"

    async def test_teacher_cannot_pause(self, client: AsyncClient, headers, session_id):
        response = await client.put(
            f"{BASE}/sessions/{session_id}", json={"status": "paused"}, headers=headers.teacher3
        )
        assert response.status_code == 403

    async def test_invalid_status(self, client: AsyncClient, headers, session_id):
        response = await client.put(
            f"{BASE}/sessions/{session_id}", json={"status": "closed"}, headers=headers.office
        )
        assert response.status_code == 422


class TestCheckIn:
    async def test_car_check_in(self, client: AsyncClient, headers, roster, session_id, listeners):
        data = await check_in(client, headers, session_id)

        assert data["outcome"] == "created"
        assert data["already_submitted"] is False
        assert data["created_count"] == 2
        assert data["student_names"] == ["Alice Smith", "Bob Smith"]
        alice = entry_for(data, roster.alice.id)
        assert alice["status"] == "waiting"
        assert alice["first_name"] == "Alice"
        assert alice["guardian_name"] == "Smith Family"

        assert listeners.office.events().count("student:checked-in") == 2
        assert listeners.teacher3.events() == ["student:checked-in"]
        assert len(listeners.parent.messages) == 2

    async def test_repeat_car_check_in(
        self, client: AsyncClient, headers, session_id, listeners
    ):
        await check_in(client, headers, session_id)
        listeners.office.messages.clear()

        data = await check_in(client, headers, session_id)

        assert data["outcome"] == "already_submitted"
        assert data["already_submitted"] is True
        assert data["created_count"] == 0
        assert len(data["existing"]) == 2
        # Nothing changed, nothing published
        assert listeners.office.messages == []

    async def test_qr_method(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-number",
            json={"car_number": "142", "method": "qr"},
            headers=headers.parent,
        )

        assert response.status_code == 200
        assert {e["check_in_method"] for e in response.json()["entries"]} == {"qr"}

    async def test_unknown_car(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-number",
            json={"car_number": "000"},
            headers=headers.office,
        )
        assert response.status_code == 404

    async def test_car_without_riders(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-number",
            json={"car_number": "999"},
            headers=headers.office,
        )
        assert response.status_code == 400

    async def test_blank_car_number(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-number",
            json={"car_number": "   "},
            headers=headers.office,
        )
        assert response.status_code == 422

    async def test_bus_check_in(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-bus",
            json={"bus_number": "12"},
            headers=headers.office,
        )

        assert response.status_code == 200
        assert response.json()["student_names"] == ["Fay Lee", "Gus Park"]

    async def test_release_all_walkers(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/release-walkers", headers=headers.office
        )

        assert response.status_code == 200
        data = response.json()
        assert data["created_count"] == 3
        assert {e["status"] for e in data["entries"]} == {"released"}

    async def test_release_walkers_by_grade(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/release-walkers-by-filter",
            json={"filter_type": "grade", "filter_values": ["3", "4"]},
            headers=headers.office,
        )

        assert response.status_code == 200
        assert response.json()["student_names"] == ["Hana Kim"]

    async def test_release_walkers_no_match(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/release-walkers-by-filter",
            json={"filter_type": "grade", "filter_values": ["K"]},
            headers=headers.office,
        )

        assert response.status_code == 200
        assert response.json()["created_count"] == 0
        assert response.json()["already_submitted"] is False

    async def test_release_walkers_bad_homeroom_id(
        self, client: AsyncClient, headers, session_id
    ):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/release-walkers-by-filter",
            json={"filter_type": "homeroom", "filter_values": ["not-a-uuid"]},
            headers=headers.office,
        )
        assert response.status_code == 422


class TestParentAppCheckIn:
    async def test_parent_checks_in_own_children(
        self, client: AsyncClient, headers, roster, session_id, listeners
    ):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in", headers=headers.parent
        )

        assert response.status_code == 200
        data = response.json()
        assert data["created_count"] == 2
        assert data["student_names"] == ["Alice Smith", "Bob Smith"]
        assert {e["check_in_method"] for e in data["entries"]} == {"app"}
        assert {e["guardian_id"] for e in data["entries"]} == {str(roster.parent_id)}
        assert listeners.parent.events() == ["student:checked-in", "student:checked-in"]

        again = await client.post(
            f"{BASE}/sessions/{session_id}/check-in",
            json={"guardian_name": "Pat Smith"},
            headers=headers.parent,
        )
        assert again.json()["already_submitted"] is True

    async def test_parent_without_children(self, client: AsyncClient, headers, session_id):
        stranger = {**headers.parent, "X-User-Id": str(uuid4())}

        response = await client.post(f"{BASE}/sessions/{session_id}/check-in", headers=stranger)

        assert response.status_code == 400

    async def test_office_cannot_use_parent_app(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in", headers=headers.office
        )
        assert response.status_code == 403

    async def test_parent_cannot_check_in_other_family(
        self, client: AsyncClient, headers, session_id, listeners
    ):
        stranger = {**headers.parent, "X-User-Id": str(uuid4())}

        response = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-number",
            json={"car_number": "142"},
            headers=stranger,
        )

        assert response.status_code == 403
        assert listeners.office.messages == []


class TestTransitions:
    async def test_call_release_dismiss(
        self, client: AsyncClient, headers, roster, session_id, listeners
    ):
        data = await check_in(client, headers, session_id)
        alice_id = entry_for(data, roster.alice.id)["id"]
        for sub in vars(listeners).values():
            sub.messages.clear()

        called = await client.post(
            f"{BASE}/sessions/{session_id}/call",
            json={"queue_id": alice_id, "zone": "B"},
            headers=headers.office,
        )
        assert called.status_code == 200
        assert called.json()["changed"] is True
        assert called.json()["entry"]["zone"] == "B"
        assert listeners.office.events() == ["student:called", "queue:updated"]
        assert listeners.teacher3.events() == ["student:called"]

        released = await client.post(f"{BASE}/queue/{alice_id}/release", headers=headers.teacher3)
        assert released.status_code == 200
        assert released.json()["entry"]["status"] == "released"

        again = await client.post(f"{BASE}/queue/{alice_id}/release", headers=headers.office)
        assert again.status_code == 200
        assert again.json()["changed"] is False

        dismissed = await client.post(f"{BASE}/queue/{alice_id}/dismiss", headers=headers.parent)
        assert dismissed.status_code == 200
        assert dismissed.json()["entry"]["status"] == "dismissed"
        assert listeners.parent.events()[-1] == "student:dismissed"

        rejected = await client.post(f"{BASE}/queue/{alice_id}/dismiss", headers=headers.parent)
        assert rejected.status_code == 409
        assert rejected.json()["current"] == "dismissed"
        assert rejected.json()["transition"] == "dismiss"

    async def test_call_unknown_zone(self, client: AsyncClient, headers, roster, session_id):
        data = await check_in(client, headers, session_id)

        response = await client.post(
            f"{BASE}/sessions/{session_id}/call",
            json={"queue_id": entry_for(data, roster.alice.id)["id"], "zone": "Z"},
            headers=headers.office,
        )
        assert response.status_code == 404

    async def test_unknown_entry(self, client: AsyncClient, headers, session_id):
        response = await client.post(f"{BASE}/queue/{uuid4()}/release", headers=headers.office)
        assert response.status_code == 404

    async def test_teacher_other_homeroom(self, client: AsyncClient, headers, roster, session_id):
        data = await check_in(client, headers, session_id)
        bob_id = entry_for(data, roster.bob.id)["id"]

        response = await client.post(f"{BASE}/queue/{bob_id}/release", headers=headers.teacher3)
        assert response.status_code == 403

    async def test_hold_and_clear(
        self, client: AsyncClient, headers, roster, session_id, listeners
    ):
        data = await check_in(client, headers, session_id)
        alice_id = entry_for(data, roster.alice.id)["id"]
        for sub in vars(listeners).values():
            sub.messages.clear()

        missing_reason = await client.post(
            f"{BASE}/queue/{alice_id}/hold", json={"reason": ""}, headers=headers.office
        )
        assert missing_reason.status_code == 422

        held = await client.post(
            f"{BASE}/queue/{alice_id}/hold", json={"reason": "custody"}, headers=headers.office
        )
        assert held.status_code == 200
        assert held.json()["entry"]["status"] == "held"
        assert held.json()["entry"]["hold_reason"] == "custody"

        teacher_clear = await client.post(
            f"{BASE}/queue/{alice_id}/clear-hold", headers=headers.teacher3
        )
        assert teacher_clear.status_code == 403

        cleared = await client.post(f"{BASE}/queue/{alice_id}/clear-hold", headers=headers.office)
        assert cleared.json()["entry"]["status"] == "waiting"
        assert listeners.office.events() == ["queue:updated", "queue:updated"]
        assert listeners.teacher3.messages == []
        assert listeners.parent.messages == []


class TestBatches:
    async def test_dismiss_batch_partial(self, client: AsyncClient, headers, session_id):
        cars = await check_in(client, headers, session_id)
        bus = await client.post(
            f"{BASE}/sessions/{session_id}/check-in-by-bus",
            json={"bus_number": "12"},
            headers=headers.office,
        )
        walker = await client.post(
            f"{BASE}/sessions/{session_id}/release-walkers-by-filter",
            json={"filter_type": "grade", "filter_values": ["3"]},
            headers=headers.office,
        )
        ids = [e["id"] for e in cars["entries"] + bus.json()["entries"] + walker.json()["entries"]]
        assert len(ids) == 5
        await client.post(f"{BASE}/queue/{ids[0]}/dismiss", headers=headers.office)

        response = await client.post(
            f"{BASE}/queue/dismiss-batch", json={"queue_ids": ids}, headers=headers.office
        )

        assert response.status_code == 200
        data = response.json()
        assert data["requested"] == 5
        assert data["succeeded"] == 4
        assert data["skipped_ids"] == [ids[0]]

    async def test_release_batch(self, client: AsyncClient, headers, session_id):
        cars = await check_in(client, headers, session_id)
        ids = [e["id"] for e in cars["entries"]]

        response = await client.post(
            f"{BASE}/queue/release-batch", json={"queue_ids": ids}, headers=headers.office
        )

        assert response.json()["succeeded"] == 2
        assert {e["status"] for e in response.json()["entries"]} == {"released"}

    async def test_empty_batch_rejected(self, client: AsyncClient, headers, session_id):
        response = await client.post(
            f"{BASE}/queue/release-batch", json={"queue_ids": []}, headers=headers.office
        )
        assert response.status_code == 422

    async def test_batch_requires_office(self, client: AsyncClient, headers, session_id):
        cars = await check_in(client, headers, session_id)

        response = await client.post(
            f"{BASE}/queue/dismiss-batch",
            json={"queue_ids": [cars["entries"][0]["id"]]},
            headers=headers.parent,
        )
        assert response.status_code == 403

    async def test_call_batch(self, client: AsyncClient, headers, session_id, listeners):
        await check_in(client, headers, session_id)
        listeners.office.messages.clear()

        response = await client.post(
            f"{BASE}/sessions/{session_id}/call-batch",
            json={"count": 1, "zone": "B"},
            headers=headers.office,
        )

        assert response.status_code == 200
        assert response.json()["succeeded"] == 1
        assert response.json()["entries"][0]["position"] == 1
        assert listeners.office.events() == ["student:called", "queue:updated"]

    async def test_call_batch_without_body(self, client: AsyncClient, headers, session_id):
        await check_in(client, headers, session_id)

        response = await client.post(
            f"{BASE}/sessions/{session_id}/call-batch", headers=headers.office
        )

        assert response.status_code == 200
        assert response.json()["succeeded"] == 2

    async def test_dismiss_filtered(self, client: AsyncClient, headers, roster, session_id):
        await check_in(client, headers, session_id)

        response = await client.post(
            f"{BASE}/sessions/{session_id}/dismiss-filtered",
            json={"homeroom_id": str(roster.hr4.id)},
            headers=headers.office,
        )

        assert response.status_code == 200
        assert [e["student_id"] for e in response.json()["entries"]] == [str(roster.bob.id)]


class TestReads:
    async def test_queue_enriched(self, client: AsyncClient, headers, roster, session_id):
        await check_in(client, headers, session_id)

        response = await client.get(f"{BASE}/sessions/{session_id}/queue", headers=headers.office)

        assert response.status_code == 200
        entries = response.json()
        assert [e["position"] for e in entries] == [1, 2]
        alice = next(e for e in entries if e["student_id"] == str(roster.alice.id))
        assert alice["homeroom_name"] == "Ms. Rivera"
        assert alice["dismissal_type"] == "car"

    async def test_queue_status_filter(self, client: AsyncClient, headers, session_id):
        await check_in(client, headers, session_id)

        response = await client.get(
            f"{BASE}/sessions/{session_id}/queue",
            params={"status": "called"},
            headers=headers.office,
        )
        assert response.json() == []

        bad = await client.get(
            f"{BASE}/sessions/{session_id}/queue",
            params={"status": "delayed"},
            headers=headers.office,
        )
        assert bad.status_code == 422

    async def test_teacher_queue_scope(self, client: AsyncClient, headers, roster, session_id):
        await check_in(client, headers, session_id)

        response = await client.get(
            f"{BASE}/sessions/{session_id}/queue", headers=headers.teacher3
        )

        assert [e["student_id"] for e in response.json()] == [str(roster.alice.id)]

    async def test_teacher_must_send_homeroom(self, client: AsyncClient, headers, session_id):
        no_homeroom = {k: v for k, v in headers.teacher3.items() if k != "X-Homeroom-Id"}

        response = await client.get(f"{BASE}/sessions/{session_id}/queue", headers=no_homeroom)

        assert response.status_code == 403

    async def test_parent_queue_scope(self, client: AsyncClient, headers, roster, session_id):
        await check_in(client, headers, session_id)
        await check_in(client, headers, session_id, car="77")
        stranger = {**headers.parent, "X-User-Id": str(uuid4())}

        mine = await client.get(f"{BASE}/sessions/{session_id}/queue", headers=headers.parent)
        theirs = await client.get(f"{BASE}/sessions/{session_id}/queue", headers=stranger)

        assert len(mine.json()) == 2
        assert theirs.json() == []

    async def test_stats(self, client: AsyncClient, headers, session_id):
        data = await check_in(client, headers, session_id)
        first_id = data["entries"][0]["id"]
        await client.post(f"{BASE}/queue/{first_id}/dismiss", headers=headers.office)

        response = await client.get(f"{BASE}/sessions/{session_id}/stats", headers=headers.office)

        assert response.status_code == 200
        stats = response.json()
        assert stats["waiting"] == 1
        assert stats["dismissed"] == 1
        assert stats["total"] == 2
        assert stats["avg_wait_seconds"] is not None

    async def test_activity(self, client: AsyncClient, headers, session_id):
        await check_in(client, headers, session_id)

        response = await client.get(
            f"{BASE}/sessions/{session_id}/activity", headers=headers.office
        )
        denied = await client.get(
            f"{BASE}/sessions/{session_id}/activity", headers=headers.teacher3
        )

        assert response.status_code == 200
        assert response.json()[0]["action"] == "check_in"
        assert response.json()[0]["details"]["key"] == "142"
        assert denied.status_code == 403
