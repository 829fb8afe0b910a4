"""
Pytest Configuration and Fixtures

Shared test fixtures for unit, integration and API tests.
"""

import os
import tempfile
from types import SimpleNamespace
from typing import Any
from uuid import uuid4

# Point the app-level engine at a throwaway SQLite file before gopilot is imported
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{tempfile.gettempdir()}/gopilot_app_test.db"
)

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.orm import configure_mappers  # noqa: E402

from gopilot.core.auth import Actor  # noqa: E402
from gopilot.core.database import build_engine  # noqa: E402
from gopilot.core.models import (  # noqa: E402
    Base,
    FamilyGroup,
    FamilyGroupStudent,
    Homeroom,
    ParentStudent,
    PickupZone,
    School,
    Student,
)

# Ensure all mappers are configured
configure_mappers()


class RecordingSubscriber:
    """Stands in for a WebSocket; keeps every message it is sent."""

    def __init__(self, fail: bool = False) -> None:
        self.messages: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.messages.append(data)

    def events(self) -> list[str]:
        return [m["event"] for m in self.messages]


@pytest.fixture
def recorder_factory():
    return RecordingSubscriber


@pytest.fixture
async def async_engine(tmp_path):
    """Create async engine for testing.

    Uses a fresh SQLite file per test unless TEST_DATABASE_URL is set.
    """
    database_url = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/test.db")
    engine = build_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncSession:
    """Create database session for testing."""
    session_factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def school(db_session: AsyncSession) -> School:
    """Create a test school."""
    school = School(name="Maple Elementary", timezone="America/New_York", is_active=True)
    db_session.add(school)
    await db_session.commit()
    await db_session.refresh(school)
    return school


@pytest.fixture
async def roster(db_session: AsyncSession, school: School) -> SimpleNamespace:
    """Seed homerooms, students, family groups, parent links and zones.

    - Car 142: Smith family group with Alice (gr 3) and Bob (gr 4) riding, Dana inactive
    - Car 77: Evan Jones, stored car number, no family group
    - Car 999: family group whose only member walks
    - Bus 12: Fay and Gus
    - Walkers: Hana (gr 3), Ivan and Jack (gr 5)
    - Parent P1 approved for Alice and Bob; parent P2 only pending for Alice
    - Zones: B (active), C (inactive)
    """
    hr3 = Homeroom(school_id=school.id, teacher_id=uuid4(), name="Ms. Rivera", grade="3")
    hr4 = Homeroom(school_id=school.id, teacher_id=uuid4(), name="Mr. Osei", grade="4")
    hr5 = Homeroom(school_id=school.id, teacher_id=uuid4(), name="Mrs. Tan", grade="5")
    db_session.add_all([hr3, hr4, hr5])
    await db_session.flush()

    def student(first: str, last: str, homeroom: Homeroom, dismissal_type: str, **kw) -> Student:
        return Student(
            school_id=school.id,
            first_name=first,
            last_name=last,
            grade_level=homeroom.grade,
            homeroom_id=homeroom.id,
            dismissal_type=dismissal_type,
            status=kw.pop("status", "active"),
            **kw,
        )

    alice = student("Alice", "Smith", hr3, "car")
    bob = student("Bob", "Smith", hr4, "car")
    dana = student("Dana", "Smith", hr5, "car", status="inactive")
    evan = student("Evan", "Jones", hr4, "car", car_number="77")
    fay = student("Fay", "Lee", hr3, "bus", bus_route="12")
    gus = student("Gus", "Park", hr5, "bus", bus_route="12")
    hana = student("Hana", "Kim", hr3, "walker")
    ivan = student("Ivan", "Cruz", hr5, "walker")
    jack = student("Jack", "Wu", hr5, "walker")
    db_session.add_all([alice, bob, dana, evan, fay, gus, hana, ivan, jack])
    await db_session.flush()

    smith = FamilyGroup(school_id=school.id, car_number="142", family_name="Smith Family")
    walkers_only = FamilyGroup(school_id=school.id, car_number="999", family_name="Kim Family")
    db_session.add_all([smith, walkers_only])
    await db_session.flush()
    db_session.add_all(
        [
            FamilyGroupStudent(family_group_id=smith.id, school_id=school.id, student_id=s.id)
            for s in (alice, bob, dana)
        ]
        + [
            FamilyGroupStudent(
                family_group_id=walkers_only.id, school_id=school.id, student_id=hana.id
            )
        ]
    )

    parent_id = uuid4()
    pending_parent_id = uuid4()
    db_session.add_all(
        [
            ParentStudent(parent_id=parent_id, student_id=alice.id, status="approved"),
            ParentStudent(parent_id=parent_id, student_id=bob.id, status="approved"),
            ParentStudent(parent_id=pending_parent_id, student_id=alice.id, status="pending"),
        ]
    )

    zone_b = PickupZone(school_id=school.id, name="B", is_active=True)
    zone_c = PickupZone(school_id=school.id, name="C", is_active=False)
    db_session.add_all([zone_b, zone_c])
    await db_session.commit()

    return SimpleNamespace(
        school=school,
        hr3=hr3,
        hr4=hr4,
        hr5=hr5,
        alice=alice,
        bob=bob,
        dana=dana,
        evan=evan,
        fay=fay,
        gus=gus,
        hana=hana,
        ivan=ivan,
        jack=jack,
        smith=smith,
        parent_id=parent_id,
        pending_parent_id=pending_parent_id,
        zone_b=zone_b,
        zone_c=zone_c,
    )


@pytest.fixture
def office(school: School) -> Actor:
    return Actor(school_id=school.id, role="office_staff", user_id=uuid4())


@pytest.fixture
def teacher3(roster: SimpleNamespace) -> Actor:
    """Homeroom teacher of grade 3 (Alice, Fay, Hana)."""
    return Actor(
        school_id=roster.school.id,
        role="teacher",
        user_id=roster.hr3.teacher_id,
        homeroom_id=roster.hr3.id,
    )


@pytest.fixture
def parent(roster: SimpleNamespace) -> Actor:
    """Approved parent of Alice and Bob."""
    return Actor(school_id=roster.school.id, role="parent", user_id=roster.parent_id)
