"""
Actor Context

Authentication happens upstream. The gateway forwards the resolved identity
in request headers; this module turns them into an `Actor`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID

from fastapi import Header, HTTPException, status

Role = Literal["admin", "office_staff", "teacher", "parent"]

ROLES: tuple[str, ...] = ("admin", "office_staff", "teacher", "parent")
OFFICE_ROLES = frozenset({"admin", "office_staff"})


@dataclass(frozen=True)
class Actor:
    """Who is performing a request, within which school."""

    school_id: UUID
    role: Role
    user_id: UUID | None = None
    homeroom_id: UUID | None = None

    @property
    def is_office(self) -> bool:
        return self.role in OFFICE_ROLES

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"

    @property
    def is_parent(self) -> bool:
        return self.role == "parent"


def _parse_uuid(value: str | None, header: str) -> UUID | None:
    if value is None or value == "":
        return None
    try:
        return UUID(value)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid {header} header"
        ) from e


async def get_actor(
    x_school_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_homeroom_id: str | None = Header(default=None),
) -> Actor:
    """Build the request actor from gateway headers."""
    school_id = _parse_uuid(x_school_id, "X-School-Id")
    if school_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="School context required"
        )

    if x_user_role not in ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Valid X-User-Role header required"
        )

    user_id = _parse_uuid(x_user_id, "X-User-Id")
    if x_user_role == "parent" and user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Parents must send X-User-Id"
        )

    return Actor(
        school_id=school_id,
        role=x_user_role,  # type: ignore[arg-type]
        user_id=user_id,
        homeroom_id=_parse_uuid(x_homeroom_id, "X-Homeroom-Id"),
    )
