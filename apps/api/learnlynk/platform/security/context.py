from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


ROLE_ADMIN = "admin"
ROLE_COUNSELOR = "counselor"
KNOWN_ROLES = frozenset({ROLE_ADMIN, ROLE_COUNSELOR})


@dataclass(slots=True)
class AuthContext:
    """Authenticated principal used by row policy evaluation.

    ``team_ids`` is loaded once per request from the team directory so that
    teammate checks are a plain set intersection.
    """

    user_id: uuid.UUID | None
    tenant_id: uuid.UUID | None
    role: str | None
    team_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    correlation_id: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_well_formed(self) -> bool:
        return self.user_id is not None and self.tenant_id is not None and self.role in KNOWN_ROLES

    @property
    def is_admin(self) -> bool:
        return self.is_well_formed and self.role == ROLE_ADMIN

    @property
    def is_counselor(self) -> bool:
        return self.is_well_formed and self.role == ROLE_COUNSELOR


def parse_uuid(value: object) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None
