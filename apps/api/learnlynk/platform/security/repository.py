from __future__ import annotations

from typing import Any

from sqlalchemy.sql import Select

from learnlynk.platform.security.context import AuthContext
from learnlynk.platform.security.policies import ResourceAction, Row
from learnlynk.platform.security.rls import apply_rls_filter, validate_rls_write


class BaseRepository:
    resource = ""

    def apply_scope_query(
        self,
        query: Select[Any],
        ctx: AuthContext,
        action: ResourceAction = ResourceAction.READ,
    ) -> Select[Any]:
        return apply_rls_filter(query, self.resource, ctx, action)

    def validate_write_security(
        self,
        row: Row,
        ctx: AuthContext,
        *,
        action: ResourceAction,
        payload: dict[str, Any] | None = None,
    ) -> None:
        validate_rls_write(row, ctx, action=action, payload=payload)
