from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from learnlynk.context import get_correlation_id, get_tenant_id

logger = logging.getLogger("learnlynk.audit")

# In-memory trail for CRM mutations and row-policy denials; one dict per entry.
audit_entries: list[dict[str, Any]] = []


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    tenant_id: str | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "tenant_id": tenant_id or get_tenant_id(),
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": before,
        "after": after,
        "correlation_id": correlation_id or get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.debug(
        "audit.recorded",
        extra={"resource": entity_type, "action": action, "tenant_id": entry["tenant_id"], "user_id": actor_user_id},
    )
    return entry


def entries_for(entity_type: str, *, action: str | None = None, tenant_id: str | None = None) -> list[dict[str, Any]]:
    """Return recorded entries for ``entity_type``, oldest first."""

    return [
        entry
        for entry in audit_entries
        if entry["entity_type"] == entity_type
        and (action is None or entry["action"] == action)
        and (tenant_id is None or entry["tenant_id"] == tenant_id)
    ]
