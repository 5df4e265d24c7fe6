from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id


logger = logging.getLogger("app.audit")

# In-process trail; oldest entries fall off once the bound is reached.
AUDIT_RETENTION = 5000
audit_entries: deque[dict[str, Any]] = deque(maxlen=AUDIT_RETENTION)


def record(
    actor_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    *,
    organization_id: str | None = None,
    details: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> None:
    """Append a security audit entry (scope overrides, denials, elevated sessions)."""

    entry = {
        "id": str(uuid.uuid4()),
        "actor_id": actor_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "organization_id": organization_id,
        "details": details or {},
        "correlation_id": correlation_id or get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.info(
        "audit.recorded",
        extra={
            "event_name": action,
            "subject_id": actor_id,
            "organization_id": organization_id,
            "resource": entity_type,
            "correlation_id": entry["correlation_id"],
        },
    )


def entries_for(action: str) -> list[dict[str, Any]]:
    return [entry for entry in audit_entries if entry["action"] == action]
