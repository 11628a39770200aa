from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("audit")


@dataclass
class AuditEvent:
    """Structured representation of an audit event.

    Keeps the payload to ids, types and high-level actions; names, emails,
    passwords and contact details of patients never go into an event.
    """

    timestamp: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    subject: Optional[str] = None
    outcome: str = "success"
    extra: Optional[Dict[str, Any]] = None


class AuditService:
    def log_event(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        subject: Optional[str] = None,
        outcome: str = "success",
        extra: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Log a structured audit event and return it.

        - `action`: high-level verb, e.g., "create_user", "delete_user".
        - `resource_type`: coarse type, e.g., "user", "identity".
        - `resource_id`: stable identifier (UUID string) when available.
        - `subject`: optional identifier for the caller. If omitted, we
          take it from the current security context.
        - `outcome`: "success", "failure", or a more specific diagnostic such
          as "orphaned".
        - `extra`: optional small dict of non-PII metadata (roles, counts).
        """

        if subject is None:
            from src.dental_backend.security import get_current_subject

            subject = get_current_subject()

        event = AuditEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            subject=subject,
            outcome=outcome,
            extra=extra,
        )

        try:
            payload = json.dumps(asdict(event))
        except TypeError:
            # Something in extra is not JSON serializable; drop it.
            safe_event = asdict(event)
            safe_event["extra"] = None
            payload = json.dumps(safe_event)

        if outcome == "success":
            logger.info(payload)
        else:
            logger.warning(payload)
        return event


audit_service = AuditService()
