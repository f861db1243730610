"""Audit trail writer"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from authcore.models.audit import AuditEvent

logger = logging.getLogger(__name__)

# Everything not listed here is "info".
_SEVERITY = {
    "login_failed": "warning",
    "mfa_failed": "warning",
    "password_change_failed": "warning",
    "mfa_disable_failed": "warning",
    "account_locked": "warning",
    "password_reset": "warning",
    "refresh_reuse_detected": "critical",
}


class AuditService:
    """
    Append events to the caller's transaction.

    Nothing here commits: an event lands together with the state change it
    describes, or not at all.
    """

    def record(
        self,
        db: Session,
        action: str,
        *,
        account_id: Optional[int] = None,
        session_id: Optional[str] = None,
        ip: Optional[str] = None,
        **details: Any,
    ) -> AuditEvent:
        severity = _SEVERITY.get(action, "info")
        event = AuditEvent(
            account_id=account_id,
            action=action,
            severity=severity,
            session_id=session_id,
            ip_address=ip,
            details=details or None,
        )
        db.add(event)
        if severity == "critical":
            logger.warning("Audit: %s for account %s", action, account_id)
        return event

    def recent_for_account(self, db: Session, account_id: int, limit: int = 50) -> List[AuditEvent]:
        return (
            db.query(AuditEvent)
            .filter(AuditEvent.account_id == account_id)
            .order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
            .limit(limit)
            .all()
        )


audit_service = AuditService()
