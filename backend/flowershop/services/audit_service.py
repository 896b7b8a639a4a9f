# Overview: Service-layer operations for the audit log; best-effort writes and read queries.

from __future__ import annotations

from flask import current_app

from ..models import AuditLog
from flowershop.time_utils import utcnow
"""
Audit Log Invariants (authoritative)

- Append-only: no updates or deletes of existing entries.
- Written AFTER the audited mutation has committed, in its own commit.
  It is never part of the business unit of work.
- Write failures are rolled back, logged locally and discarded. An audit
  outage must never fail or undo the operation being audited.
"""


class AuditService:
    """
    Audit sink bound to one request context (client IP and user agent).

    Services receive an instance and call record() after each successful
    mutation; the return value is informational only.
    """

    def __init__(self, session, *, ip_address: str | None = None, user_agent: str | None = None):
        self.session = session
        self.ip_address = ip_address
        self.user_agent = (user_agent or "")[:512] or None

    def record(
        self,
        *,
        actor_id: str,
        action: str,
        entity_type: str,
        entity_id=None,
        changes: dict | None = None,
    ) -> AuditLog | None:
        try:
            entry = AuditLog(
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                changes=changes,
                ip_address=self.ip_address,
                user_agent=self.user_agent,
                timestamp=utcnow(),
            )
            self.session.add(entry)
            self.session.commit()
            return entry
        except Exception:
            self.session.rollback()
            current_app.logger.exception(
                "Failed to write audit log entry action=%s entity=%s:%s",
                action, entity_type, entity_id,
            )
            return None


def list_events(
    session,
    *,
    page: int = 1,
    limit: int = 50,
    actor_id: str | None = None,
    action: str | None = None,
    entity_type: str | None = None,
) -> dict:
    q = session.query(AuditLog)
    if actor_id:
        q = q.filter(AuditLog.actor_id == actor_id)
    if action:
        q = q.filter(AuditLog.action == action)
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)

    total = q.count()
    rows = (
        q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [row.to_dict() for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def events_for_entity(session, entity_type: str, entity_id) -> list[AuditLog]:
    return (
        session.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .all()
    )
