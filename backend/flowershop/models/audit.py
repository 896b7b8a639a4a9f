from __future__ import annotations

from ..extensions import db
from flowershop.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Audit trail of mutations performed through the API.

    IMMUTABLE: Never update or delete. Append-only.
    Written after the audited change has committed, so a missing entry
    never implies the change itself was rolled back.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_actor_timestamp", "actor_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    actor_id = db.Column(db.String(255), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)  # CREATE_TRANSACTION, ADD_INVENTORY_LOSS, ...
    entity_type = db.Column(db.String(64), nullable=False)          # Transaction, InventoryLoss, ...
    entity_id = db.Column(db.String(64), nullable=True)

    changes = db.Column(db.JSON, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "changes": self.changes,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": to_utc_z(self.timestamp),
        }
