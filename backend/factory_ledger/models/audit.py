from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class LedgerEvent(db.Model):
    """
    Append-only audit spine.

    One row per ledger mutation, written inside the same DB transaction as
    the change it records. Rows are never updated or deleted.
    occurred_at is business time; created_at is system time.
    """
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_entity", "entity_type", "entity_id"),
        db.Index("ix_ledger_events_type_occurred", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False)
    event_category = db.Column(db.String(32), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor = db.Column(db.String(255), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
        }
