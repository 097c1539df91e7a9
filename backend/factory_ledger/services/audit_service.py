# Overview: Service-layer operations for the audit spine; append-only event writes.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import LedgerEvent
"""
Audit Spine Invariants (authoritative)

- Append-only audit log for every ledger mutation.
- No domain/business logic in the audit spine itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def resolve_actor(actor: Optional[str]) -> str:
    """Caller identity for audit stamping; falls back to LEDGER_DEFAULT_ACTOR."""
    if actor and actor.strip():
        return actor.strip()[:255]
    return current_app.config.get("LEDGER_DEFAULT_ACTOR", "system")


def append_ledger_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    """
    Append-only ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Flushes only; the caller's unit of work commits.
    """
    ev = LedgerEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=resolve_actor(actor),
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else None,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev
