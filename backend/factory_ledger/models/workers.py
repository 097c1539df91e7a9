from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALARY_TYPE_PIECE_RATE = "PIECE_RATE"
SALARY_TYPE_MONTHLY = "MONTHLY"
SALARY_TYPE_DAILY = "DAILY"
SALARY_TYPES = (SALARY_TYPE_PIECE_RATE, SALARY_TYPE_MONTHLY, SALARY_TYPE_DAILY)

WORKER_ROLES = ("WEAVER", "HELPER", "SUPERVISOR")


class Worker(db.Model):
    """
    A factory worker paid by output and/or a base salary.

    base_salary_cents only counts toward payroll for MONTHLY and DAILY
    workers; PIECE_RATE workers are paid from their production logs alone.
    is_ssb enrolls the worker in the statutory contribution withheld at
    settlement.
    """
    __tablename__ = "workers"
    __table_args__ = (
        db.Index("ix_workers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(16), nullable=False, default="WEAVER")
    salary_type = db.Column(db.String(16), nullable=False, default=SALARY_TYPE_PIECE_RATE)
    base_salary_cents = db.Column(db.Integer, nullable=False, default=0)
    is_ssb = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    joined_on = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def effective_base_salary_cents(self) -> int:
        if self.salary_type == SALARY_TYPE_PIECE_RATE:
            return 0
        return self.base_salary_cents or 0

    def __repr__(self) -> str:
        return f"<Worker id={self.id} name={self.name!r} salary_type={self.salary_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "salary_type": self.salary_type,
            "base_salary_cents": self.base_salary_cents,
            "is_ssb": self.is_ssb,
            "is_active": self.is_active,
            "joined_on": self.joined_on.isoformat() if self.joined_on else None,
            "created_at": to_utc_z(self.created_at),
        }
