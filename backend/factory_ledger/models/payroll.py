from __future__ import annotations

from ..extensions import db
from ..quantities import qty_to_str
from ..time_utils import to_iso_date, to_utc_z


DEDUCTION_TYPES = ("ADVANCE", "LOAN", "PENALTY", "TAX", "OTHER")

RUN_STATUS_CALCULATED = "CALCULATED"
RUN_STATUS_FINALIZED = "FINALIZED"


class Deduction(db.Model):
    """
    Per-worker adjustment (advance, loan, penalty, tax, other).

    Written independently of production. Settlement stamps payroll_run_id on
    one-off deductions it consumes so they are never withheld twice.
    Recurring deductions stay unstamped and apply to every run whose period
    ends on or after their date.
    """
    __tablename__ = "deductions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_deductions_amount_positive"),
        db.Index("ix_deductions_worker_date", "worker_id", "deduction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    deduction_date = db.Column(db.Date, nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)

    payroll_run_id = db.Column(db.Integer, db.ForeignKey("payroll_runs.id"), nullable=True, index=True)

    created_by = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    worker = db.relationship("Worker", backref=db.backref("deductions", lazy="dynamic"))

    def to_snapshot(self) -> dict:
        return {
            "deduction_id": self.id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "deduction_date": to_iso_date(self.deduction_date),
            "reason": self.reason,
            "is_recurring": self.is_recurring,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worker_id": self.worker_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "deduction_date": to_iso_date(self.deduction_date),
            "reason": self.reason,
            "is_recurring": self.is_recurring,
            "payroll_run_id": self.payroll_run_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class PayrollRun(db.Model):
    """
    Settlement of a pay period.

    LIFECYCLE:
    - CALCULATED: saved preview; nothing locked yet
    - FINALIZED: immutable; every consumed WorkerLog is LOCKED and stamped
      with this run's id
    """
    __tablename__ = "payroll_runs"
    __table_args__ = (
        db.Index("ix_payroll_runs_period", "period_start", "period_end"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RUN_STATUS_CALCULATED, index=True)

    total_gross_cents = db.Column(db.Integer, nullable=False, default=0)
    total_deductions_cents = db.Column(db.Integer, nullable=False, default=0)
    total_net_cents = db.Column(db.Integer, nullable=False, default=0)
    worker_count = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(255), nullable=False)
    finalized_by = db.Column(db.String(255), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    entries = db.relationship(
        "PayrollRunEntry",
        backref="run",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PayrollRunEntry.worker_id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_finalized(self) -> bool:
        return self.status == RUN_STATUS_FINALIZED

    def to_dict(self, include_entries: bool = True) -> dict:
        data = {
            "id": self.id,
            "period_start": to_iso_date(self.period_start),
            "period_end": to_iso_date(self.period_end),
            "status": self.status,
            "total_gross_cents": self.total_gross_cents,
            "total_deductions_cents": self.total_deductions_cents,
            "total_net_cents": self.total_net_cents,
            "worker_count": self.worker_count,
            "created_by": self.created_by,
            "finalized_by": self.finalized_by,
            "finalized_at": to_utc_z(self.finalized_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_entries:
            data["entries"] = [e.to_dict() for e in self.entries]
        return data


class PayrollRunEntry(db.Model):
    """Per-worker line of a payroll run, with its own snapshot of what it consumed."""
    __tablename__ = "payroll_run_entries"
    __table_args__ = (
        db.UniqueConstraint("payroll_run_id", "worker_id", name="uq_payroll_run_entries_run_worker"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payroll_run_id = db.Column(db.Integer, db.ForeignKey("payroll_runs.id"), nullable=False, index=True)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.id"), nullable=False, index=True)
    worker_name = db.Column(db.String(255), nullable=False)

    total_production_qty = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    gross_pay_cents = db.Column(db.Integer, nullable=False, default=0)
    base_salary_cents = db.Column(db.Integer, nullable=False, default=0)
    bonus_cents = db.Column(db.Integer, nullable=False, default=0)
    deductions_cents = db.Column(db.Integer, nullable=False, default=0)
    statutory_deductions_cents = db.Column(db.Integer, nullable=False, default=0)
    net_pay_cents = db.Column(db.Integer, nullable=False, default=0)

    logs_snapshot = db.Column(db.JSON, nullable=False, default=list)
    deductions_snapshot = db.Column(db.JSON, nullable=False, default=list)

    @property
    def log_ids(self) -> list[int]:
        return [row["log_id"] for row in (self.logs_snapshot or [])]

    @property
    def deduction_ids(self) -> list[int]:
        return [row["deduction_id"] for row in (self.deductions_snapshot or [])]

    def to_dict(self) -> dict:
        return {
            "worker_id": self.worker_id,
            "worker_name": self.worker_name,
            "total_production_qty": qty_to_str(self.total_production_qty),
            "gross_pay_cents": self.gross_pay_cents,
            "base_salary_cents": self.base_salary_cents,
            "bonus_cents": self.bonus_cents,
            "deductions_cents": self.deductions_cents,
            "statutory_deductions_cents": self.statutory_deductions_cents,
            "net_pay_cents": self.net_pay_cents,
            "logs": self.logs_snapshot or [],
            "deductions": self.deductions_snapshot or [],
        }
