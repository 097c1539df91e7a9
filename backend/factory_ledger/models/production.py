from __future__ import annotations

from ..extensions import db
from ..quantities import qty_to_str
from ..time_utils import to_iso_date, to_utc_z


LOG_STATUS_PENDING = "PENDING"
LOG_STATUS_APPROVED = "APPROVED"
LOG_STATUS_LOCKED = "LOCKED"

SHIFT_DAY = "DAY"
SHIFT_NIGHT = "NIGHT"
SHIFTS = (SHIFT_DAY, SHIFT_NIGHT)


class WorkerLog(db.Model):
    """
    One unit of completed work by a worker against a rate.

    SNAPSHOT: worker_name, task_name and price_per_unit_cents are copied at
    write time. total_pay_cents = (quantity - defect_qty) * price_per_unit_cents.

    LIFECYCLE (forward only):
    - PENDING: recorded
    - APPROVED: supervisor approved
    - LOCKED: settled by a finalized payroll run (payroll_run_id set)

    LOCKED logs are never edited or deleted.
    """
    __tablename__ = "worker_logs"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_worker_logs_quantity_positive"),
        db.CheckConstraint("defect_qty >= 0 AND defect_qty <= quantity", name="ck_worker_logs_defect_range"),
        db.Index("ix_worker_logs_worker_date", "worker_id", "work_date"),
        db.Index("ix_worker_logs_status_date", "status", "work_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.id"), nullable=False, index=True)
    rate_id = db.Column(db.Integer, db.ForeignKey("rates.id"), nullable=False, index=True)

    worker_name = db.Column(db.String(255), nullable=False)
    task_name = db.Column(db.String(255), nullable=False)
    price_per_unit_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    defect_qty = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    total_pay_cents = db.Column(db.Integer, nullable=False)

    work_date = db.Column(db.Date, nullable=False, index=True)
    shift = db.Column(db.String(8), nullable=False, default=SHIFT_DAY)

    status = db.Column(db.String(16), nullable=False, default=LOG_STATUS_PENDING, index=True)
    payroll_run_id = db.Column(db.Integer, db.ForeignKey("payroll_runs.id"), nullable=True, index=True)

    created_by = db.Column(db.String(255), nullable=False)
    approved_by = db.Column(db.String(255), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    worker = db.relationship("Worker", backref=db.backref("logs", lazy="dynamic"))
    rate = db.relationship("Rate")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def net_qty(self):
        return self.quantity - self.defect_qty

    def __repr__(self) -> str:
        return f"<WorkerLog id={self.id} worker_id={self.worker_id} status={self.status}>"

    def to_snapshot(self) -> dict:
        """Frozen copy embedded in payroll run entries."""
        return {
            "log_id": self.id,
            "work_date": to_iso_date(self.work_date),
            "task_name": self.task_name,
            "quantity": qty_to_str(self.quantity),
            "defect_qty": qty_to_str(self.defect_qty),
            "price_per_unit_cents": self.price_per_unit_cents,
            "total_pay_cents": self.total_pay_cents,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worker_id": self.worker_id,
            "worker_name": self.worker_name,
            "rate_id": self.rate_id,
            "task_name": self.task_name,
            "price_per_unit_cents": self.price_per_unit_cents,
            "quantity": qty_to_str(self.quantity),
            "defect_qty": qty_to_str(self.defect_qty),
            "total_pay_cents": self.total_pay_cents,
            "work_date": to_iso_date(self.work_date),
            "shift": self.shift,
            "status": self.status,
            "payroll_run_id": self.payroll_run_id,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "locked_at": to_utc_z(self.locked_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
