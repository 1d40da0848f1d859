from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ADVANCE_STATUSES = ("pending", "active", "deducted")


class Employee(db.Model):
    """
    Yard employee referenced by name from transactions.

    sessions_handled and current_advances_cents are cached aggregates,
    always rebuildable from transactions / cash_advances (employee_service).
    """
    __tablename__ = "employees"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    role = db.Column(db.String(32), nullable=False, default="employee")
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    weekly_salary_cents = db.Column(db.Integer, nullable=False, default=0)

    # Cached projections
    sessions_handled = db.Column(db.Integer, nullable=False, default=0)
    current_advances_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "phone": self.phone,
            "email": self.email,
            "weekly_salary_cents": self.weekly_salary_cents,
            "sessions_handled": self.sessions_handled,
            "current_advances_cents": self.current_advances_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashAdvance(db.Model):
    """Cash handed to an employee ahead of payday (pending -> active -> deducted)."""
    __tablename__ = "cash_advances"
    __table_args__ = (
        db.CheckConstraint("status IN ('pending', 'active', 'deducted')", name="ck_cash_advances_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    employee = db.relationship("Employee", backref=db.backref("advances", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "status": self.status,
            "issued_at": to_utc_z(self.issued_at),
        }
