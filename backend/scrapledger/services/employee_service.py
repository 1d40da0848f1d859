# Overview: Service-layer operations for employees; cached aggregates and cash advances.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Employee, CashAdvance, Transaction, ADVANCE_STATUSES
from ..validation import ValidationError, validate_choice
from .concurrency import lock_for_update, run_with_retry


"""
sessions_handled and current_advances_cents on Employee are projections.
They are recomputed from source rows every time, never incremented, so a
missed refresh is repaired by the next one (or by refresh_all_employee_stats).
"""


class EmployeeNotFound(LookupError):
    pass


def refresh_sessions_handled(employee_name: str) -> int | None:
    """
    Recount transactions handled by employee_name.

    Returns the new count, or None when no employee row has that name
    (transactions may name people who are not on the roster).
    """
    employee = db.session.query(Employee).filter_by(name=employee_name).first()
    if employee is None:
        return None

    count = (
        db.session.query(func.count(Transaction.id))
        .filter(Transaction.employee == employee_name)
        .scalar()
    )
    employee.sessions_handled = count or 0
    db.session.commit()
    return employee.sessions_handled


def refresh_current_advances(employee_id: int) -> int:
    """Sum active cash advances for this employee into current_advances_cents."""
    employee = db.session.get(Employee, employee_id)
    if employee is None:
        raise EmployeeNotFound(f"Employee {employee_id} not found")

    total = (
        db.session.query(func.coalesce(func.sum(CashAdvance.amount_cents), 0))
        .filter(CashAdvance.employee_id == employee_id, CashAdvance.status == "active")
        .scalar()
    )
    employee.current_advances_cents = int(total)
    db.session.commit()
    return employee.current_advances_cents


def record_cash_advance(
    employee_id: int,
    amount_cents: int,
    *,
    description: str | None = None,
    status: str = "active",
) -> CashAdvance:
    validate_choice("status", status, ADVANCE_STATUSES)
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if db.session.get(Employee, employee_id) is None:
        raise EmployeeNotFound(f"Employee {employee_id} not found")

    advance = CashAdvance(
        employee_id=employee_id,
        amount_cents=amount_cents,
        description=description,
        status=status,
    )
    db.session.add(advance)
    db.session.commit()

    refresh_current_advances(employee_id)
    return advance


def update_cash_advance_status(advance_id: int, status: str) -> CashAdvance:
    """Flip an advance's status and recompute the owner's current advances."""
    validate_choice("status", status, ADVANCE_STATUSES)

    def _op():
        advance = lock_for_update(db.session.query(CashAdvance).filter_by(id=advance_id)).first()
        if advance is None:
            raise LookupError(f"Cash advance {advance_id} not found")
        advance.status = status
        db.session.commit()
        return advance

    advance = run_with_retry(_op)
    refresh_current_advances(advance.employee_id)
    return advance


def refresh_all_employee_stats() -> int:
    """Rebuild both projections for every employee. Returns the number refreshed."""
    employees = db.session.query(Employee.id, Employee.name).all()
    for employee_id, name in employees:
        refresh_sessions_handled(name)
        refresh_current_advances(employee_id)
    return len(employees)
