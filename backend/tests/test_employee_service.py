# Overview: Pytest coverage for employee aggregates and cash advances.

import pytest

from scrapledger.extensions import db
from scrapledger.models import Employee, Transaction
from scrapledger.services import employee_service
from scrapledger.validation import ValidationError


class TestCashAdvances:
    def test_active_advances_are_summed(self, employee):
        employee_service.record_cash_advance(employee.id, 5000, description="Rent")
        employee_service.record_cash_advance(employee.id, 2000, status="pending")

        assert db.session.get(Employee, employee.id).current_advances_cents == 5000

    def test_status_flip_recomputes(self, employee):
        advance = employee_service.record_cash_advance(employee.id, 5000)
        pending = employee_service.record_cash_advance(employee.id, 1500, status="pending")

        employee_service.update_cash_advance_status(pending.id, "active")
        assert db.session.get(Employee, employee.id).current_advances_cents == 6500

        employee_service.update_cash_advance_status(advance.id, "deducted")
        assert db.session.get(Employee, employee.id).current_advances_cents == 1500

    def test_invalid_status(self, employee):
        advance = employee_service.record_cash_advance(employee.id, 5000)
        with pytest.raises(ValidationError):
            employee_service.update_cash_advance_status(advance.id, "forgiven")

    def test_missing_advance(self, db_session):
        with pytest.raises(LookupError):
            employee_service.update_cash_advance_status(999, "active")

    def test_non_positive_amount(self, employee):
        with pytest.raises(ValidationError):
            employee_service.record_cash_advance(employee.id, 0)

    def test_unknown_employee(self, db_session):
        with pytest.raises(employee_service.EmployeeNotFound):
            employee_service.record_cash_advance(42, 100)


class TestSessionsHandled:
    def test_recounts_from_transactions(self, employee):
        for n in range(3):
            db.session.add(Transaction(id=f"TXN-0000000{n}", kind="buy", status="in-progress", employee="Ana Cruz"))
        db.session.add(Transaction(id="TXN-00000009", kind="sell", status="in-progress", employee="Ben"))
        db.session.commit()

        assert employee_service.refresh_sessions_handled("Ana Cruz") == 3

    def test_unknown_name_is_ignored(self, db_session):
        assert employee_service.refresh_sessions_handled("Nobody") is None

    def test_refresh_all(self, employee):
        db.session.add(Transaction(id="TXN-00000001", kind="buy", status="in-progress", employee="Ana Cruz"))
        db.session.commit()
        emp = db.session.get(Employee, employee.id)
        emp.sessions_handled = 99
        emp.current_advances_cents = 99
        db.session.commit()

        assert employee_service.refresh_all_employee_stats() == 1

        emp = db.session.get(Employee, employee.id)
        assert emp.sessions_handled == 1
        assert emp.current_advances_cents == 0
