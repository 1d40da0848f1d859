"""
Pytest fixtures for scrapledger backend tests.

Provides test database setup, a file-backed app for threaded tests, and
payload builders.
"""

import os
import tempfile

import pytest
from scrapledger import create_app
from scrapledger.extensions import db
from scrapledger.models import Employee


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing (in-memory SQLite)."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ATTACHMENT_STORAGE': 'local',
        'ATTACHMENT_LOCAL_ROOT': str(tmp_path_factory.mktemp('attachments')),
        'SAVE_RETRY_BACKOFF': 0.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    App on a file-backed SQLite database.

    Threads each push their own app context and so get their own session and
    connection, which the shared in-memory database cannot give them.
    """
    fd, path = tempfile.mkstemp(suffix='.sqlite3', dir=tmp_path)
    os.close(fd)

    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{path}',
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 15}},
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ATTACHMENT_STORAGE': 'local',
        'ATTACHMENT_LOCAL_ROOT': str(tmp_path / 'attachments'),
        'SAVE_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def employee(db_session):
    emp = Employee(name="Ana Cruz", role="employee")
    db_session.add(emp)
    db_session.commit()
    return emp


def make_payload(txn_id: str = "TXN-00000007", **overrides) -> dict:
    """Worked example: a buy of two copper lots with 10.00 of expenses."""
    payload = {
        "id": txn_id,
        "kind": "buy",
        "status": "for-payment",
        "customer_name": "Juan Dela Cruz",
        "customer_kind": "individual",
        "employee": "Ana Cruz",
        "location": "Yard 1",
        "session_type": "pickup",
        "expense_items": [{"type": "fuel", "amount_cents": 1000, "description": "Truck fuel"}],
        "line_items": [
            {"name": "Copper", "category": "copper", "weight": "5.0", "unit_price_cents": 4000},
            {"name": "Copper", "category": "copper", "weight": "2.5", "unit_price_cents": 4000},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def payload_factory():
    return make_payload
