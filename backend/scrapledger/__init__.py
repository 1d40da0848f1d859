# backend/scrapledger/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # One repository per app: the in-flight save map must be shared by every
    # request handled by this process.
    from .services.transaction_repository import build_repository
    app.extensions["scrapledger.repository"] = build_repository(app.config)

    # Register blueprints
    from .routes.transactions import transactions_bp
    from .routes.ledger import ledger_bp
    from .routes.employees import employees_bp

    app.register_blueprint(transactions_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(employees_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
