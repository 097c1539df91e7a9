# backend/factory_ledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate

__version__ = "1.0.0"


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # app.logger is the "factory_ledger" logger; service modules log under it
    app.logger.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.production import production_bp
    from .routes.inventory import inventory_bp
    from .routes.deductions import deductions_bp
    from .routes.payroll import payroll_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(production_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(deductions_bp)
    app.register_blueprint(payroll_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
