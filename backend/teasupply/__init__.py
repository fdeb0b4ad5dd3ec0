# backend/teasupply/__init__.py
from flask import Flask, request

from .config import Config, engine_options_for
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Engine options depend on the final URI, so they are derived after overrides
    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options_for(
            app.config["SQLALCHEMY_DATABASE_URI"],
            app.config.get("STORAGE_TIMEOUT_SECONDS", 10),
        ),
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.suppliers import suppliers_bp
    from .routes.supply_records import supply_records_bp
    from .routes.inventory import inventory_bp
    from .routes.production import production_bp
    from .routes.payments import payments_bp
    from .routes.settings import settings_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(supply_records_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(production_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(settings_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Webhook-Signature"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    from .services.mail_service import Mailer
    app.extensions["mailer"] = Mailer.from_config(app.config, app.logger)

    if app.config.get("SUPPLIER_SWEEP_ENABLED"):
        from .scheduler import SupplierSweepScheduler
        scheduler = SupplierSweepScheduler(app, app.config["SUPPLIER_SWEEP_INTERVAL_SECONDS"])
        app.extensions["supplier_sweep"] = scheduler
        scheduler.start()

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
