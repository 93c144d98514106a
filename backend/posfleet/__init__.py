# backend/posfleet/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # After-commit notification delivery
    from .services import notification_service
    notification_service.init_app(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.transfer_orders import transfer_orders_bp
    from .routes.machine_workflow import machine_workflow_bp
    from .routes.maintenance_center import maintenance_center_bp
    from .routes.service_assignments import service_assignments_bp
    from .routes.maintenance_approvals import maintenance_approvals_bp
    from .routes.pending_payments import pending_payments_bp
    from .routes.notifications import notifications_bp
    from .routes.admin import admin_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(transfer_orders_bp)
    app.register_blueprint(machine_workflow_bp)
    app.register_blueprint(maintenance_center_bp)
    app.register_blueprint(service_assignments_bp)
    app.register_blueprint(maintenance_approvals_bp)
    app.register_blueprint(pending_payments_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
