import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _configure_logging(app: Flask) -> None:
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    app.logger.setLevel(getattr(logging, level_name, logging.INFO))


def _register_blueprints(app: Flask) -> None:
    from .routes.ai import ai_bp
    from .routes.audit import audit_bp
    from .routes.auth import auth_bp, users_bp
    from .routes.inventory import inventory_bp
    from .routes.system import system_bp
    from .routes.transactions import transactions_bp

    for blueprint in (system_bp, auth_bp, users_bp, inventory_bp, transactions_bp, ai_bp, audit_bp):
        app.register_blueprint(blueprint)


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)
    _configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    # model classes must be imported before Alembic reads db.metadata
    from . import models  # noqa: F401

    _register_blueprints(app)

    cors_origins = frozenset(app.config.get("CORS_ALLOWED_ORIGINS", ()))

    @app.after_request
    def allow_frontend_origin(response):
        origin = request.headers.get("Origin")
        if origin and origin in cors_origins:
            response.headers.update({
                "Access-Control-Allow-Origin": origin,
                "Access-Control-Allow-Headers": "Authorization, Content-Type",
                "Access-Control-Allow-Methods": "GET,POST,PUT,PATCH,DELETE,OPTIONS",
                "Vary": "Origin",
            })
        return response

    from .cli import register_commands
    register_commands(app)

    return app
