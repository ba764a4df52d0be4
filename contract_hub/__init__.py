import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from contract_hub.config import Config
from contract_hub.db import close_db, get_read_db, init_db
from contract_hub.db_migrations import register_db_cli
from contract_hub.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)
from contract_hub.security import apply_security_headers, enforce_rate_limit


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)

    # Hook order matters: request id, then rate limit, then principal.
    _register_request_hooks(app)
    _register_auth(app)
    _register_error_handlers(app)
    _register_blueprints(app)
    _register_event_handlers()
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _maybe_init_schema(app: Flask) -> None:
    # Test databases are created from scratch, without running migrations.
    if not (app.testing or app.config.get("DB_AUTO_INIT", False)):
        return
    flask_env = (os.environ.get("FLASK_ENV") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("db_auto_init_skipped", extra={"flask_env": flask_env})
        return
    with app.app_context():
        init_db()


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _start_request() -> None:
        ensure_request_id()
        mark_request_start()
        enforce_rate_limit()

    @app.after_request
    def _finish_request(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return apply_security_headers(observe_response(response))


def _register_blueprints(app: Flask) -> None:
    from contract_hub.routes.admin_routes import admin_bp
    from contract_hub.routes.contract_routes import contracts_bp

    for blueprint in (contracts_bp, admin_bp):
        app.register_blueprint(blueprint)


def _register_auth(app: Flask) -> None:
    from contract_hub.auth import register_auth

    register_auth(app)


def _register_event_handlers() -> None:
    from contract_hub.application.audit import register_event_handlers
    from contract_hub.core import get_event_bus

    register_event_handlers(get_event_bus())


def _request_fields() -> dict:
    return {"request_path": request.path, "http_method": request.method}


def _register_error_handlers(app: Flask) -> None:
    from contract_hub.errors import AppError, SystemError

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        log = app.logger.error if exc.critical else app.logger.warning
        log(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": exc.code,
                "http_status": exc.http_status,
                "message_key": exc.message_key,
                "details": exc.details,
                **_request_fields(),
            },
            exc_info=exc.critical,
        )
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        app.logger.exception(
            "unexpected_exception",
            extra={"request_id": request_id, "error_code": "unexpected_error", **_request_fields()},
        )
        # The raw exception text stays in the log, never in the response.
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = str(app.config.get("DB_PATH") or "")
        status = "ok"
        try:
            get_read_db().execute("SELECT 1").fetchall()
        except Exception:  # noqa: BLE001
            app.logger.exception("health_db_check_failed")
            status = "degraded"
        return {
            "status": status,
            "db": "postgres" if db_path.startswith("postgres") else "sqlite",
            "metrics": metrics_snapshot(),
        }, 200
