import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.crm.config import load_config
from app.crm.db import init_db, teardown_db_session
from app.crm.errors import CrmError
from app.crm.mailer import mailer_from_config
from app.crm.routes import bp as routes_bp
from app.crm.auth import bp as auth_bp, load_current_user
from app.crm.admin import bp as admin_bp
from app.crm.modules.customers.admin import bp as customers_bp
from app.crm.modules.lead_import.admin import bp as lead_import_bp
from app.crm.modules.sales_reps.admin import bp as sales_reps_bp
from app.crm.modules.workflows.admin import bp as workflows_bp
from app.crm.modules.onboarding.admin import bp as onboarding_bp

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PATCH, OPTIONS",
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("WEBHOOK_SECRET"):
            app.logger.error("WEBHOOK_SECRET is not set; the onboarding webhook will reject every call.")

    init_db(app)
    app.extensions["mailer"] = mailer_from_config(app.config)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/api")
    app.register_blueprint(customers_bp, url_prefix="/api")
    app.register_blueprint(lead_import_bp, url_prefix="/api")
    app.register_blueprint(sales_reps_bp, url_prefix="/api")
    app.register_blueprint(workflows_bp, url_prefix="/api")
    app.register_blueprint(onboarding_bp, url_prefix="/webhooks")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")) or request.method == "OPTIONS":
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _add_cors_headers(response):
        if request.path.startswith(("/api/", "/webhooks/")):
            for k, v in CORS_HEADERS.items():
                response.headers.setdefault(k, v)
        return response

    @app.errorhandler(CrmError)
    def _err_crm(e: CrmError):
        rid = getattr(g, "request_id", None)
        if e.status_code >= 500:
            app.logger.error("%s (request_id=%s): %s", type(e).__name__, rid, e.message)
        else:
            app.logger.info("%s %s -> %s (request_id=%s): %s", request.method, request.path, e.status_code, rid, e.message)
        return jsonify(e.to_payload()), e.status_code

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"success": False, "message": "Not found"}), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"success": False, "message": "Method not allowed"}), 405

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"success": False, "message": "File too large. Maximum size is 10MB."}), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        original = getattr(e, "original_exception", None) or e
        if not isinstance(original, HTTPException):
            app.logger.error("Unhandled 500 (request_id=%s)", rid, exc_info=original)
        return jsonify({"success": False, "message": "Unexpected server error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
