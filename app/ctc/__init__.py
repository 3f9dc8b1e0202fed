import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.ctc.config import load_config
from app.ctc.db import init_db, teardown_db_session
from app.ctc.routes import bp as routes_bp
from app.ctc.auth import bp as auth_bp, load_current_user
from app.ctc.admin import bp as admin_bp
from app.ctc.modules.communities.routes import bp as communities_bp
from app.ctc.modules.events.routes import bp as events_bp
from app.ctc.modules.forms.routes import bp as forms_bp
from app.ctc.modules.referrals.routes import bp as referrals_bp
from app.ctc.modules.notifications.routes import bp as notifications_bp
from app.ctc.modules.study.routes import bp as study_bp
from app.ctc.modules.tnp.routes import bp as tnp_bp
from app.ctc.modules.users.routes import bp as users_bp
from app.ctc.modules.search.routes import bp as search_bp
from app.ctc.modules.media.routes import bp as media_bp

_UNGUARDED_PREFIXES = ("/health", "/healthz", "/media/")
# Credential endpoints; everything else that mutates needs a CSRF token or a bearer token.
_CSRF_EXEMPT_ENDPOINTS = ("admin.admin_login",)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    from app.ctc.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            endpoint = request.endpoint or ""
            if endpoint.startswith("auth.") or endpoint in _CSRF_EXEMPT_ENDPOINTS:
                return None
            # Bearer-token clients don't ride on the session cookie.
            if (request.headers.get("Authorization") or "").lower().startswith("bearer "):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if str(app.config.get("ADMIN_JWT_SECRET") or "") in ("", "change-me-admin"):
            raise RuntimeError("ADMIN_JWT_SECRET must be set in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

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
    app.register_blueprint(admin_bp)
    app.register_blueprint(communities_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(forms_bp)
    app.register_blueprint(referrals_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(study_bp)
    app.register_blueprint(tnp_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(search_bp)
    app.register_blueprint(media_bp)

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):
        if e.code == 403:
            app.logger.warning(
                "Forbidden: path=%s missing_permission=%s request_id=%s",
                request.path,
                getattr(g, "missing_permission", None),
                getattr(g, "request_id", None),
            )
        if e.code == 413:
            return jsonify({"error": "File too large. Maximum size is 25MB."}), 413
        if e.code and e.code >= 500:
            app.logger.error("HTTP %s on %s (request_id=%s): %s", e.code, request.path, getattr(g, "request_id", None), e.description)
        return jsonify({"error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _err_500(e: Exception):
        # Ensure stack trace shows in DO logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
