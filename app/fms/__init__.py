import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, flash, g, jsonify, redirect, render_template, request, session, url_for

from app.fms.config import load_config
from app.fms.db import init_db, teardown_db_session
from app.fms.errors import FmsError
from app.fms.routes import bp as routes_bp
from app.fms.auth import bp as auth_bp, api_bp as auth_api_bp, load_current_user
from app.fms.admin import bp as admin_bp
from app.fms.modules.vegetables.admin import bp as vegetables_bp
from app.fms.modules.vegetables.api import bp as vegetables_api_bp
from app.fms.modules.growing_tasks.admin import bp as growing_tasks_bp
from app.fms.modules.growing_tasks.api import bp as growing_tasks_api_bp
from app.fms.modules.work_reports.admin import bp as work_reports_bp
from app.fms.modules.work_reports.api import bp as work_reports_api_bp
from app.fms.modules.accounting.api import bp as accounting_api_bp
from app.fms.modules.analytics.admin import bp as analytics_bp
from app.fms.modules.analytics.api import bp as analytics_api_bp
from app.fms.modules.photos.admin import bp as photos_bp
from app.fms.modules.photos.api import bp as photos_api_bp
from app.fms.modules.farm_plots.api import bp as farm_plots_api_bp
from app.fms.rbac import wants_json


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    level = getattr(logging, app.config.get("LOG_LEVEL") or "INFO", logging.INFO)
    logging.getLogger("app.fms").setLevel(level)
    app.logger.setLevel(level)

    from app.fms.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.fms.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("yen")
    def _yen_filter(value) -> str:
        try:
            return f"¥{round(float(value or 0)):,}"
        except (TypeError, ValueError):
            return "-"

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # login/logout carry no session yet
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                if wants_json():
                    return jsonify({"error": "CSRF token missing or invalid."}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

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
        missing_s3 = [k for k in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.fms.storage import S3Storage, storage_from_config

            storage = storage_from_config(app.config)
            if isinstance(storage, S3Storage):
                try:
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
                except (BotoCoreError, ClientError) as e:
                    app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    for page_bp in (vegetables_bp, growing_tasks_bp, work_reports_bp, analytics_bp, photos_bp):
        app.register_blueprint(page_bp, url_prefix="/admin")
    for api_bp in (
        auth_api_bp,
        vegetables_api_bp,
        growing_tasks_api_bp,
        work_reports_api_bp,
        accounting_api_bp,
        analytics_api_bp,
        photos_api_bp,
        farm_plots_api_bp,
    ):
        app.register_blueprint(api_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    def _rollback() -> None:
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()

    @app.errorhandler(FmsError)
    def _err_fms(e: FmsError):  # type: ignore[no-redef]
        _rollback()
        if e.status_code >= 403:
            app.logger.warning(
                "%s %s -> %s: %s (request_id=%s)",
                request.method,
                request.path,
                e.status_code,
                e.message,
                getattr(g, "request_id", None),
            )
        if wants_json():
            return jsonify(e.to_dict()), e.status_code
        if e.status_code == 404:
            return render_template("errors/404.html", message=e.message), 404
        if e.status_code == 403:
            return render_template("errors/403.html", message=e.message), 403
        for msg in e.details or [e.message]:
            flash(msg, "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        _rollback()
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        if wants_json():
            return jsonify({"error": "Internal server error"}), 500
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if wants_json():
            return jsonify({"error": "Not found"}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if wants_json():
            return jsonify({"error": "Forbidden", "missing_permission": missing}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = app.config.get("PHOTO_MAX_BYTES", 0) // (1024 * 1024)
        if wants_json():
            return jsonify({"error": f"File too large. Maximum size is {limit_mb}MB."}), 413
        flash(f"File too large. Maximum size is {limit_mb}MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
