import os
from flask import Flask, render_template, request

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=True)

from flask_wtf.csrf import CSRFError

from .config import get_config, REQUIRED_IN_PRODUCTION
from .extensions import db, migrate, csrf, login_manager, limiter
from .security import init_security
from .observability import init_logging, init_sentry


def _wants_json() -> bool:
    return (
        "application/json" in (request.headers.get("Accept") or "").lower()
        or request.is_json
        or request.path.endswith(".json")
    )


def create_app(config_overrides=None):
    app = Flask(__name__, template_folder="templates", static_folder="static")

    # Rate limiting storage: Redis in staging/production, memory elsewhere
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    app.config.from_object(get_config())
    if config_overrides:
        app.config.update(config_overrides)

    # Enforce hard requirements at startup (not at import time)
    if app_env in ("staging", "production"):
        for name in REQUIRED_IN_PRODUCTION:
            if not (os.getenv(name) or app.config.get(name)):
                raise RuntimeError(f"Missing required environment variable: {name}")
        init_security(app)

    init_logging(app)
    init_sentry(app)

    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    from . import models  # noqa: F401 (register tables + user_loader)
    from .blueprints.billing.routes import billing_bp
    from .blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(billing_bp, url_prefix="/billing")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    try:
        limiter.exempt(app.view_functions["static"])
    except KeyError:
        pass

    @app.context_processor
    def inject_globals():
        return {
            "SITE_NAME": app.config.get("SITE_NAME", "Billing"),
            "APP_ENV": app.config.get("APP_ENV", app_env),
        }

    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    @app.errorhandler(401)
    def unauthorized(e):
        if _wants_json():
            return {"error": "unauthorized", "code": 401}, 401
        return ("Unauthorized", 401)

    @app.errorhandler(403)
    def forbidden(e):
        if _wants_json():
            return {"error": "forbidden", "code": 403}, 403
        return render_template("errors/403.html", reason=getattr(e, "description", None)), 403

    @app.errorhandler(404)
    def not_found(e):
        return ("Not Found", 404)

    @app.errorhandler(500)
    def server_error(e):
        return ("Internal Server Error", 500)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return (f"CSRF validation failed: {e.description}", 400)

    # 429 Too Many Requests: consistent JSON/HTML with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
        if _wants_json():
            payload = {"error": "rate_limited", "code": 429}
            if retry_after is not None:
                payload["retry_after"] = int(retry_after)
            return (payload, 429, headers)
        return (render_template("errors/429.html", retry_after=retry_after), 429, headers)

    from .cli import register_cli
    register_cli(app)

    if not app.config.get("STRIPE_SECRET_KEY"):
        app.logger.warning("Stripe secret key missing; billing features will not work")

    return app
