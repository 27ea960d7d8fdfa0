import os
from logging.config import dictConfig

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

# Never ship these to Sentry: webhook signatures and session cookies
_SCRUBBED_HEADERS = ("stripe-signature", "cookie", "authorization")


def init_logging(app):
    """JSON log lines in staging/prod; default Flask console handler in dev/tests."""
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    level = (app.config.get("LOG_LEVEL") or "INFO").upper()
    if app_env not in ("staging", "production"):
        app.logger.setLevel(level)
        return

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                "rename_fields": {"levelname": "level", "asctime": "ts"},
            },
        },
        "handlers": {"stdout": {"class": "logging.StreamHandler", "formatter": "json"}},
        "root": {"level": level, "handlers": ["stdout"]},
        # stripe-python logs every request at INFO; keep it to warnings
        "loggers": {"stripe": {"level": "WARNING"}},
    })


def _scrub_event(event, hint):
    headers = (event.get("request") or {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _SCRUBBED_HEADERS:
                headers[name] = "[scrubbed]"
    return event


def init_sentry(app):
    """Wire Sentry if SENTRY_DSN is set."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return
    try:
        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES", "0.0")),
            environment=os.getenv("APP_ENV", "development"),
            send_default_pii=False,
            before_send=_scrub_event,
        )
    except Exception as exc:
        app.logger.warning("Sentry init skipped: %s", exc)
    else:
        sentry_sdk.set_tag("component", "billing")
