"""Sentry error tracking integration.

Initializes Sentry SDK if SENTRY_DSN env variable is set.
Does nothing otherwise, so it is safe to call unconditionally.
"""

import logging

from synthgate.core.config import Settings
from synthgate.core.security import redact_secrets

logger = logging.getLogger(__name__)


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """Redact credential material from exception values and log messages."""
    for exc in event.get("exception", {}).get("values", []) or []:
        if exc.get("value"):
            exc["value"] = redact_secrets(exc["value"])

    logentry = event.get("logentry") or {}
    if logentry.get("message"):
        logentry["message"] = redact_secrets(logentry["message"])
    if logentry.get("formatted"):
        logentry["formatted"] = redact_secrets(logentry["formatted"])

    for crumb in event.get("breadcrumbs", {}).get("values", []) or []:
        if crumb.get("message"):
            crumb["message"] = redact_secrets(crumb["message"])

    return event


def init_sentry(config: Settings) -> None:
    """Initialize Sentry if SENTRY_DSN is configured."""
    if not config.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=config.sentry_dsn,
        environment=config.app_env,
        traces_sample_rate=0.1 if config.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
    )
    logger.info("Sentry initialized (env=%s)", config.app_env)
