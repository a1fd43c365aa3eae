"""Sentry error tracking integration.

Initializes Sentry SDK if SENTRY_DSN env variable is set.
Does nothing otherwise, so it is safe to call unconditionally.
Rejected requests (unknown job, invalid payload) are never reported.
"""

import logging

from keyword_engine.core.config import settings
from keyword_engine.core.exceptions import HTTP_STATUS_BY_REASON, EngineError

logger = logging.getLogger(__name__)


def drop_client_errors(event: dict, hint: dict) -> dict | None:
    """``before_send`` hook: keep only engine errors that map to a 5xx."""
    exc_info = hint.get("exc_info")
    if exc_info and isinstance(exc_info[1], EngineError):
        if HTTP_STATUS_BY_REASON.get(exc_info[1].reason, 500) < 500:
            return None
    return event


def init_sentry() -> None:
    """Initialize Sentry if SENTRY_DSN is configured."""
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.redis import RedisIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=drop_client_errors,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(),
            RedisIntegration(),
        ],
    )
    sentry_sdk.set_tag("service", "keyword-engine")
    logger.info("Sentry initialized (env=%s, scheduler=%s)", settings.app_env, settings.scheduler_mode)
