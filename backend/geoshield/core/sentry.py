"""
Sentry integration for error tracking.

Events are scrubbed of coordinates before they leave the process.
"""

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from geoshield.core.config import settings

logger = logging.getLogger(__name__)

# Query parameters and payload keys that carry positions
SENSITIVE_KEYS = {
    "lat", "lng", "lon", "latitude", "longitude",
    "center_lat", "center_lng", "search_lat", "search_lng",
    "q", "query", "primary", "fallback",
}

FILTERED = "[Filtered]"


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    Call this once during application startup.

    Returns:
        True if Sentry was initialized, False otherwise.
    """
    if not settings.SENTRY_DSN:
        logger.info("SENTRY_DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=f"{settings.APP_NAME}@{settings.APP_VERSION}",
        traces_sample_rate=0.1 if settings.ENVIRONMENT == "production" else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            HttpxIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        send_default_pii=False,
        before_send=_before_send,
        before_send_transaction=_before_send_transaction,
        max_breadcrumbs=50,
        attach_stacktrace=True,
    )

    logger.info(f"Sentry initialized for {settings.ENVIRONMENT} environment")
    return True


def _scrub_query_string(query_string: str) -> str:
    pairs = []
    for pair in query_string.split("&"):
        key, sep, _ = pair.partition("=")
        if key.lower() in SENSITIVE_KEYS:
            pairs.append(f"{key}{sep}{FILTERED}")
        else:
            pairs.append(pair)
    return "&".join(pairs)


def _scrub_mapping(data: dict) -> dict:
    return {
        key: FILTERED if str(key).lower() in SENSITIVE_KEYS else value
        for key, value in data.items()
    }


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """
    Process event before sending to Sentry.

    Drops expected client errors and removes coordinates from the request.
    """
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        status_code = getattr(exc_value, "status_code", None)
        if status_code and 400 <= status_code < 500:
            return None

    request = event.get("request")
    if request:
        query_string = request.get("query_string")
        if isinstance(query_string, str) and query_string:
            request["query_string"] = _scrub_query_string(query_string)
        data = request.get("data")
        if isinstance(data, dict):
            request["data"] = _scrub_mapping(data)

    return event


def _before_send_transaction(event: dict, hint: dict) -> Optional[dict]:
    """Skip health and metrics transactions."""
    transaction_name = event.get("transaction", "")
    if any(path in transaction_name for path in ["/health", "/metrics", "/docs"]):
        return None

    return event
