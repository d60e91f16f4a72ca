"""Observability helpers (Sentry init & common scrubbing).

Centralises Sentry initialisation for API and worker so configuration
does not drift.  Initialisation is a no-op when ``SENTRY_DSN`` is unset,
and so are the breadcrumb/tag helpers, which the ingestion pipeline
calls on every stage transition.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from receiptscan.core.config import settings


_SCRUBBED_HEADERS = {"authorization", "cookie", "set-cookie", "prediction-key", "ocp-apim-subscription-key"}
_initialised = False


def _before_send(event: Dict[str, Any], hint: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Scrub secrets before sending to Sentry.

    - Drop credential headers (auth, cookies, external service keys)
    - Remove request bodies; uploads are receipt images
    """
    req = event.get("request")
    if isinstance(req, dict):
        headers = req.get("headers")
        if isinstance(headers, dict):
            for key in list(headers.keys()):
                if key.lower() in _SCRUBBED_HEADERS:
                    headers.pop(key, None)
        req.pop("data", None)
    return event


def sentry_enabled() -> bool:
    return bool(settings.SENTRY_DSN)


def init_sentry(service: str) -> bool:
    """Initialise Sentry once for a given process.

    Returns True if Sentry was initialised; False otherwise.
    """
    global _initialised
    if not sentry_enabled():
        return False
    if _initialised:  # prevent duplicate init in same process
        return True
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0),
        environment=settings.ENVIRONMENT,
        release=settings.SENTRY_RELEASE,
        before_send=_before_send,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", service)
    _initialised = True
    return True


def sentry_set_tags(tags: Dict[str, Any]) -> None:
    """Set tags on the current scope (values coerced to short strings)."""
    if not sentry_enabled():
        return
    for key, value in (tags or {}).items():
        sentry_sdk.set_tag(str(key), str(value)[:128] if value is not None else "")


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
    """Add a breadcrumb for an ingestion lifecycle step."""
    if not sentry_enabled():
        return
    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})


def capture_exception(exc: BaseException) -> None:
    if sentry_enabled():
        sentry_sdk.capture_exception(exc)


__all__ = ["init_sentry", "sentry_set_tags", "sentry_breadcrumb", "capture_exception", "sentry_enabled"]
