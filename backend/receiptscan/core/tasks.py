"""Dramatiq task definitions for background processing.

Receipt classification and analysis can take tens of seconds (the
analysis service is polled until it finishes), so uploads made with
``?background=true`` only store a ``pending`` receipt and enqueue
``process_receipt_task``.  The actor runs the remaining pipeline stages
and leaves the receipt ``completed`` or ``failed``.

To run these tasks you must start a Dramatiq worker pointed at the
worker module:

```bash
dramatiq receiptscan.worker --processes 1 --threads 4
```

The broker is Redis when ``DRAMATIQ_BROKER_URL`` is set.  Without it an
in-memory ``StubBroker`` is installed, which is what the tests use.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.engine.url import make_url

from receiptscan.core.config import database_url, settings
from receiptscan.core.database import build_engine, build_session_factory
from receiptscan.core.observability import sentry_breadcrumb

logger = logging.getLogger(__name__)


def _build_broker() -> dramatiq.Broker:
    if settings.DRAMATIQ_BROKER_URL:
        masked = make_url(settings.DRAMATIQ_BROKER_URL).set(password=None)
        logger.info("Configuring Dramatiq with Redis broker %s", masked)
        return RedisBroker(url=settings.DRAMATIQ_BROKER_URL)
    logger.info("DRAMATIQ_BROKER_URL not set; using in-memory stub broker")
    return StubBroker()


# Export the broker for Dramatiq CLI
broker = _build_broker()
dramatiq.set_broker(broker)

# Analysis polling is bounded by ANALYSIS_POLL_TIMEOUT; leave headroom for
# classification and persistence on top of it
_TIME_LIMIT_MS = int((settings.ANALYSIS_POLL_TIMEOUT + 2 * settings.HTTP_TIMEOUT_SECONDS) * 1000)


async def run_processing(receipt_id: str, session_factory=None) -> str:
    """Process one pending receipt and return its final status value.

    Worker threads each run their own event loop, so unless a session
    factory is supplied a dedicated engine is created and disposed here.
    """
    from receiptscan.services.ingestion_service import build_default_pipeline

    engine = None
    if session_factory is None:
        engine = build_engine(database_url())
        session_factory = build_session_factory(engine)
    try:
        pipeline = build_default_pipeline(session_factory)
        receipt = await pipeline.process(receipt_id)
        return receipt.status.value
    finally:
        if engine is not None:
            await engine.dispose()


# Retries belong to whoever re-submits the upload; a failed run is
# recorded on the receipt instead
@dramatiq.actor(max_retries=0, time_limit=_TIME_LIMIT_MS)
def process_receipt_task(receipt_id: str) -> None:
    sentry_breadcrumb("task", "process_receipt_task:start", data={"receipt_id": receipt_id})
    status = asyncio.run(run_processing(receipt_id))
    logger.info("[task] receipt %s finished with status=%s", receipt_id, status)


def enqueue_processing(receipt_id: str) -> Optional[str]:
    """Send ``process_receipt_task`` for ``receipt_id``; returns the message id."""
    message = process_receipt_task.send(receipt_id)
    logger.info("[task] enqueued receipt %s as message %s", receipt_id, message.message_id)
    return message.message_id


__all__ = ["broker", "process_receipt_task", "run_processing", "enqueue_processing"]
