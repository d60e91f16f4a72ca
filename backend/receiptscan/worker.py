"""Dramatiq worker configuration.

This module loads the environment, initialises Sentry and imports all
tasks so they are registered when the worker starts.

Run with:
    dramatiq receiptscan.worker
"""

import logging

from receiptscan.core.config import settings
from receiptscan.core.observability import init_sentry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if init_sentry("worker"):
    logger.info("Sentry SDK initialized for worker")

# Import tasks to register them
from receiptscan.core.tasks import broker, process_receipt_task  # noqa: E402,F401

logger.info("Tasks registered for %s (broker=%s)", settings.PROJECT_NAME, type(broker).__name__)
