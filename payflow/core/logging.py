# payflow/core/logging.py
"""
Logging setup for the payment engine.

The engine components share one named logger, handed to each of them at
construction. Entry points (API, worker) call setup_logging() once.
"""

import logging

from payflow.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

payment_logger = logging.getLogger("payflow.payments")

_configured = False


def setup_logging(level: str = None) -> None:
    """Configure the root handler once per process."""
    global _configured

    if _configured:
        return

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    _configured = True
