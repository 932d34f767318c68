"""
Logging utilities for the on-demand service broker core.
"""

import logging
import sys
import uuid
from typing import Optional


def setup_logging(
    verbose: bool = False, log_file: str = "upgrade-all-service-instances.log"
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
    )

    return logging.getLogger(__name__)


class RequestLogger(logging.LoggerAdapter):
    """Prefixes every message with the id of the request being served."""

    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']}] {msg}", kwargs


def request_logger(
    request_id: Optional[str] = None, name: str = "broker"
) -> RequestLogger:
    """
    Build a logger scoped to one broker request.

    Args:
        request_id: Identifier to prefix; a random one is generated if omitted
        name: Name of the underlying logger

    Returns:
        RequestLogger instance
    """
    return RequestLogger(
        logging.getLogger(name), {"request_id": request_id or str(uuid.uuid4())}
    )
