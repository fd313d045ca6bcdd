"""
Process-wide logging setup shared by the API, the Lambda handler and the
local sync worker.
"""

import logging
import sys

_NOISY_LOGGERS = ("httpx", "httpcore", "googleapiclient.discovery_cache")


def configure_logging(level: str = "INFO") -> None:
    """Route records to stdout in a pipe-separated format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # Request lines from the HTTP clients carry access tokens in query strings.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["configure_logging"]
