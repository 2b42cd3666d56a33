"""
Debug logging setup.

Library modules only create loggers; this attaches a stderr handler when
the host turns on debug mode.
"""

import logging
import sys

LOGGER_NAME = "mobile_telemetry"
_FORMAT = "[mobile-telemetry] %(levelname)s %(name)s: %(message)s"


def enable_debug_logging(stream=None) -> logging.Handler:
    """
    Send package logs at DEBUG and above to stderr (or `stream`).

    Calling it again reuses the existing handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    for handler in logger.handlers:
        if getattr(handler, "_mobile_telemetry", False):
            return handler

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._mobile_telemetry = True
    logger.addHandler(handler)
    return handler


def disable_debug_logging():
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_mobile_telemetry", False):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
