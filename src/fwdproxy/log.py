"""
log
===

Logging setup for the proxy.  Two sinks are attached to the
``fwdproxy`` logger:

* standard output receives every record from ``INFO`` upwards;
* standard error receives only ``AUTH`` events and errors.

Error and auth lines therefore show up on both streams while plain
informational lines only go to standard output.  Lines are formatted as
``[LEVEL]: message``.
"""
from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

LOGGER_NAME = "fwdproxy"

#: Level used for authentication failures.  Sits between INFO and WARNING
#: so the stderr sink can pick it up without catching plain info lines.
AUTH = 25
logging.addLevelName(AUTH, "AUTH")

FORMAT = "[%(levelname)s]: %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(
    out: Optional[TextIO] = None, err: Optional[TextIO] = None
) -> logging.Logger:
    """Attach the stdout and stderr sinks to the ``fwdproxy`` logger.

    Calling this again replaces the previously installed handlers, which
    keeps repeated calls (tests, embedding) from duplicating output.
    """
    formatter = logging.Formatter(FORMAT)

    info_handler = logging.StreamHandler(out or sys.stdout)
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    alert_handler = logging.StreamHandler(err or sys.stderr)
    alert_handler.setLevel(AUTH)
    alert_handler.setFormatter(formatter)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.addHandler(info_handler)
    logger.addHandler(alert_handler)
    logger.setLevel(logging.INFO)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the ``fwdproxy`` logger for module ``name``."""
    return logger.getChild(name.rsplit(".", 1)[-1])
