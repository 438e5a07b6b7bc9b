"""Global pytest configuration for logging setup.

The CLI installs its own handlers and turns off propagation on the
``stackboot`` logger; this resets that between tests so caplog keeps working.
"""

import logging

import pytest

LOGGERS = [
    "stackboot",
    "stackboot.startup",
    "stackboot.services",
]


@pytest.fixture(autouse=True)
def setup_logging() -> None:
    """Keep stackboot loggers at DEBUG and propagating to the root logger."""
    for logger_name in LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = True
        if logger_name == "stackboot":
            logger.handlers.clear()

    logging.getLogger().setLevel(logging.DEBUG)


@pytest.fixture(autouse=True)
def configure_caplog(caplog: pytest.LogCaptureFixture) -> None:
    """Capture DEBUG output from every stackboot module."""
    caplog.set_level(logging.DEBUG)
    caplog.set_level(logging.DEBUG, logger="stackboot")
