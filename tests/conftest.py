"""Pytest configuration and shared fixtures."""

import logging

import pytest

import runtime_secrets.logging as secrets_logging

# Injected into mocked secret values and API bodies; must never reach a log line
LEAK_MARKER = "LEAKMARKER-d41d8cd9"


@pytest.fixture
def environ():
    """Isolated environment mapping; providers read config from and export into it."""
    return {}


@pytest.fixture
def leak_marker():
    return LEAK_MARKER


@pytest.fixture
def assert_no_leak(caplog):
    """Return a checker failing if the leak marker appears in any captured log output."""
    caplog.set_level(logging.DEBUG)

    def check(marker=LEAK_MARKER):
        for record in caplog.records:
            assert marker not in record.getMessage()
            assert marker not in str(getattr(record, "extra_data", ""))
        assert marker not in caplog.text

    return check


@pytest.fixture(autouse=True)
def reset_package_logging():
    """Undo handler and level changes made through runtime_secrets.logging."""
    yield
    logger = logging.getLogger(secrets_logging.LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    secrets_logging._logging_ensured = False
