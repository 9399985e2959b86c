"""Shared fixtures for unit tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("service_template")
    old_propagate = logger.propagate
    old_level = logger.level
    old_handlers = list(logger.handlers)
    logger.propagate = True
    yield
    for handler in logger.handlers:
        if handler not in old_handlers:
            handler.close()
    logger.handlers[:] = old_handlers
    logger.propagate = old_propagate
    logger.setLevel(old_level)


@pytest.fixture(autouse=True)
def clean_server_environment(monkeypatch):
    """Keep SERVER_* variables from the developer shell out of unit tests."""
    for name in ("SERVER_ADDRESS", "SERVER_PORT", "SERVER_LOG_LEVEL", "SERVER_ENV"):
        monkeypatch.delenv(name, raising=False)
