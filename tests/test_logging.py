from __future__ import annotations

import logging

import pytest
import structlog

from billing_engine.logging import QUIET_LOGGERS, configure_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_configure_logging_accepts_level_names():
    configure_logging("debug", json_logs=False)

    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_json_logs_render_event_and_context(capsys):
    configure_logging(logging.INFO)

    structlog.get_logger().info("quota_denied", user_id=7, resource_kind="ideas")

    line = capsys.readouterr().out.strip().splitlines()[-1]
    assert '"event": "quota_denied"' in line
    assert '"user_id": 7' in line
    assert '"level": "info"' in line
