from __future__ import annotations

import json
import logging
import sys

from finboard.core.config import Settings, settings
from finboard.core.logging import JSONFormatter, setup_logging


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("finboard.test", logging.INFO, __file__, 12, "Loaded %d rows", (3,), None)
    record.user_id = 7
    payload = json.loads(JSONFormatter().format(record))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "finboard.test"
    assert payload["message"] == "Loaded 3 rows"
    assert payload["extra"] == {"user_id": 7}
    assert "exception" not in payload


def test_json_formatter_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("finboard.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    payload = json.loads(JSONFormatter().format(record))
    assert payload["exception"]["type"] == "ValueError"
    assert payload["exception"]["message"] == "boom"
    assert "Traceback" in payload["exception"]["traceback"]


def test_setup_logging_uses_json_when_enabled():
    try:
        logger = setup_logging(Settings(LOG_JSON=True, LOG_LEVEL="debug"))
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.propagate is False
    finally:
        setup_logging(settings)
