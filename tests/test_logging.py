"""
Tests for logging setup.
"""

import json
import logging

import pytest

from luvio_chat.utils.logging import JSONFormatter, get_logger, log_function_call, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers = handlers
    root.setLevel(level)


def test_setup_logging_with_files(temp_dir, restore_root_logger):
    result = setup_logging(log_level="DEBUG", log_dir=temp_dir, enable_console=False)

    assert set(result["loggers"]) == {"main", "session", "streaming", "transport", "storage"}
    assert (temp_dir / "luvio-chat.log").exists()
    assert (temp_dir / "luvio-chat-errors.log").exists()


def test_json_formatter_includes_extras():
    record = logging.LogRecord("luvio-chat", logging.INFO, __file__, 1, "hello", None, None)
    record.request = "abc"
    record.payload = object()

    data = json.loads(JSONFormatter().format(record))

    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["request"] == "abc"
    assert isinstance(data["payload"], str)
    assert data["timestamp"].endswith("+00:00")


@pytest.mark.asyncio
async def test_log_function_call_reraises():
    logger = get_logger("luvio-chat.test")

    @log_function_call(logger)
    async def fails():
        raise ValueError("boom")

    @log_function_call(logger)
    def plain():
        return 1

    with pytest.raises(ValueError):
        await fails()
    assert plain() == 1
    assert fails.__name__ == "fails"
