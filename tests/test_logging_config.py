import json
import logging
import sys

from relay.logging_config import ChatLogger, JSONFormatter, chat_logger, get_logger, setup_logging


class CaptureHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def capture(name: str) -> CaptureHandler:
    handler = CaptureHandler()
    logger = get_logger(name)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return handler


def make_record(**attrs) -> logging.LogRecord:
    record = logging.LogRecord("relay.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "relay.test"
        assert data["message"] == "hello world"
        assert data["timestamp"].endswith("+00:00")
        assert "chat_id" not in data
        assert "context" not in data

    def test_chat_id_promoted_from_context(self):
        record = make_record(context={"chat_id": "123@c.us", "phone": "+1555"})
        data = json.loads(JSONFormatter().format(record))

        assert data["chat_id"] == "123@c.us"
        assert data["context"] == {"phone": "+1555"}
        assert record.context == {"chat_id": "123@c.us", "phone": "+1555"}

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("relay.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


class TestChatLogger:
    def test_records_carry_chat_context(self):
        handler = capture("logging_chat")

        chat_logger("logging_chat", "123@c.us", phone="+1555").info("hi")

        assert handler.records[0].context == {"chat_id": "123@c.us", "phone": "+1555"}

    def test_call_context_merged_over_bound(self):
        handler = capture("logging_merge")
        log = chat_logger("logging_merge", "123@c.us", step="start")

        log.info("one", context={"step": "reply"})
        log.info("two")

        assert handler.records[0].context == {"chat_id": "123@c.us", "step": "reply"}
        assert handler.records[1].context == {"chat_id": "123@c.us", "step": "start"}

    def test_bind_returns_new_adapter(self):
        handler = capture("logging_bind")
        base = ChatLogger(get_logger("logging_bind"))
        bound = base.bind(chat_id="c1")

        base.info("plain")
        bound.info("bound")

        assert not hasattr(handler.records[0], "context")
        assert handler.records[1].context == {"chat_id": "c1"}


class TestSetupLogging:
    def test_installs_single_json_handler(self):
        root = logging.getLogger()
        previous_handlers, previous_level = root.handlers[:], root.level
        try:
            setup_logging("debug")
            setup_logging("warning")

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = previous_handlers
            root.setLevel(previous_level)
