import json
import logging

from rental_bot.logging import (
    CorrelationFilter,
    StructuredFormatter,
    correlation_context,
    get_correlation_id,
    log_with_context,
)


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_correlation_context_sets_and_restores():
    assert get_correlation_id() == ""
    with correlation_context("abc123") as cid:
        assert cid == "abc123"
        assert get_correlation_id() == "abc123"
        with correlation_context() as inner:
            assert len(inner) == 12
        assert get_correlation_id() == "abc123"
    assert get_correlation_id() == ""


def test_structured_formatter_includes_context_data():
    logger = logging.getLogger("tests.structured")
    handler = ListHandler()
    handler.addFilter(CorrelationFilter())
    logger.addHandler(handler)
    try:
        with correlation_context("msg-1"):
            log_with_context(logger, logging.INFO, "Handled rent_tool", intent="rent_tool", outcome="ok")
    finally:
        logger.removeHandler(handler)

    [record] = handler.records
    entry = json.loads(StructuredFormatter().format(record))
    assert entry["message"] == "Handled rent_tool"
    assert entry["correlation_id"] == "msg-1"
    assert entry["data"] == {"intent": "rent_tool", "outcome": "ok"}
