"""
Tests for pacefund/utils/logging.py — JSON formatter and secret masking.
"""
import json
import logging

from pacefund.utils.logging import (
    StructuredJsonFormatter,
    mask_secret,
    set_correlation_id,
)


class TestMaskSecret:
    def test_keeps_short_prefix(self):
        assert mask_secret("abcdef123456") == "abcd***"

    def test_empty(self):
        assert mask_secret(None) == "<none>"
        assert mask_secret("") == "<none>"


class TestStructuredJsonFormatter:
    def test_includes_correlation_id_and_extras(self):
        set_correlation_id("cid-1")
        record = logging.LogRecord("pacefund.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.event_id = "evt-1"
        record.principal_id = 42

        entry = json.loads(StructuredJsonFormatter().format(record))

        assert entry["message"] == "hello world"
        assert entry["correlation_id"] == "cid-1"
        assert entry["event_id"] == "evt-1"
        assert entry["principal_id"] == 42
        assert "session_id" not in entry
