"""
Unit tests for logging helpers.
"""

import asyncio
import json
import logging
import pytest

from urlbar_llm.core.logging_config import (
    FILTERED,
    ColoredFormatter,
    JSONFormatter,
    TurnContextFilter,
    bind_turn,
    current_turn,
    filter_sensitive_data,
    truncate_large_data,
)


def _record(message="hello", **extra):
    record = logging.LogRecord("urlbar_llm.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFilterSensitiveData:
    """Tests for credential masking."""

    def test_nested_keys_are_masked(self):
        data = {
            "Authorization": "Bearer sk-1",
            "body": {"search_api_key": "k", "query": "rust"},
            "items": [{"X-Api-Key": "k2", "ok": 1}],
        }
        filtered = filter_sensitive_data(data)
        assert filtered["Authorization"] == FILTERED
        assert filtered["body"] == {"search_api_key": FILTERED, "query": "rust"}
        assert filtered["items"] == [{"X-Api-Key": FILTERED, "ok": 1}]
        # Input untouched
        assert data["Authorization"] == "Bearer sk-1"

    def test_primitives_pass_through(self):
        assert filter_sensitive_data("text") == "text"
        assert filter_sensitive_data(3) == 3

    def test_truncate(self):
        assert truncate_large_data("short", max_length=10) == "short"
        truncated = truncate_large_data("x" * 20, max_length=10)
        assert truncated.startswith("x" * 10)
        assert "total length: 20" in truncated


class TestTurnContext:
    """Tests for turn id propagation onto records."""

    def test_outside_turn(self):
        record = _record()
        TurnContextFilter().filter(record)
        assert record.turn_id == "-"

    def test_bound_turn(self):
        with bind_turn("turn-7"):
            record = _record()
            TurnContextFilter().filter(record)
        assert record.turn_id == "turn-7"
        assert current_turn.get() is None

    @pytest.mark.asyncio
    async def test_tasks_inherit_turn(self):
        async def child():
            return current_turn.get()

        with bind_turn("turn-9"):
            task = asyncio.create_task(child())
        assert await task == "turn-9"


class TestFormatters:
    """Tests for console and JSON formatters."""

    def test_json_formatter(self):
        record = _record(
            "Turn finalized",
            turn_id="turn-3",
            extra_fields={"provider": "ollama", "api_key": "secret"},
        )
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "Turn finalized"
        assert data["level"] == "INFO"
        assert data["turn_id"] == "turn-3"
        assert data["provider"] == "ollama"
        assert data["api_key"] == FILTERED

    def test_json_formatter_without_turn(self):
        data = json.loads(JSONFormatter().format(_record(turn_id="-")))
        assert "turn_id" not in data

    def test_colored_formatter_leaves_record_alone(self):
        record = _record(turn_id="-")
        output = ColoredFormatter("%(levelname)s | %(message)s").format(record)
        assert "\033[32m" in output
        assert record.levelname == "INFO"
