"""
Tests for context-aware logging.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Generator

import pytest

from oc.logging import get_cycle_id, get_logger, get_phase, log_context, setup_logging


@pytest.fixture
def log_file(temp_dir: Path) -> Generator[Path, None, None]:
    path = temp_dir / "logs" / "oc.jsonl"
    setup_logging(log_level="DEBUG", log_file=path, console_output=False)
    yield path
    setup_logging(log_level="INFO")


def read_records(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines() if line]


class TestLogContext:
    """Test scoped context variables."""

    def test_nested_context_is_restored(self) -> None:
        with log_context(cycle_id="cycle_1"):
            with log_context(phase="eviction"):
                assert get_cycle_id() == "cycle_1"
                assert get_phase() == "eviction"
            assert get_phase() is None
        assert get_cycle_id() is None


class TestJSONLogFile:
    """Test JSON lines output."""

    def test_records_carry_context_and_fields(self, log_file: Path) -> None:
        logger = get_logger("tests.logging")

        with log_context(cycle_id="cycle_abc", phase="expiration"):
            logger.info("Deleted entry", key="k1")

        records = read_records(log_file)
        assert records[-1]["message"] == "Deleted entry"
        assert records[-1]["logger"] == "oc.tests.logging"
        assert records[-1]["cycle_id"] == "cycle_abc"
        assert records[-1]["phase"] == "expiration"
        assert records[-1]["extra"]["key"] == "k1"

    def test_level_filtering(self, temp_dir: Path) -> None:
        path = temp_dir / "warn.jsonl"
        setup_logging(log_level="WARNING", log_file=path, console_output=False)
        try:
            logger = get_logger("tests.levels")
            logger.info("hidden")
            logger.warning("shown")
        finally:
            setup_logging(log_level="INFO")

        assert [r["message"] for r in read_records(path)] == ["shown"]
