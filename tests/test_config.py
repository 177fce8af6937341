"""Tests for settings loading and validation."""

import logging
from datetime import time
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from allocator import Settings, setup_logging
from allocator import sql_store


class TestSettings:

    def test_defaults(self) -> None:
        """Should default to the clinic's operating constants."""
        s = Settings(_env_file=None)
        assert s.CLINIC_TIMEZONE == "America/Santiago"
        assert s.SLOT_STEP_MINUTES == 15
        assert s.SCAN_OPEN_TIME == time(8)
        assert s.SCAN_CLOSE_TIME == time(20)
        assert s.LATEST_END_TIME == time(21)
        assert s.MIN_SLOTS_PER_DAY == 3
        assert s.MAX_LOOKAHEAD_DAYS == 3
        assert s.tz == ZoneInfo("America/Santiago")

    def test_unknown_timezone(self) -> None:
        """Should reject a zone name that is not in the IANA database."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, CLINIC_TIMEZONE="Mars/Olympus_Mons")

    @pytest.mark.parametrize("field", ["SLOT_STEP_MINUTES", "MIN_SLOTS_PER_DAY", "MAX_LOOKAHEAD_DAYS"])
    def test_non_positive_counts(self, field) -> None:
        """Should reject zero for step and lookahead settings."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_environment_override(self, monkeypatch) -> None:
        """Should read overrides from the environment."""
        monkeypatch.setenv("SLOT_STEP_MINUTES", "30")
        monkeypatch.setenv("SCAN_OPEN_TIME", "09:00")
        s = Settings(_env_file=None)
        assert s.SLOT_STEP_MINUTES == 30
        assert s.SCAN_OPEN_TIME == time(9)


class TestAmbientWiring:

    def test_setup_logging_uses_configured_level(self, monkeypatch) -> None:
        """Should hand the configured level to basicConfig."""
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        setup_logging(Settings(_env_file=None, LOG_LEVEL="DEBUG"))
        assert calls[0]["level"] == logging.DEBUG

    def test_sql_store_defaults_to_configured_url(self, monkeypatch) -> None:
        """Should open the database named by DATABASE_URL when no URL is given."""
        monkeypatch.setattr(sql_store, "default_settings", Settings(_env_file=None, DATABASE_URL="sqlite://"))
        store = sql_store.SqlCalendarStore()
        store.create_schema()
        assert str(store.engine.url) == "sqlite://"
        assert store.list_installations() == []
