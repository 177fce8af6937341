from datetime import time
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Schedule comparisons happen in this zone, whatever the storage or caller zone
    CLINIC_TIMEZONE: str = "America/Santiago"

    # Slot scanner
    SLOT_STEP_MINUTES: int = 15
    SCAN_OPEN_TIME: time = time(8, 0)
    SCAN_CLOSE_TIME: time = time(20, 0)   # last candidate start is strictly before this
    LATEST_END_TIME: time = time(21, 0)

    # Smart availability
    MIN_SLOTS_PER_DAY: int = 3
    MAX_LOOKAHEAD_DAYS: int = 3

    # Persistence
    DATABASE_URL: str = "sqlite:///./clinic.db"

    # Demo data generator
    GOOGLE_API_KEY: str | None = None
    GENERATOR_MODEL: str = "gemini-2.5-flash"

    @field_validator("CLINIC_TIMEZONE")
    @classmethod
    def _must_be_iana_zone(cls, v: str):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"CLINIC_TIMEZONE must be an IANA zone name, got {v!r}")
        return v

    @field_validator("SLOT_STEP_MINUTES", "MIN_SLOTS_PER_DAY", "MAX_LOOKAHEAD_DAYS")
    @classmethod
    def _must_be_positive(cls, v: int):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.CLINIC_TIMEZONE)


settings = Settings()
