"""
Harness settings - centralized configuration management.
All settings are loaded from FIREBASE_TEST_* environment variables with sensible defaults.
"""

import logging
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


DRIVER_SIMULATED = "simulated"
DRIVER_LIVE = "live"


class LiveSettings(BaseSettings):
    """Live database settings."""

    PROJECT_ID: Optional[str] = None
    SECRET: Optional[str] = None

    # Allow pointing the REST client at an emulator or a fake server
    BASE_URL: Optional[str] = None

    REQUEST_TIMEOUT: float = 5.0

    class Config:
        env_prefix = "FIREBASE_TEST_"


class LoggingSettings(BaseSettings):
    """Logging settings."""

    LOG_LEVEL: str = "WARNING"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_prefix = "FIREBASE_TEST_"


class HarnessSettings(BaseSettings):
    """Main harness settings."""

    APP_NAME: str = "firebase-rules-test"
    APP_VERSION: str = "1.0.0"
    DRIVER: str = DRIVER_SIMULATED

    # Nested settings
    live: LiveSettings = LiveSettings()
    logging: LoggingSettings = LoggingSettings()

    @property
    def use_live_driver(self) -> bool:
        return self.DRIVER.strip().lower() == DRIVER_LIVE

    class Config:
        env_prefix = "FIREBASE_TEST_"


@lru_cache()
def get_settings() -> HarnessSettings:
    """Get cached harness settings."""
    return HarnessSettings()


def configure_logging(harness_settings: Optional[HarnessSettings] = None) -> None:
    """Apply the logging section of the settings to the root logger."""
    harness_settings = harness_settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, harness_settings.logging.LOG_LEVEL.upper(), logging.WARNING),
        format=harness_settings.logging.LOG_FORMAT,
    )


settings = get_settings()
