"""Application configuration, read from the environment (and a local .env file)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


@dataclass(frozen=True)
class AppConfig:
    gemini_api_key: str = field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))
    gemini_model: str = field(default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-1.5-flash"))
    gemini_endpoint: str = field(
        default_factory=lambda: os.getenv(
            "GEMINI_ENDPOINT", "https://generativelanguage.googleapis.com/v1beta/models"
        )
    )
    request_timeout: float = field(default_factory=lambda: float(os.getenv("GEMINI_TIMEOUT", "120")))

    db_path: str = field(default_factory=lambda: os.getenv("TOUR_COST_DB_PATH", "tour_cost.db"))
    master_data_seed: str = field(default_factory=lambda: os.getenv("TOUR_COST_MASTER_DATA_SEED", ""))

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @property
    def mock_mode(self) -> bool:
        """True when no API key is configured and extraction is simulated."""
        return not self.gemini_api_key


def configure_logging(config: AppConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
