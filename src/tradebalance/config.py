# config.py
"""
Runtime settings read from the environment.

A `.env` file in the project root is loaded first (python-dotenv), so local
development can keep credentials out of the shell. Real environment variables
always win over the file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# src/tradebalance/config.py -> parents[2] == project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_DB_URL = "sqlite:///./tradebalance.db"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    db_url: str = DEFAULT_DB_URL
    log_level: str = "INFO"
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES


def load_settings() -> Settings:
    load_dotenv(PROJECT_ROOT / ".env", override=False)

    max_bytes = os.getenv("TRADEBALANCE_MAX_UPLOAD_BYTES", "")
    return Settings(
        db_url=os.getenv("TRADEBALANCE_DB_URL", DEFAULT_DB_URL),
        log_level=os.getenv("TRADEBALANCE_LOG_LEVEL", "INFO").upper(),
        max_upload_bytes=int(max_bytes) if max_bytes.strip() else DEFAULT_MAX_UPLOAD_BYTES,
    )


def configure_logging(level: str = "INFO") -> None:
    """Install one root handler; repeated calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
