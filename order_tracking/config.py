"""
config.py — Runtime Configuration for the Order Tracking Service

Settings are read from environment variables once at startup. A `.env` file in
the working directory is loaded first, so local development does not need
exported variables.
"""

import os
from dataclasses import dataclass, field
from typing import Dict

from dotenv import load_dotenv

load_dotenv()

DEFAULT_PARTNER_KEYS = "dev-partner-key=The Nightcap Lounge"


def parse_partner_keys(raw: str) -> Dict[str, str]:
    """
    Parses `key=Bar Name` pairs separated by semicolons.

    Example:
        "k1=The Nightcap Lounge;k2=Velvet Room"
    """
    keys = {}
    for pair in raw.split(";"):
        if not pair.strip():
            continue
        key, sep, bar_name = pair.partition("=")
        if not sep or not key.strip() or not bar_name.strip():
            raise ValueError(f"Invalid PARTNER_KEYS entry: {pair!r}")
        keys[key.strip()] = bar_name.strip()
    return keys


@dataclass(frozen=True)
class Settings:
    """
    Service settings.

    Attributes:
        database_url (str): SQLAlchemy URL. Empty means the in-memory store is used.
        log_level (str): Root log level name.
        log_file (str): Optional path for a log file. Empty disables file logging.
        partner_keys (Dict[str, str]): Maps each partner's `X-Partner-Key` to the bar it runs.
        order_api_url (str): Base URL of the REST API, used by the delivery simulator.
        host (str): Bind address for uvicorn.
        port (int): Bind port for uvicorn.
    """
    database_url: str = ""
    log_level: str = "INFO"
    log_file: str = ""
    partner_keys: Dict[str, str] = field(default_factory=lambda: parse_partner_keys(DEFAULT_PARTNER_KEYS))
    order_api_url: str = "http://localhost:8000"
    host: str = "0.0.0.0"
    port: int = 8000


def load_settings() -> Settings:
    """Builds a Settings instance from the current environment."""
    return Settings(
        database_url=os.environ.get("DATABASE_URL", ""),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_file=os.environ.get("LOG_FILE", ""),
        partner_keys=parse_partner_keys(os.environ.get("PARTNER_KEYS", DEFAULT_PARTNER_KEYS)),
        order_api_url=os.environ.get("ORDER_API_URL", "http://localhost:8000"),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )
