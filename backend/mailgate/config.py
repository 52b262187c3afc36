"""
Process-wide configuration.

Environment variables are loaded from .env (python-dotenv) on import. The
filter rule set is built once and cached; every component receives the same
immutable FilterConfig instance.

Environment variables
---------------------
FILTER_CONFIG_PATH      Optional JSON file with the FilterConfig shape.
                        When unset the built-in defaults below are used.
BLACKLISTED_DOMAINS     Comma-separated domain blacklist for the defaults.
OPENAI_API_KEY          Moderation service key.
MODERATION_MODEL        Moderation model (default: omni-moderation-latest).
GOOGLE_SCRIPT_URL       Spreadsheet append endpoint (Apps Script web app).
CRUD_SERVER_URL         Endpoint receiving the combined JSON blob.
INBOUND_WEBHOOK_SECRET  Optional shared secret for POST /webhook/email.
"""

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from mailgate.models.filter_config import FilterConfig

load_dotenv()

logger = logging.getLogger(__name__)

MODERATION_TIMEOUT_SECONDS = 45.0
DEFAULT_MODERATION_MODEL = "omni-moderation-latest"


def _split_env_list(name: str) -> List[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def default_filter_config() -> FilterConfig:
    """Rule set used when no FILTER_CONFIG_PATH is configured."""
    return FilterConfig.model_validate({
        "domains": {
            "mode": "list",
            "whitelist": ["gmail.com", "outlook.com"],
            "blacklist": _split_env_list("BLACKLISTED_DOMAINS"),
        },
        "usernames": {
            "mode": "none",
            "whitelist": ["alloweduser", "gooduser"],
            "blacklist": ["spammer", "badactor"],
        },
        "length": {"min": 0, "max": None},
        "attachments": {"maxCount": None},
    })


def load_filter_config(path: Optional[str] = None) -> FilterConfig:
    """
    Build a FilterConfig from a JSON file, or the defaults when no path is given.

    Raises:
        FileNotFoundError: If the configured file does not exist.
        ValueError: If the file is not valid JSON or does not match the model.
    """
    path = path or os.getenv("FILTER_CONFIG_PATH")
    if not path:
        return default_filter_config()

    raw = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Filter config {path!r} is not valid JSON: {exc}") from exc

    config = FilterConfig.model_validate(data)
    logger.info(
        f"Loaded filter config from {path}: "
        f"domains={config.domains.mode.value}, usernames={config.usernames.mode.value}"
    )
    return config


@lru_cache(maxsize=1)
def get_filter_config() -> FilterConfig:
    """Return the process-wide FilterConfig (loaded once)."""
    return load_filter_config()


def get_moderation_model() -> str:
    return os.getenv("MODERATION_MODEL", DEFAULT_MODERATION_MODEL)
