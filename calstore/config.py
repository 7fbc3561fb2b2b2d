"""Configuration for calstore.

Settings come from environment variables, falling back to
``$CALSTORE_HOME/config.json``. Environment always wins.

Recognised keys:
- CALSTORE_HOME: base directory (default ``~/.calstore``)
- CALSTORE_DB_PATH: database file (default ``$CALSTORE_HOME/calendar2.db``)
- CALSTORE_SYNC_URL / ``sync_url``: backend that receives sync requests
- CALSTORE_SYNC_TOKEN / ``sync_token``: bearer token for that backend
- CALSTORE_SYNC_TIMEOUT / ``sync_timeout``: request timeout in seconds
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DATABASE_NAME = "calendar2.db"
DEFAULT_SYNC_TIMEOUT = 5.0
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})


def get_calstore_home() -> Path:
    """Return the calstore base directory."""
    home = os.environ.get("CALSTORE_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".calstore"


def validate_backend_url(url: Optional[str]) -> Optional[str]:
    """Return ``url`` if a bearer token may be sent to it, else None.

    HTTPS is accepted for any host; plain HTTP only for a sync server on
    this machine.
    """
    if not url:
        return None
    parsed = urlparse(url)
    secure = parsed.scheme == "https" or (parsed.scheme == "http" and parsed.hostname in LOCAL_HOSTS)
    if parsed.hostname and secure:
        return url
    logger.warning(f"Ignoring sync URL {url!r}: needs https, or http to localhost")
    return None


@dataclass
class StoreConfig:
    """Resolved calstore settings."""

    db_path: Path
    sync_url: Optional[str] = None
    sync_token: Optional[str] = None
    sync_timeout: float = DEFAULT_SYNC_TIMEOUT

    @property
    def has_sync_backend(self) -> bool:
        return bool(self.sync_url and self.sync_token)


def _load_file_config(home: Path) -> Dict[str, Any]:
    config_path = home / "config.json"
    if not config_path.exists():
        return {}
    try:
        with open(config_path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {config_path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {config_path}: expected a JSON object")
        return {}
    return data


def load_config(db_path: Optional[Path] = None) -> StoreConfig:
    """Resolve settings from the environment and the home config file.

    Args:
        db_path: Explicit database path; overrides every other source.
    """
    home = get_calstore_home()
    file_config = _load_file_config(home)

    if db_path is None:
        env_path = os.environ.get("CALSTORE_DB_PATH") or file_config.get("db_path")
        db_path = Path(env_path).expanduser() if env_path else home / DATABASE_NAME

    sync_url = os.environ.get("CALSTORE_SYNC_URL") or file_config.get("sync_url")
    sync_token = os.environ.get("CALSTORE_SYNC_TOKEN") or file_config.get("sync_token")

    raw_timeout = os.environ.get("CALSTORE_SYNC_TIMEOUT") or file_config.get("sync_timeout")
    sync_timeout = DEFAULT_SYNC_TIMEOUT
    if raw_timeout is not None:
        try:
            sync_timeout = float(raw_timeout)
        except (TypeError, ValueError):
            logger.warning(f"Invalid sync timeout {raw_timeout!r}, using {DEFAULT_SYNC_TIMEOUT}")

    if sync_url:
        sync_url = validate_backend_url(sync_url)
        if sync_url:
            sync_url = sync_url.rstrip("/")

    return StoreConfig(
        db_path=db_path,
        sync_url=sync_url,
        sync_token=sync_token,
        sync_timeout=sync_timeout,
    )
