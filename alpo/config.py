"""Runtime configuration for the chat core.

Values come from three layers, later ones winning:
1. Defaults declared on the models below
2. An optional YAML file (see config/alpo.example.yaml)
3. ALPO_* environment variables

Leaving `database_path` unset selects local-only mode: sessions and messages
are kept in the key-value store instead of the relational database.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from alpo.utils.config_loader import ConfigLoader

DEFAULT_WEBHOOK_URL = "https://n8n.andsome.fi/webhook/c389f93f-25da-42d1-929a-17046d85c5ad"


class NewsSyncConfig(BaseModel):
    """Background news sync settings.

    Attributes:
        enabled: Whether `NewsSyncManager.start()` runs at all
        interval_seconds: Delay between periodic syncs (default 5 minutes)
    """

    enabled: bool = True
    interval_seconds: float = Field(300.0, gt=0)


class AlpoConfig(BaseModel):
    """Top-level configuration.

    Attributes:
        webhook_url: Conversational agent endpoint
        request_timeout: Seconds before an outbound request is abandoned
        database_path: SQLite file for users/sessions/messages/news (None = local-only)
        local_store_path: JSON file backing the key-value store (None = in-memory)
        retry_log_size: Outbound attempts kept for `retry_last()`
        log_level: Threshold passed to LoggerManager
        log_dir: Directory for log files
        news_sync: Background sync settings
    """

    webhook_url: str = DEFAULT_WEBHOOK_URL
    request_timeout: float = Field(15.0, gt=0)
    database_path: Optional[Path] = None
    local_store_path: Optional[Path] = None
    retry_log_size: int = Field(10, ge=1)
    log_level: str = "INFO"
    log_dir: str = "logs"
    news_sync: NewsSyncConfig = Field(default_factory=NewsSyncConfig)


# Environment variable -> dotted config key
ENV_OVERRIDES = {
    "ALPO_WEBHOOK_URL": "webhook_url",
    "ALPO_REQUEST_TIMEOUT": "request_timeout",
    "ALPO_DATABASE_PATH": "database_path",
    "ALPO_LOCAL_STORE_PATH": "local_store_path",
    "ALPO_LOG_LEVEL": "log_level",
    "ALPO_NEWS_SYNC_INTERVAL": "news_sync.interval_seconds",
    "ALPO_NEWS_SYNC_ENABLED": "news_sync.enabled",
}


def _set_dotted(data: Dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def load_config(
    path: Optional[str | Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> AlpoConfig:
    """Build an AlpoConfig from an optional YAML file plus environment overrides.

    Args:
        path: YAML config file; skipped when None
        environ: Mapping to read overrides from (defaults to os.environ)

    Returns:
        Validated AlpoConfig

    Raises:
        FileNotFoundError: If `path` is given but does not exist
        pydantic.ValidationError: If a value has the wrong type or range
    """
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    if path is not None:
        data = dict(ConfigLoader(path).as_dict())
        if isinstance(data.get("news_sync"), dict):
            data["news_sync"] = dict(data["news_sync"])

    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None and value != "":
            _set_dotted(data, key, value)

    return AlpoConfig.model_validate(data)
