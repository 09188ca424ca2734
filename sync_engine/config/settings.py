"""Application settings and configuration loading."""

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from ..telemetry import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path.home() / ".sync-engine.json"


class JobDefaults(BaseModel):
    """Default job options applied when a submission omits them."""
    sync_batch_size: int = Field(50, ge=1)
    embedding_batch_size: int = Field(10, ge=1)
    retry_attempts: int = Field(3, ge=0)
    retry_delay: float = Field(1.0, ge=0.0)
    history_retention_hours: float = Field(24 * 7, gt=0)


class StorageCfg(BaseModel):
    """SQLite storage locations."""
    db_path: str = "data/sync/engine.db"
    source_path: Optional[str] = None             # JSON {entity_type: [records]} for the local provider


class SearchCfg(BaseModel):
    """Vector index and vectorizer configuration."""
    vector_enabled: bool = True
    dimensions: int = Field(384, ge=1)
    vectorizer: str = "hash"                      # hash | sentence-transformers
    model_name: str = "all-MiniLM-L6-v2"
    default_limit: int = Field(10, ge=1)
    default_threshold: float = 0.7


class ServerCfg(BaseModel):
    """HTTP control API binding."""
    host: str = "0.0.0.0"
    port: int = Field(3001, gt=0, le=65535)
    log_level: str = "INFO"


class Settings(BaseModel):
    """Main application settings."""
    jobs: JobDefaults = JobDefaults()
    storage: StorageCfg = StorageCfg()
    search: SearchCfg = SearchCfg()
    server: ServerCfg = ServerCfg()


# env var -> (section, field)
ENV_OVERRIDES = {
    "SYNC_ENGINE_DB_PATH": ("storage", "db_path"),
    "SYNC_ENGINE_SOURCE_PATH": ("storage", "source_path"),
    "SYNC_ENGINE_BATCH_SIZE": ("jobs", "sync_batch_size"),
    "SYNC_ENGINE_EMBED_BATCH_SIZE": ("jobs", "embedding_batch_size"),
    "SYNC_ENGINE_VECTOR_ENABLED": ("search", "vector_enabled"),
    "SYNC_ENGINE_VECTOR_DIM": ("search", "dimensions"),
    "SYNC_ENGINE_VECTORIZER": ("search", "vectorizer"),
    "SYNC_ENGINE_HOST": ("server", "host"),
    "SYNC_ENGINE_PORT": ("server", "port"),
    "SYNC_ENGINE_LOG_LEVEL": ("server", "log_level"),
}


def _read_config_file(path: Path) -> dict:
    if not path.exists():
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("config_file_unreadable", path=str(path), error=str(e))
        return {}

    if not isinstance(data, dict):
        logger.warning("config_file_not_object", path=str(path))
        return {}
    return data


def load_settings(
    config_file: Optional[Path] = None,
    environ: Optional[dict] = None,
) -> Settings:
    """
    Load settings from defaults, a JSON config file and the environment.

    Priority: environment variables > config file > defaults. Values
    that fail validation are dropped with a warning and the lower
    priority value is kept.

    Args:
        config_file: Path to JSON config (default: $SYNC_ENGINE_CONFIG
            or ~/.sync-engine.json)
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated Settings
    """
    environ = os.environ if environ is None else environ

    if config_file is None:
        config_file = Path(environ.get("SYNC_ENGINE_CONFIG", DEFAULT_CONFIG_FILE))

    settings = Settings()

    file_data = _read_config_file(Path(config_file))
    if file_data:
        try:
            settings = Settings.model_validate(file_data)
        except ValidationError as e:
            logger.warning("config_file_invalid", path=str(config_file), error=str(e))

    for env_name, (section, field) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue

        data = settings.model_dump()
        data[section][field] = raw
        try:
            settings = Settings.model_validate(data)
        except ValidationError:
            logger.warning("env_override_invalid", name=env_name, value=raw)

    return settings
