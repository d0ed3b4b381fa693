"""Settings loaded from session-flow.json and SESSION_FLOW_* environment variables."""

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .models import PriceTable
from .summary import price_table_for

CONFIG_FILENAME = "session-flow.json"

ENV_OVERRIDES = {
    "SESSION_FLOW_SESSIONS_ROOT": "sessions_root",
    "SESSION_FLOW_CACHE_DIR": "cache_dir",
    "SESSION_FLOW_CACHE_MAX_AGE": "cache_max_age_seconds",
    "SESSION_FLOW_LOG_LEVEL": "log_level",
    "SESSION_FLOW_LOG_DIR": "log_dir",
}


class Settings(BaseModel):
    """Runtime settings."""

    sessions_root: Path = Path("~/.claude/projects").expanduser()
    cache_dir: Path = Path("output") / "cache"
    cache_max_age_seconds: float | None = Field(default=None, ge=0)
    index_filename: str = "sessions-index.json"
    log_level: str = "INFO"
    log_dir: Path = Path("output") / "logs"
    log_consumers: list[dict[str, Any]] | None = None
    prices: PriceTable = PriceTable()
    model_prices: dict[str, PriceTable] = {}

    def price_table_for(self, model: str | None) -> PriceTable:
        """Prices for a model: longest matching model_prices prefix, else prices."""
        if model and any(model.startswith(prefix) for prefix in self.model_prices):
            return price_table_for(model, self.model_prices)
        return self.prices

    def price_tables(self) -> dict[str, PriceTable]:
        """Mapping form accepted by summarize(); "default" holds the fallback."""
        return {"default": self.prices, **self.model_prices}


def load_json_config(path: Path | None = None) -> dict:
    config_path = path if path is not None else Path.cwd() / CONFIG_FILENAME
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def load_settings(path: Path | None = None, env: Mapping[str, str] | None = None) -> Settings:
    """Build settings from the config file, then apply environment overrides.

    Raises:
        pydantic.ValidationError: If a value has the wrong type.
    """
    config = load_json_config(path)
    env = os.environ if env is None else env
    for var, field in ENV_OVERRIDES.items():
        value = env.get(var, "").strip()
        if value:
            config[field] = value
    settings = Settings.model_validate(config)
    settings.sessions_root = settings.sessions_root.expanduser()
    return settings
