"""
Settings for building and querying the referral analytics index.

Four sections, each a pydantic model:
- `index`: transaction sample retention (`keep_full_tx`, `max_stored_txs`).
- `ingest`: error log cap, CSV chunk size and the revenue-bearing transaction
  categories (a trailing `*` turns an entry into a prefix).
- `cache`: snapshot cache switch, sqlite path and the version tag that is
  mixed into every cache key.
- `query`: default limits for swap links and the Sankey view.

Values come from `settings.yaml`. Any leaf can be replaced through an
environment variable such as `REFERRAL_ANALYTICS_INDEX__MAX_STORED_TXS=1000`;
JSON values are decoded, anything else is kept as a string. Every failure
surfaces as `ConfigError`.
"""

import os
import json
from pathlib import Path
from typing import Any, Dict, List

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from .custom_types import AnalyticsOptions

# --- Custom Exceptions ---

class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass

# --- Pydantic Models for Configuration Sections ---

DEFAULT_REVENUE_CATEGORIES = [
    "SWAP",
    "CROSS_SWAP",
    "CRYPTO_DEPOSIT",
    "CRYPTO_WITHDRAW",
    "LIQUIDITY_POOL*",
    "ON_RAMP",
    "OFF_RAMP",
]


class IndexSettings(BaseModel):
    """Retention policy for the raw transaction sample kept per referral code."""
    keep_full_tx: bool = False
    max_stored_txs: int = Field(500, gt=0)

    def to_options(self) -> AnalyticsOptions:
        return AnalyticsOptions(keep_full_tx=self.keep_full_tx, max_stored_txs=self.max_stored_txs)


class IngestSettings(BaseModel):
    """Streaming decoder knobs.

    `revenue_categories` entries ending in `*` are prefixes: LIQUIDITY_POOL*
    matches every raw type starting with LIQUIDITY_POOL.
    """
    max_errors: int = Field(50, ge=0)
    csv_chunk_rows: int = Field(5000, gt=0)
    revenue_categories: List[str] = Field(default_factory=lambda: list(DEFAULT_REVENUE_CATEGORIES), min_length=1)

    @field_validator('revenue_categories')
    def categories_must_be_upper(cls, v):
        cleaned = [c.strip().upper() for c in v if c and c.strip()]
        if not cleaned:
            raise PydanticCustomError(
                "revenue_categories_empty",
                "At least one non-blank revenue category is required, got {categories}",
                {"categories": v},
            )
        return cleaned


class CacheSettings(BaseModel):
    """Snapshot cache (sqlite key/value store keyed by source file fingerprints)."""
    enabled: bool = True
    path: str = ".cache/referral_analytics.db"
    version: str = "v5-customer-usage"


class QuerySettings(BaseModel):
    sankey_limit: int = Field(24, gt=0)
    swap_links_limit: int = Field(20, gt=0)
    top_tokens_limit: int = Field(10, gt=0)


class Settings(BaseModel):
    """Top-level settings model."""
    index: IndexSettings = IndexSettings()
    ingest: IngestSettings = IngestSettings()
    cache: CacheSettings = CacheSettings()
    query: QuerySettings = QuerySettings()

# --- Helper Functions ---

ENV_PREFIX = "REFERRAL_ANALYTICS_"


def _load_config_from_yaml(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Configuration file not found at: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing YAML file at {path}: {e}") from e


def _coerce_env_value(raw: str) -> Any:
    """JSON-looking values (lists, objects, booleans, numbers) are decoded; the rest stay strings."""
    lowered = raw.strip().lower()
    if lowered in ("true", "false", "null"):
        return json.loads(lowered)
    if raw[:1] in "[{" or lowered.replace(".", "", 1).lstrip("-").isdigit():
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def _get_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """`REFERRAL_ANALYTICS_INDEX__KEEP_FULL_TX=true` -> {'index': {'keep_full_tx': True}}."""
    overrides: Dict[str, Any] = {}
    for key, raw in os.environ.items():
        if not key.startswith(prefix) or not raw:
            continue
        *sections, leaf = key[len(prefix):].lower().split("__")
        node = overrides
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = _coerce_env_value(raw)
    return overrides


def _merge_configs(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge; nested mappings merge, any other override value replaces the base one."""
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        merged[key] = _merge_configs(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def _validate(config: Dict[str, Any]) -> Settings:
    try:
        return Settings.model_validate(config)
    except ValidationError as e:
        lines = [f"config.invalid errors={e.error_count()}"]
        for error in e.errors():
            where = ".".join(str(p) for p in error["loc"]) or "<root>"
            lines.append(f"  {where}: {error['msg']}")
        logger.error("\n".join(lines))
        raise ConfigError("Failed to validate settings.") from e

# --- Public API ---

def default_settings() -> Settings:
    """Validated defaults with environment overrides applied (no YAML file)."""
    return _validate(_get_env_overrides())


def load_settings(path: str = "settings.yaml") -> Settings:
    """
    Read `path`, layer `REFERRAL_ANALYTICS_*` environment overrides on top and
    validate the result.

    Raises:
        ConfigError: missing or unparseable file, empty document, or a value
                     that fails validation.
    """
    logger.info(f"config.load path={path}")
    yaml_config = _load_config_from_yaml(Path(path))
    if not yaml_config:
        raise ConfigError(f"YAML file '{path}' is empty or invalid.")

    settings = _validate(_merge_configs(yaml_config, _get_env_overrides()))
    logger.success(f"config.loaded path={path}")
    return settings
