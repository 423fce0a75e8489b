#!/usr/bin/env python3
"""
WallCraft - Configuration Loader

Service settings: config.yaml, then WALLCRAFT_* environment overrides,
exposed as one dataclass per concern.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger("wallcraft")


@dataclass
class ProviderConfig:
    """Settings for a single upstream photo provider."""
    name: str
    api_key: str = ""
    base_url: str = ""
    max_per_page: int = 30
    cursor_window: int = 5
    enabled: bool = True


@dataclass
class IngestionConfig:
    """Ingestion cycle settings."""
    primary_provider: str = "unsplash"
    fallback_provider: str = "pexels"
    per_page: int = 20
    category_delay_sec: float = 1.0
    provider_delay_sec: float = 0.5
    fetch_featured: bool = True
    featured_per_page: int = 30
    # Re-upsert records that already exist so titles/urls stay fresh
    refresh_existing: bool = True
    orientation: str = "portrait"


@dataclass
class SchedulerConfig:
    """Background scheduler settings."""
    interval_minutes: int = 120
    seed_on_startup: bool = True


@dataclass
class StoreConfig:
    """Catalog store settings."""
    database_path: Path = field(default_factory=lambda: Path("./data/wallcraft.db"))


@dataclass
class RetryConfig:
    """Primary-provider retry policy."""
    max_attempts: int = 2
    base_delay_sec: float = 2.0
    max_delay_sec: float = 30.0


@dataclass
class TimeoutConfig:
    """Upstream HTTP timeouts."""
    api_call_sec: int = 15


@dataclass
class ServerConfig:
    """Read-side HTTP API settings."""
    host: str = "0.0.0.0"
    port: int = 1080


# Reference limits published by each provider
PROVIDER_DEFAULTS: dict[str, dict[str, Any]] = {
    "unsplash": {
        "base_url": "https://api.unsplash.com",
        "max_per_page": 30,
        "cursor_window": 5,
        "api_key_env": "UNSPLASH_ACCESS_KEY",
    },
    "pexels": {
        "base_url": "https://api.pexels.com/v1",
        "max_per_page": 80,
        "cursor_window": 10,
        "api_key_env": "PEXELS_API_KEY",
    },
}


class ConfigLoader:
    """
    YAML settings for the catalog service, overridable from the environment.

    Overrides are named WALLCRAFT_<SECTION>_<KEY>. Under `providers` the
    first word after the section picks the provider:
        WALLCRAFT_SCHEDULER_INTERVAL_MINUTES=60
        WALLCRAFT_SERVER_PORT=8080
        WALLCRAFT_PROVIDERS_PEXELS_ENABLED=false
    """

    ENV_PREFIX = "WALLCRAFT_"
    NESTED_SECTIONS = ("providers",)
    # Taken verbatim from the environment; "0123" is a key, not a number
    STRING_KEYS = ("api_key", "base_url", "host", "database_path")
    _VAR_PATTERN = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path or "./config.yaml")
        self.raw_config: dict = {}
        self._load()

    def _load(self) -> None:
        if not self.config_path.exists():
            logger.warning(f"No config at {self.config_path}, running on built-in defaults")
            raw = {}
        else:
            with open(self.config_path) as f:
                raw = yaml.safe_load(f) or {}
            logger.info(f"Configuration read from {self.config_path}")

        self.raw_config = self._expand_env_vars(raw)
        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        for name in sorted(os.environ):
            if not name.startswith(self.ENV_PREFIX):
                continue

            section, _, rest = name[len(self.ENV_PREFIX):].lower().partition("_")
            if not rest:
                continue

            target = self.raw_config.setdefault(section, {})
            if section in self.NESTED_SECTIONS:
                provider, _, rest = rest.partition("_")
                if not rest:
                    continue
                target = target.setdefault(provider, {}) if isinstance(target, dict) else None

            if isinstance(target, dict):
                raw = os.environ[name]
                target[rest] = raw if rest in self.STRING_KEYS else self._parse_value(raw)
                logger.debug(f"Environment override {name} -> {section}.{rest}")

    @staticmethod
    def _parse_value(value: str) -> Any:
        """Turn an environment string into bool, int, float or leave it as str."""
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False
        for cast in (int, float):
            try:
                return cast(value)
            except ValueError:
                continue
        return value

    def _expand_env_vars(self, obj: Any) -> Any:
        """Substitute ${VAR} and ${VAR:-default} inside string values."""
        if isinstance(obj, dict):
            return {key: self._expand_env_vars(item) for key, item in obj.items()}
        if isinstance(obj, list):
            return [self._expand_env_vars(item) for item in obj]
        if isinstance(obj, str):
            return self._VAR_PATTERN.sub(
                lambda m: os.environ.get(m.group(1)) or (m.group(2) or ""), obj
            )
        return obj

    def get(self, path: str, default: Any = None) -> Any:
        """
        Look up a value by dotted path, e.g. 'providers.pexels.cursor_window'.

        Returns `default` when any segment is missing.
        """
        node: Any = self.raw_config
        for key in path.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def _section(self, name: str) -> dict:
        return self.raw_config.get(name) or {}

    def get_provider_config(self, name: str) -> ProviderConfig:
        """Settings for one provider, filling gaps from its published limits."""
        defaults = PROVIDER_DEFAULTS.get(name, {})
        provider = self._section("providers").get(name) or {}

        # Blank in YAML still picks up the provider's conventional variable
        api_key = provider.get("api_key") or os.environ.get(defaults.get("api_key_env", ""), "")

        return ProviderConfig(
            name=name,
            api_key=str(api_key),
            base_url=provider.get("base_url", defaults.get("base_url", "")),
            max_per_page=int(provider.get("max_per_page", defaults.get("max_per_page", 30))),
            cursor_window=int(provider.get("cursor_window", defaults.get("cursor_window", 5))),
            enabled=bool(provider.get("enabled", True)),
        )

    def get_ingestion_config(self) -> IngestionConfig:
        section = self._section("ingestion")
        defaults = IngestionConfig()
        return IngestionConfig(**{
            key: section.get(key, getattr(defaults, key))
            for key in IngestionConfig.__dataclass_fields__
        })

    def get_scheduler_config(self) -> SchedulerConfig:
        section = self._section("scheduler")
        return SchedulerConfig(
            interval_minutes=section.get("interval_minutes", 120),
            seed_on_startup=section.get("seed_on_startup", True),
        )

    def get_store_config(self) -> StoreConfig:
        section = self._section("store")
        return StoreConfig(database_path=Path(section.get("database_path", "./data/wallcraft.db")))

    def get_retry_config(self) -> RetryConfig:
        section = self._section("retry")
        return RetryConfig(
            max_attempts=section.get("max_attempts", 2),
            base_delay_sec=section.get("base_delay_sec", 2.0),
            max_delay_sec=section.get("max_delay_sec", 30.0),
        )

    def get_timeout_config(self) -> TimeoutConfig:
        return TimeoutConfig(api_call_sec=self._section("timeouts").get("api_call_sec", 15))

    def get_server_config(self) -> ServerConfig:
        section = self._section("server")
        return ServerConfig(
            host=section.get("host", "0.0.0.0"),
            port=section.get("port", 1080),
        )

