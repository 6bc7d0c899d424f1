# src/com/lingenhag/pricetrack/platform/config/settings.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

from com.lingenhag.pricetrack.domain.errors import ConfigurationMissing

load_dotenv()

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "Settings":
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            _LOG.warning("Konfigurationsdatei %s nicht gefunden. Verwende Defaults.", config_path)
            config = {}
        return cls(config=config)

    def get(self, section: str, key: str, default: Any = None) -> Any:
        return (self.config.get(section) or {}).get(key, default)

    def get_api_key(self, key_name: str, section: str) -> str | None:
        return (self.config.get(section) or {}).get("api_key") or os.getenv(key_name)

    def require_secret(self, key_name: str, section: str, field_name: str = "api_key") -> str:
        """
        Liest ein Pflicht-Secret (config.yaml → Umgebungsvariable).
        Fehlt es, wird ConfigurationMissing geworfen – der einzige fatale Fehler.
        """
        value = (self.config.get(section) or {}).get(field_name) or os.getenv(key_name)
        if not value or not str(value).strip():
            raise ConfigurationMissing(f"{key_name} fehlt ({section}.{field_name} oder Umgebungsvariable).")
        return str(value).strip()

    @property
    def environment(self) -> str:
        return str(self.get("app", "environment", os.getenv("APP_ENV", "development"))).lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"
