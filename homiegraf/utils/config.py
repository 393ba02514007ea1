"""
homiegraf - Configuration Management

Settings are read from ~/.config/homiegraf/settings.json, falling back to
DEFAULT_CONFIG for anything missing. Credentials can also come from the
environment (HOMIE_MQTT_USERNAME, HOMIE_MQTT_PASSWORD, HOMIE_INFLUX_KEY),
which wins over the file and is never written back to it.

Enum mapping settings:

  "enum_mappings": {
      "properties": {"therm1/main/mode": {"standby": 0, "low": 1, "high": 2},
                     "+/+/fan-mode": {"auto": 1, "continuous": 2}},
      "datatypes": {"enum": {"off": 0, "on": 1}}
  },
  "enum_presets": ["hvac", "binary"]
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .paths import get_config_dir

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    # MQTT broker
    "mqtt_host": "localhost",
    "mqtt_port": 1883,
    "mqtt_topic": "homie",
    "mqtt_username": None,
    "mqtt_password": None,
    "mqtt_keepalive": 5,
    "mqtt_tls": False,
    # Output: "telegraf" (socket listener) or "influx" (v2 write API)
    "push_method": "telegraf",
    "telegraf_host": "localhost",
    "telegraf_port": 5094,
    "telegraf_transport": "udp",
    "influx_host": "localhost",
    "influx_port": 8086,
    "influx_bucket": "homie",
    "influx_org": "",
    "influx_token": None,
    # Records
    "measurement": "homie",
    "enum_mappings": {},
    "enum_presets": [],
    "auto_enum_index": False,
    "tag_mapped_values": False,
    "keep_rejected_values": True,
    "emit_device_state": True,
    "log_level": "INFO",
}

# Environment variable -> setting key
ENV_OVERRIDES: Dict[str, str] = {
    "HOMIE_MQTT_USERNAME": "mqtt_username",
    "HOMIE_MQTT_PASSWORD": "mqtt_password",
    "HOMIE_INFLUX_KEY": "influx_token",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def default_config_path() -> Path:
    return get_config_dir() / "settings.json"


class BridgeConfig:
    """Configuration manager for the homie bridge."""

    def __init__(self, config_path: Optional[Path] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self._config_path = config_path or default_config_path()
        self._settings: Dict[str, Any] = json.loads(json.dumps(DEFAULT_CONFIG))
        self._env_keys: Dict[str, Any] = {}
        self.load()
        self.apply_env(os.environ if environ is None else environ)

    @property
    def path(self) -> Path:
        return self._config_path

    def load(self) -> None:
        """Load settings from disk, falling back to defaults."""
        if not self._config_path.exists():
            logger.info("No settings file at %s, using defaults", self._config_path)
            return
        try:
            with open(self._config_path, "r") as f:
                saved = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load settings: %s, using defaults", e)
            return
        if not isinstance(saved, dict):
            logger.warning("Settings file %s is not a JSON object, using defaults",
                           self._config_path)
            return
        for key, value in saved.items():
            if key in DEFAULT_CONFIG:
                self._settings[key] = value
            else:
                logger.debug("Ignoring unknown setting %r", key)
        logger.info("Loaded settings from %s", self._config_path)

    def apply_env(self, environ: Mapping[str, str]) -> None:
        """Override credentials from environment variables."""
        for var, key in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value:
                self._env_keys[key] = self._settings.get(key)
                self._settings[key] = value

    def save(self) -> None:
        """Persist current settings, minus values that came from the environment."""
        data = dict(self._settings)
        for key, file_value in self._env_keys.items():
            data[key] = file_value
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._config_path, "w") as f:
                json.dump(data, f, indent=2)
            logger.info("Saved settings to %s", self._config_path)
        except OSError as e:
            logger.error("Failed to save settings: %s", e)

    def get(self, key: str, default: Any = None) -> Any:
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key in DEFAULT_CONFIG:
            self._settings[key] = value
            self._env_keys.pop(key, None)

    def update(self, settings: Dict[str, Any]) -> None:
        """Apply several settings; None values are skipped (unset CLI flags)."""
        for key, value in settings.items():
            if value is not None:
                self.set(key, value)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._settings)

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the settings are usable."""
        problems = []
        if not self._settings.get("mqtt_host"):
            problems.append("no MQTT host specified")
        if not str(self._settings.get("mqtt_topic") or "").strip("/"):
            problems.append("no MQTT topic specified")
        for key in ("mqtt_port", "telegraf_port", "influx_port"):
            port = self._settings.get(key)
            if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
                problems.append(f"{key} must be an integer between 1 and 65535, got {port!r}")

        method = self._settings.get("push_method")
        if method == "telegraf":
            if not self._settings.get("telegraf_host"):
                problems.append("no telegraf host specified")
            if self._settings.get("telegraf_transport") not in ("udp", "tcp"):
                problems.append("telegraf_transport must be 'udp' or 'tcp', got "
                                f"{self._settings.get('telegraf_transport')!r}")
        elif method == "influx":
            if not self._settings.get("influx_host"):
                problems.append("no influx host specified")
            if not self._settings.get("influx_bucket"):
                problems.append("no influx bucket specified")
        else:
            problems.append(f"invalid push method {method!r}, expected 'telegraf' or 'influx'")

        if not isinstance(self._settings.get("enum_mappings"), dict):
            problems.append("enum_mappings must be an object")
        if not isinstance(self._settings.get("enum_presets"), list):
            problems.append("enum_presets must be a list")
        if str(self._settings.get("log_level", "")).upper() not in LOG_LEVELS:
            problems.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return problems
