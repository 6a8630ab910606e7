"""
EduManage Configuration

Loads settings from config/settings.toml, layers environment variable
overrides on top, and hands out a single shared instance via get_config().

The file is optional: every key has a hardcoded default so the server
still boots on a fresh checkout.

Usage:
    from core.config import get_config

    config = get_config()
    config.websocket.liveness_timeout     # 30
    config.database.db_path               # "data/edumanage.db"
    config.reload()                       # re-read from disk
"""

import copy
import logging
import os
import threading
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger("edumanage.config")


# ---------------------------------------------------------------------------
# Fallback defaults
# ---------------------------------------------------------------------------

_DEFAULTS: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
        "log_level": "info",
    },
    "websocket": {
        "path": "/ws",
        "liveness_interval": 15.0,
        "liveness_timeout": 30.0,
        "transport_ping_interval": 20.0,
    },
    "database": {
        "db_path": "data/edumanage.db",
    },
    "ai": {
        "api_key": "",
        "base_url": "",
        "model": "gpt-4o",
        "chat_max_tokens": 300,
        "temperature": 0.7,
        "intent_max_tokens": 100,
        "paper_max_tokens": 2000,
        "behavior_max_tokens": 800,
        "invitation_max_tokens": 500,
    },
    "whatsapp": {
        "api_key": "",
        "business_number": "",
        "api_url": "https://graph.facebook.com/v17.0",
        "verify_token": "",
        "timeout": 10.0,
    },
    "api": {
        "api_key": "",
    },
    "school": {
        "name": "EduManage Pro",
    },
}

# (environment variable, dotted config path, cast)
_ENV_OVERRIDES: list[tuple[str, str, Callable[[str], Any]]] = [
    ("EDUMANAGE_HOST",               "server.host",                   str),
    ("EDUMANAGE_PORT",               "server.port",                   int),
    ("EDUMANAGE_LOG_LEVEL",          "server.log_level",              str),
    ("EDUMANAGE_DB_PATH",            "database.db_path",              str),
    ("EDUMANAGE_LIVENESS_INTERVAL",  "websocket.liveness_interval",   float),
    ("EDUMANAGE_LIVENESS_TIMEOUT",   "websocket.liveness_timeout",    float),
    ("EDUMANAGE_API_KEY",            "api.api_key",                   str),
    ("OPENAI_API_KEY",               "ai.api_key",                    str),
    ("OPENAI_BASE_URL",              "ai.base_url",                   str),
    ("WHATSAPP_API_KEY",             "whatsapp.api_key",              str),
    ("WHATSAPP_BUSINESS_NUMBER",     "whatsapp.business_number",      str),
    ("WHATSAPP_API_URL",             "whatsapp.api_url",              str),
    ("WHATSAPP_VERIFY_TOKEN",        "whatsapp.verify_token",         str),
]


# ---------------------------------------------------------------------------
# ConfigSection
# ---------------------------------------------------------------------------

class ConfigSection:
    """Attribute access over a nested dict.

        section = ConfigSection({"path": "/ws", "limits": {"max": 5}})
        section.path         # "/ws"
        section.limits.max   # 5
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            return super().__getattribute__(name)
        if name not in self._data:
            raise AttributeError(
                f"Config has no key '{name}'. Available: {sorted(self._data)}"
            )
        value = self._data[name]
        return ConfigSection(value) if isinstance(value, dict) else value

    def __repr__(self) -> str:
        return f"ConfigSection({self._data!r})"

    def to_dict(self) -> dict[str, Any]:
        return self._data


# ---------------------------------------------------------------------------
# EduManageConfig
# ---------------------------------------------------------------------------

class EduManageConfig:
    """Merged view of defaults, settings.toml and environment overrides.

    Sections are read with dot access (``config.ai.model``). Values that
    components copy at construction time, such as the database path or
    the liveness interval, only change after a restart; everything else
    picks up a ``reload()`` immediately.

    Args:
        config_path: Explicit TOML path. Defaults to
                     ``<project root>/config/settings.toml``.
    """

    def __init__(self, config_path: str | Path | None = None):
        self._lock = threading.Lock()
        self._config_path = self._resolve_path(config_path)
        self._data: dict[str, Any] = {}
        self.last_loaded: str = ""
        self._load()

    @staticmethod
    def _resolve_path(config_path: str | Path | None) -> Path:
        if config_path is not None:
            return Path(config_path)
        return Path(__file__).resolve().parent.parent / "config" / "settings.toml"

    @property
    def path(self) -> Path:
        return self._config_path

    def _load(self):
        data = copy.deepcopy(_DEFAULTS)

        if self._config_path.exists():
            try:
                with open(self._config_path, "rb") as f:
                    _deep_merge(data, tomllib.load(f))
                logger.info("Configuration loaded from %s", self._config_path)
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.warning(
                    "Failed to read %s: %s, using fallback defaults",
                    self._config_path, e,
                )
        else:
            logger.warning(
                "Config file not found at %s, using fallback defaults",
                self._config_path,
            )

        for env_var, dotpath, cast in _ENV_OVERRIDES:
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            try:
                _set_nested(data, dotpath, cast(raw))
            except (ValueError, TypeError) as e:
                logger.warning("Invalid env override %s=%r: %s", env_var, raw, e)
                continue
            # Never echo secrets into the log
            shown = "***" if "key" in dotpath or "token" in dotpath else raw
            logger.info("Env override: %s=%s", env_var, shown)

        self._data = data
        self.last_loaded = datetime.now(timezone.utc).isoformat()

    def reload(self) -> dict[str, dict[str, Any]]:
        """Re-read the file and environment.

        Returns:
            Changed values keyed by dotted path, e.g.
            ``{"websocket.liveness_timeout": {"old": 30.0, "new": 45.0}}``.
        """
        with self._lock:
            previous = copy.deepcopy(self._data)
            self._load()
            changes = _diff_dicts(previous, self._data)
        logger.info("Configuration reloaded, %d change(s)", len(changes))
        return changes

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            return super().__getattribute__(name)
        data = self.__dict__.get("_data", {})
        if name not in data:
            raise AttributeError(
                f"Config has no section '{name}'. Available: {sorted(data)}"
            )
        value = data[name]
        return ConfigSection(value) if isinstance(value, dict) else value

    def to_dict(self) -> dict[str, Any]:
        """Full config as a plain dict."""
        return copy.deepcopy(self._data)


# ---------------------------------------------------------------------------
# Shared instance
# ---------------------------------------------------------------------------

_instance: EduManageConfig | None = None
_instance_lock = threading.Lock()


def get_config(config_path: str | Path | None = None) -> EduManageConfig:
    """Return the process-wide config, creating it on first use.

    ``config_path`` is only honoured by the call that creates the instance.
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = EduManageConfig(config_path=config_path)
    return _instance


def reset_config():
    """Drop the shared instance so the next get_config() re-reads everything."""
    global _instance
    with _instance_lock:
        _instance = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _deep_merge(base: dict, override: dict):
    for key, value in override.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _set_nested(data: dict, dotpath: str, value: Any):
    *parents, leaf = dotpath.split(".")
    target = data
    for key in parents:
        target = target.setdefault(key, {})
    target[leaf] = value


def _diff_dicts(old: dict, new: dict, prefix: str = "") -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    for key in old.keys() | new.keys():
        dotpath = f"{prefix}.{key}" if prefix else key
        before, after = old.get(key), new.get(key)
        if isinstance(before, dict) and isinstance(after, dict):
            changes.update(_diff_dicts(before, after, dotpath))
        elif before != after:
            changes[dotpath] = {"old": before, "new": after}
    return changes
