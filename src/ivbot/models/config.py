from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping


class ConfigError(Exception):
    pass


_DEFAULT_CONFIG_PATH = Path("config") / "bot.json"

# Environment variable -> config field
_ENV_MAP = {
    "BOT_TOKEN": "bot_token",
    "BOT_PROXY": "proxy",
    "IVBOT_DATA_DIR": "data_dir",
    "IVBOT_MAX_WORKERS": "max_workers",
    "IVBOT_LOG_LEVEL": "log_level",
    "IVBOT_LOG_JSON": "log_json",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass
class BotConfig:
    bot_token: str = ""
    proxy: str | None = None
    data_dir: Path = Path("data")
    reader_view_host: str = "t.me"
    reader_view_path: str = "/iv"
    poll_timeout: int = 30
    request_timeout: int = 10
    max_workers: int = 8
    log_level: str = "INFO"
    log_json: bool | None = None

    @property
    def candidates_path(self) -> Path:
        return self.data_dir / "rhash_vec_db.json"

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / "default_setting_db.json"

    def validate(self) -> None:
        errors: list[str] = []
        if not self.bot_token.strip():
            errors.append("bot_token is not set (BOT_TOKEN)")
        if self.poll_timeout < 0:
            errors.append(f"poll_timeout must be >= 0, got {self.poll_timeout}")
        if self.request_timeout <= 0:
            errors.append(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.max_workers < 1:
            errors.append(f"max_workers must be >= 1, got {self.max_workers}")
        if not self.reader_view_path.startswith("/"):
            errors.append(f"reader_view_path must start with '/': {self.reader_view_path!r}")
        if errors:
            raise ConfigError("Configuration validation failed:\n  " + "\n  ".join(errors))


def load_json(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Unable to read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw JSON/env value to the type of the named field."""
    if name in ("poll_timeout", "request_timeout", "max_workers"):
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if name == "data_dir":
        return Path(value)
    if name == "log_json":
        if value is None or isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigError(f"log_json must be a boolean, got {value!r}")
    if name == "proxy":
        return str(value).strip() or None
    return str(value).strip()


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BotConfig:
    """Build the bot configuration from defaults, a JSON file, and the environment.

    The file is optional; when *path* is None it comes from ``IVBOT_CONFIG``
    or falls back to ``config/bot.json``. Environment variables win over the file.
    """
    env = os.environ if environ is None else environ
    if path is None:
        path = Path(env.get("IVBOT_CONFIG", "") or _DEFAULT_CONFIG_PATH)

    known = {f.name for f in fields(BotConfig)}
    values: dict[str, Any] = {}

    if path.exists():
        for key, value in load_json(path).items():
            if key not in known:
                raise ConfigError(f"Unknown config key in {path}: {key!r}")
            values[key] = _coerce(key, value)

    for env_key, name in _ENV_MAP.items():
        raw = env.get(env_key)
        if raw is not None and raw.strip():
            values[name] = _coerce(name, raw)

    cfg = BotConfig(**values)
    cfg.validate()
    return cfg
