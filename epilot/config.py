"""Client configuration: defaults, `<data_dir>/config.json`, then environment overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .runtime.errors import ConfigError

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_CONNECT_TIMEOUT_S = 10.0
CONFIG_FILENAME = "config.json"


@dataclass(frozen=True, slots=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    data_dir: Path = Path.home() / ".epilot"
    connect_timeout_s: float | None = DEFAULT_CONNECT_TIMEOUT_S
    # None keeps a stalled stream open until the server or the user ends it.
    read_timeout_s: float | None = None

    @property
    def session_path(self) -> Path:
        return self.data_dir / "session.json"


def _parse_timeout(value: Any, *, name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in {"none", "off"}:
            return None
    try:
        out = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number of seconds, got {value!r}.") from e
    if out <= 0:
        raise ConfigError(f"{name} must be positive, got {out}.")
    return out


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object.")
    return data


def load_config(
    *,
    data_dir: str | Path | None = None,
    base_url: str | None = None,
    env: dict[str, str] | None = None,
) -> ClientConfig:
    environ = os.environ if env is None else env
    resolved_dir = Path(data_dir).expanduser() if data_dir else Path(
        environ.get("EPILOT_DATA_DIR", str(Path.home() / ".epilot"))
    ).expanduser()

    cfg = ClientConfig(data_dir=resolved_dir)
    file_data = _read_config_file(resolved_dir / CONFIG_FILENAME)

    if "base_url" in file_data:
        cfg = replace(cfg, base_url=str(file_data["base_url"]))
    if "connect_timeout_s" in file_data:
        cfg = replace(cfg, connect_timeout_s=_parse_timeout(file_data["connect_timeout_s"], name="connect_timeout_s"))
    if "read_timeout_s" in file_data:
        cfg = replace(cfg, read_timeout_s=_parse_timeout(file_data["read_timeout_s"], name="read_timeout_s"))

    if environ.get("EPILOT_BASE_URL"):
        cfg = replace(cfg, base_url=environ["EPILOT_BASE_URL"])
    if "EPILOT_CONNECT_TIMEOUT" in environ:
        cfg = replace(cfg, connect_timeout_s=_parse_timeout(environ["EPILOT_CONNECT_TIMEOUT"], name="EPILOT_CONNECT_TIMEOUT"))
    if "EPILOT_READ_TIMEOUT" in environ:
        cfg = replace(cfg, read_timeout_s=_parse_timeout(environ["EPILOT_READ_TIMEOUT"], name="EPILOT_READ_TIMEOUT"))

    if base_url:
        cfg = replace(cfg, base_url=base_url)

    if not cfg.base_url.strip():
        raise ConfigError("base_url must not be empty.")
    return replace(cfg, base_url=cfg.base_url.strip().rstrip("/"))
