from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import logging
import tomllib

DEFAULT_CONFIG_NAME = "fstar_bridge.toml"
DEFAULT_EXECUTABLE = "fstar.exe"
DEFAULT_TERMINATE_TIMEOUT = 2.0

EXECUTABLE_ENV = "FSTAR_BRIDGE_EXECUTABLE"
TERMINATE_TIMEOUT_ENV = "FSTAR_BRIDGE_TERMINATE_TIMEOUT"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BridgeConfig:
    executable: str = DEFAULT_EXECUTABLE
    args: tuple[str, ...] = field(default_factory=tuple)
    terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT

    def command(self, filename: str) -> list[str]:
        return [self.executable, *self.args, "--ide", filename]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("Ignoring invalid config %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def ide_defaults(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("ide", {})
    return section if isinstance(section, dict) else {}


def _timeout_value(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        timeout = float(str(value).strip())
    except ValueError:
        return None
    return timeout if timeout > 0 else None


def bridge_config(
    root: Path | None = None,
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> BridgeConfig:
    env = os.environ if environ is None else environ
    section = ide_defaults(root=root, config_path=config_path)

    executable = section.get("executable")
    if not isinstance(executable, str) or not executable.strip():
        executable = DEFAULT_EXECUTABLE
    env_executable = env.get(EXECUTABLE_ENV, "").strip()
    if env_executable:
        executable = env_executable

    raw_args = section.get("args", [])
    if isinstance(raw_args, str):
        raw_args = raw_args.split()
    args = tuple(str(item) for item in raw_args) if isinstance(raw_args, list) else ()

    timeout = _timeout_value(section.get("terminate_timeout"))
    env_timeout = _timeout_value(env.get(TERMINATE_TIMEOUT_ENV))
    if env_timeout is not None:
        timeout = env_timeout

    return BridgeConfig(
        executable=executable.strip(),
        args=args,
        terminate_timeout=timeout if timeout is not None else DEFAULT_TERMINATE_TIMEOUT,
    )
