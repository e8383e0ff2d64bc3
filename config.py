# config.py — runtime settings for the script menu
from __future__ import annotations

import dataclasses as dc
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, get_type_hints

from log_writer import default_log_dir
from process_subsystem import DEFAULT_OUTPUT_CAPACITY, DEFAULT_POLL_INTERVAL, MAX_POLL_INTERVAL
from script_catalog import MAX_SCRIPTS

ENV_PREFIX = "SCRIPT_MENU_"


@dc.dataclass
class MenuConfig:
    scripts_dir: Path = Path("scripts")
    log_dir: Path = dc.field(default_factory=default_log_dir)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    output_capacity: int = DEFAULT_OUTPUT_CAPACITY
    # e.g. "/bin/bash" to run scripts that lack an exec bit or shebang
    interpreter: Optional[str] = None
    suffixes: Tuple[str, ...] = (".sh",)
    max_scripts: int = MAX_SCRIPTS
    terminate_grace: float = 2.0
    history_file: Optional[Path] = None

    def validate(self) -> None:
        if not 0 < self.poll_interval <= MAX_POLL_INTERVAL:
            raise ValueError(f"poll_interval must be in (0, {MAX_POLL_INTERVAL}], got {self.poll_interval}")
        if self.output_capacity < 0:
            raise ValueError(f"output_capacity must be >= 0, got {self.output_capacity}")
        if self.max_scripts < 1:
            raise ValueError(f"max_scripts must be >= 1, got {self.max_scripts}")
        if self.terminate_grace < 0:
            raise ValueError(f"terminate_grace must be >= 0, got {self.terminate_grace}")
        if not self.suffixes:
            raise ValueError("at least one script suffix is required")


def _parse_bool(s: str) -> bool:
    sl = s.strip().lower()
    if sl in ("1", "true", "yes", "y", "on"):
        return True
    if sl in ("0", "false", "no", "n", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {s}")


def _coerce_value(key: str, value: str, types: Dict[str, Any]):
    t = types.get(key)
    if t is None:
        raise KeyError(f"unknown setting: {key}")
    if t is bool:
        return _parse_bool(value)
    if t is int:
        return int(value)
    if t is float:
        return float(value)
    if t is Path:
        return Path(value).expanduser()
    if t == Optional[str]:
        return value or None
    if t == Optional[Path]:
        return Path(value).expanduser() if value else None
    if t == Tuple[str, ...]:
        return tuple(s.strip() for s in value.split(",") if s.strip())
    return value


def apply_overrides(config: MenuConfig, overrides: Optional[List[str]] = None) -> MenuConfig:
    """Apply 'key=value' strings on top of config (in place) and return it.

    Unknown keys and malformed values raise ValueError so typos are not silently ignored.
    """
    types = get_type_hints(MenuConfig)
    for item in overrides or []:
        if "=" not in item:
            raise ValueError(f"expected KEY=VALUE, got {item!r}")
        k, v = item.split("=", 1)
        k = k.strip().replace("-", "_")
        try:
            setattr(config, k, _coerce_value(k, v.strip(), types))
        except KeyError as e:
            raise ValueError(str(e.args[0])) from None
    return config


def from_env(environ=None) -> MenuConfig:
    """Defaults overlaid with SCRIPT_MENU_* environment variables."""
    environ = os.environ if environ is None else environ
    overrides = []
    for f in dc.fields(MenuConfig):
        value = environ.get(ENV_PREFIX + f.name.upper())
        if value is not None:
            overrides.append(f"{f.name}={value}")
    # SCRIPT_MENU_DIR is a short alias for SCRIPT_MENU_SCRIPTS_DIR
    if "scripts_dir" not in {o.split("=", 1)[0] for o in overrides} and environ.get(ENV_PREFIX + "DIR"):
        overrides.append(f"scripts_dir={environ[ENV_PREFIX + 'DIR']}")
    return apply_overrides(MenuConfig(), overrides)


def from_args(args, environ=None) -> MenuConfig:
    config = from_env(environ)
    if getattr(args, "scripts_dir", None):
        config.scripts_dir = Path(args.scripts_dir).expanduser()
    if getattr(args, "log_dir", None):
        config.log_dir = Path(args.log_dir).expanduser()
    if getattr(args, "poll_interval", None) is not None:
        config.poll_interval = args.poll_interval
    if getattr(args, "capacity", None) is not None:
        config.output_capacity = args.capacity
    if getattr(args, "interpreter", None):
        config.interpreter = args.interpreter
    apply_overrides(config, getattr(args, "set", None))
    config.validate()
    return config
