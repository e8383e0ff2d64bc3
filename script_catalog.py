# script_catalog.py — discovers runnable scripts in a directory
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

log = logging.getLogger(__name__)

MAX_SCRIPTS = 50
MAX_DESCRIPTION_LENGTH = 255
NO_DESCRIPTION = "No description available"


class InvalidSelection(LookupError):
    """Raised when a menu selection does not name a known script."""


@dataclass(frozen=True)
class ScriptDescriptor:
    path: str
    name: str
    description: str = NO_DESCRIPTION

    def __post_init__(self):
        if not self.path:
            raise ValueError("script path must not be empty")


def display_name(filename: str, suffixes: Sequence[str] = (".sh",)) -> str:
    """'backup_home.sh' -> 'Backup home'."""
    name = filename
    for suffix in suffixes:
        if suffix and name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    name = name.replace("_", " ")
    if name and "a" <= name[0] <= "z":
        name = name[0].upper() + name[1:]
    return name


def read_description(path: Path) -> str:
    """First comment line of the file; the shebang line is skipped."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            line = f.readline()
            if line.startswith("#!"):
                line = f.readline()
    except OSError:
        return NO_DESCRIPTION
    if not line:
        return NO_DESCRIPTION

    if line.startswith("#"):
        line = line[1:]
        if line.startswith(" "):
            line = line[1:]
    line = line.rstrip("\r\n")
    return line[:MAX_DESCRIPTION_LENGTH] or NO_DESCRIPTION


class ScriptCatalog:
    def __init__(self, scripts: Iterable[ScriptDescriptor] = (), directory: Optional[Path] = None,
                 suffixes: Sequence[str] = (".sh",), max_scripts: int = MAX_SCRIPTS,
                 require_executable: bool = True):
        self.directory = Path(directory) if directory is not None else None
        self.suffixes = tuple(suffixes)
        self.max_scripts = max_scripts
        self.require_executable = require_executable
        self._scripts: List[ScriptDescriptor] = list(scripts)

    @classmethod
    def discover(cls, directory, suffixes: Sequence[str] = (".sh",), max_scripts: int = MAX_SCRIPTS,
                 require_executable: bool = True) -> "ScriptCatalog":
        catalog = cls(directory=Path(directory), suffixes=suffixes, max_scripts=max_scripts,
                      require_executable=require_executable)
        catalog.refresh()
        return catalog

    def refresh(self) -> None:
        if self.directory is None:
            return
        self._scripts = self._scan(self.directory)
        log.info(f"Found {len(self._scripts)} script(s) in {self.directory}")

    def _scan(self, directory: Path) -> List[ScriptDescriptor]:
        try:
            entries = sorted(os.listdir(directory))
        except FileNotFoundError:
            log.error(f"Cannot open scripts directory: {directory} does not exist")
            return []
        except OSError as e:
            log.error(f"Cannot open scripts directory {directory}: {e}")
            return []

        found = []
        for entry in entries:
            if len(found) >= self.max_scripts:
                log.warning(f"Script limit of {self.max_scripts} reached, ignoring the rest of {directory}")
                break
            if entry.startswith("."):
                continue
            if not any(entry.endswith(s) and len(entry) > len(s) for s in self.suffixes):
                continue
            path = directory / entry
            if not path.is_file():
                continue
            if self.require_executable and not os.access(path, os.X_OK):
                log.warning(f"Skipping {path}: not executable")
                continue
            found.append(ScriptDescriptor(
                path=str(path),
                name=display_name(entry, self.suffixes),
                description=read_description(path),
            ))
        return found

    def list_scripts(self) -> List[ScriptDescriptor]:
        return list(self._scripts)

    def script_at(self, index: int) -> ScriptDescriptor:
        if index < 0 or index >= len(self._scripts):
            raise InvalidSelection(f"no script at index {index} (have {len(self._scripts)})")
        return self._scripts[index]

    def find(self, name: str) -> ScriptDescriptor:
        """Look a script up by display name or file name."""
        for script in self._scripts:
            if script.name == name or os.path.basename(script.path) == name:
                return script
        raise InvalidSelection(f"no script named {name!r}")

    def __len__(self):
        return len(self._scripts)

    def __iter__(self):
        return iter(self._scripts)
