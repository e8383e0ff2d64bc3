# log_writer.py — failure logs for script runs
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from external_runner import invocation_command

if TYPE_CHECKING:
    from outcome import ExecutionOutcome
    from process_subsystem import ExecutionRequest
    from script_catalog import ScriptDescriptor

log = logging.getLogger(__name__)

SAFE_NAME_LENGTH = 30
FALLBACK_PATH_MAX = 4096
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_UNSAFE = re.compile(r"[^A-Za-z0-9]")


def default_log_dir() -> Path:
    return Path(os.environ.get("HOME") or ".") / "logs"


def sanitize_name(name: str) -> str:
    """Cap to SAFE_NAME_LENGTH chars and replace anything not [A-Za-z0-9] with '_'."""
    return _UNSAFE.sub("_", name[:SAFE_NAME_LENGTH])


def path_max(directory: Path) -> int:
    try:
        return os.pathconf(directory, "PC_PATH_MAX")
    except (OSError, ValueError, AttributeError):
        return FALLBACK_PATH_MAX


@dataclass(frozen=True)
class LogRecord:
    script_name: str
    invocation_command: str
    exit_code: int
    captured_output: bytes

    def render(self) -> bytes:
        header = (
            f"===== {self.script_name} =====\n\n"
            f"Command: {self.invocation_command}\n\n"
            f"Exit code: {self.exit_code}\n\n"
            "Output:\n"
        )
        # names from os.listdir may carry undecodable bytes as surrogates
        return header.encode("utf-8", "surrogateescape") + self.captured_output + b"\n"

    @classmethod
    def parse(cls, data: bytes) -> "LogRecord":
        """Inverse of render(). Raises ValueError on anything else."""
        try:
            title, rest = data.split(b"\n\n", 1)
            command, rest = rest.split(b"\n\n", 1)
            exit_line, rest = rest.split(b"\n\n", 1)
        except ValueError:
            raise ValueError("not a script log: missing sections") from None
        if not rest.startswith(b"Output:\n") or not rest.endswith(b"\n"):
            raise ValueError("not a script log: bad output section")

        title = title.decode("utf-8", "surrogateescape")
        command = command.decode("utf-8", "surrogateescape")
        exit_line = exit_line.decode("utf-8")
        if not (title.startswith("===== ") and title.endswith(" =====")):
            raise ValueError(f"bad title line: {title!r}")
        if not command.startswith("Command: "):
            raise ValueError(f"bad command line: {command!r}")
        if not exit_line.startswith("Exit code: "):
            raise ValueError(f"bad exit code line: {exit_line!r}")

        return cls(
            script_name=title[len("===== "):-len(" =====")],
            invocation_command=command[len("Command: "):],
            exit_code=int(exit_line[len("Exit code: "):]),
            captured_output=rest[len(b"Output:\n"):-1],
        )


def read_log(path) -> LogRecord:
    return LogRecord.parse(Path(path).read_bytes())


class LogWriter:
    """Writes one log per failed run. Every failure here degrades to 'no log'."""

    def __init__(self, log_dir: Optional[Path] = None, clock=datetime.now):
        self.log_dir = Path(log_dir) if log_dir is not None else default_log_dir()
        self.last_path: Optional[Path] = None
        self._clock = clock

    def reset(self) -> None:
        self.last_path = None

    def ensure_log_directory(self) -> bool:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning(f"Cannot create log directory {self.log_dir}: {e}")
            return False
        return True

    def maybe_write_log(self, descriptor: "ScriptDescriptor", request: "ExecutionRequest",
                        outcome: "ExecutionOutcome", captured_output: bytes) -> Optional[Path]:
        if outcome.exit_code == 0:
            return None
        if not self.ensure_log_directory():
            return None

        record = LogRecord(
            script_name=descriptor.name,
            invocation_command=invocation_command(request),
            exit_code=outcome.exit_code,
            captured_output=bytes(captured_output),
        )
        try:
            payload = record.render()
        except UnicodeError as e:
            log.warning(f"Cannot render log for {descriptor.name!r}: {e}")
            return None
        path = self._write(payload, self._clock().strftime(TIMESTAMP_FORMAT), sanitize_name(descriptor.name))
        self.last_path = path
        return path

    def _write(self, payload: bytes, stamp: str, safe_name: str) -> Optional[Path]:
        limit = path_max(self.log_dir)
        attempt = 0
        while True:
            suffix = f"_{attempt}" if attempt else ""
            path = self.log_dir / f"{stamp}_{safe_name}{suffix}.log"
            if len(os.fsencode(str(path))) >= limit:
                log.warning(f"Log file path would be too long ({path}), skipping log creation")
                return None
            try:
                f = open(path, "xb")
            except FileExistsError:
                attempt += 1
                continue
            except OSError as e:
                log.warning(f"Cannot write log file {path}: {e}")
                return None
            try:
                with f:
                    f.write(payload)
            except BaseException as e:
                # a log is either complete or absent
                path.unlink()
                if isinstance(e, OSError):
                    log.warning(f"Cannot write log file {path}: {e}")
                    return None
                raise
            log.info(f"Wrote failure log {path}")
            return path
