#!/usr/bin/env python3
# process_subsystem.py — runs one script at a time and watches it to completion

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from external_runner import (
    Channels,
    LaunchError,
    drain,
    open_channels,
    spawn_script,
    terminate_process,
)
from log_writer import LogWriter
from outcome import Cancelled, ExecutionOutcome, LaunchFailure, classify
from script_catalog import ScriptDescriptor

log = logging.getLogger(__name__)

DEFAULT_OUTPUT_CAPACITY = 64 * 1024
DEFAULT_POLL_INTERVAL = 0.1
MAX_POLL_INTERVAL = 1.0

ProgressCallback = Callable[[int], None]

_NUMBER = re.compile(rb"-?\d+")
_TRAILING_NUMBER = re.compile(rb"-?\d+$")

# longest unterminated number held back for the next cycle
MAX_PENDING_DIGITS = 8


def _no_progress(percent: int) -> None:
    pass


def parse_progress(data: bytes) -> Optional[int]:
    """Last integer in a drained progress fragment, clamped to 0..100."""
    matches = _NUMBER.findall(data)
    if not matches:
        return None
    token = matches[-1]
    negative = token.startswith(b"-")
    digits = token.lstrip(b"-").lstrip(b"0") or b"0"
    if len(digits) > 3:
        # out of range either way; never hand the child's digit run to int()
        return 0 if negative else 100
    value = int(digits)
    return max(0, min(100, -value if negative else value))


class ProgressParser:
    """Turns progress-channel reads into percentages.

    A number at the very end of a read may be half of a value split across two
    writes. It is held back one poll cycle: if the next read continues it, the
    two halves are joined, otherwise it is reported on its own.
    """

    def __init__(self):
        self._pending = b""

    def feed(self, data: bytes) -> Optional[int]:
        if not data:
            return self.flush()
        data = self._pending + data
        self._pending = b""
        tail = _TRAILING_NUMBER.search(data)
        if tail and len(tail.group()) <= MAX_PENDING_DIGITS:
            self._pending = tail.group()
            data = data[:tail.start()]
        return parse_progress(data)

    def flush(self) -> Optional[int]:
        held, self._pending = self._pending, b""
        return parse_progress(held)


class BoundedBuffer:
    """Append-only byte store. Keeps the earliest `capacity` bytes, drops the rest quietly."""

    def __init__(self, capacity: int = DEFAULT_OUTPUT_CAPACITY):
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self._data = bytearray()
        self.truncated = False

    def append(self, chunk: bytes) -> int:
        room = self.capacity - len(self._data)
        if len(chunk) > room:
            self.truncated = True
            chunk = chunk[:max(room, 0)]
        self._data += chunk
        return len(chunk)

    def getvalue(self) -> bytes:
        return bytes(self._data)

    def __len__(self):
        return len(self._data)


@dataclass(frozen=True)
class ExecutionRequest:
    descriptor: ScriptDescriptor
    parameters: Optional[str] = None

    def __post_init__(self):
        # an empty parameter string means "no argument", not an empty argument
        if self.parameters == "":
            object.__setattr__(self, "parameters", None)


@dataclass
class ExecutionSession:
    """Everything that belongs to a single execute() call."""
    request: ExecutionRequest
    output: BoundedBuffer
    progress: int = 0
    progress_parser: ProgressParser = field(default_factory=ProgressParser)
    outcome: Optional[ExecutionOutcome] = None
    log_path: Optional[Path] = None
    pid: Optional[int] = None
    started: float = field(default_factory=time.monotonic)
    finished: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        if self.finished is None:
            return None
        return self.finished - self.started


class ScriptSupervisor:
    """Spawns a script bound to an output pipe and a progress pipe and polls both.

    No timeout is applied: a script that never exits keeps execute() busy until
    the caller interrupts it (KeyboardInterrupt), which cancels the run.
    """

    def __init__(self, log_writer: Optional[LogWriter] = None, poll_interval: float = DEFAULT_POLL_INTERVAL,
                 output_capacity: int = DEFAULT_OUTPUT_CAPACITY, interpreter: Optional[str] = None,
                 terminate_grace: float = 2.0):
        if not 0 < poll_interval <= MAX_POLL_INTERVAL:
            raise ValueError(f"poll_interval must be in (0, {MAX_POLL_INTERVAL}], got {poll_interval}")
        self.log_writer = log_writer if log_writer is not None else LogWriter()
        self.poll_interval = poll_interval
        self.output_capacity = output_capacity
        self.interpreter = interpreter
        self.terminate_grace = terminate_grace
        self.last_session: Optional[ExecutionSession] = None

    @property
    def last_log_path(self) -> Optional[Path]:
        return self.log_writer.last_path

    def execute(self, request: ExecutionRequest, on_progress: Optional[ProgressCallback] = None) -> ExecutionOutcome:
        on_progress = on_progress or _no_progress
        self.log_writer.reset()
        session = ExecutionSession(request=request, output=BoundedBuffer(self.output_capacity))
        self.last_session = session

        channels = open_channels()  # ChannelSetupError is the one failure we let escape
        try:
            on_progress(0)
            try:
                proc = spawn_script(request, channels, interpreter=self.interpreter)
            except LaunchError as e:
                log.error(f"Launch failed for {request.descriptor.name}: {e.strerror}")
                session.output.append(f"{e.strerror}\n".encode("utf-8", "replace"))
                outcome = LaunchFailure(reason=str(e.strerror))
            else:
                session.pid = proc.pid
                channels.close_write_ends()
                outcome = self._monitor(proc, channels, session, on_progress)
        finally:
            channels.close()

        session.finished = time.monotonic()
        session.outcome = outcome
        on_progress(100)
        log.info(f"{request.descriptor.name} finished with exit code {outcome.exit_code} "
                 f"after {session.duration:.2f}s")

        if outcome.exit_code != 0:
            session.log_path = self.log_writer.maybe_write_log(
                request.descriptor, request, outcome, session.output.getvalue())
        return outcome

    def _monitor(self, proc, channels: Channels, session: ExecutionSession,
                 on_progress: ProgressCallback) -> ExecutionOutcome:
        open_fds = {channels.progress_r, channels.output_r}
        try:
            while True:
                self._poll_channels(channels, open_fds, session, on_progress)
                returncode = proc.poll()
                if returncode is not None:
                    break
                time.sleep(self.poll_interval)
        except KeyboardInterrupt:
            log.warning(f"Cancelling {session.request.descriptor.name} (pid {proc.pid})")
            terminate_process(proc, self.terminate_grace)
            self._poll_channels(channels, open_fds, session, _no_progress, final=True)
            return Cancelled()
        finally:
            if proc.poll() is None:
                # unwinding on an unexpected error: never leave the child behind
                terminate_process(proc, self.terminate_grace)

        # the child may exit with bytes still sitting in either pipe
        self._poll_channels(channels, open_fds, session, on_progress, final=True)
        if session.output.truncated:
            log.info(f"Output of {session.request.descriptor.name} truncated at {session.output.capacity} bytes")
        return classify(returncode)

    def _poll_channels(self, channels: Channels, open_fds: set, session: ExecutionSession,
                       on_progress: ProgressCallback, final: bool = False) -> None:
        if channels.progress_r in open_fds:
            data, eof = drain(channels.progress_r)
            if eof:
                open_fds.discard(channels.progress_r)
            value = session.progress_parser.feed(data)
            if eof or final:
                held = session.progress_parser.flush()
                if held is not None:
                    value = held
            if value is not None:
                session.progress = value
                on_progress(value)

        if channels.output_r in open_fds:
            data, eof = drain(channels.output_r)
            if eof:
                open_fds.discard(channels.output_r)
            if data:
                session.output.append(data)
