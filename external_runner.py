# external_runner.py — pipes, spawning and teardown for script children
from __future__ import annotations

import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from process_subsystem import ExecutionRequest

log = logging.getLogger(__name__)

PROGRESS_FD_ENV = "PROGRESS_FD"
READ_CHUNK = 4096
# Upper bound on bytes taken from one channel per cycle so a chatty child
# cannot pin the loop inside a single drain
DRAIN_LIMIT = 1 << 20


class ChannelSetupError(OSError):
    """The OS refused to hand out pipes; nothing was spawned."""


class LaunchError(OSError):
    """The child could not be started (missing, not executable, exec failed)."""


@dataclass
class Channels:
    progress_r: int
    progress_w: int
    output_r: int
    output_w: int
    _closed: set = field(default_factory=set, repr=False)

    def _close(self, fd: int) -> None:
        if fd in self._closed:
            return
        self._closed.add(fd)
        try:
            os.close(fd)
        except OSError:
            pass

    def close_write_ends(self) -> None:
        # Parent must drop its copies or EOF never arrives on the read ends
        self._close(self.progress_w)
        self._close(self.output_w)

    def close(self) -> None:
        for fd in (self.progress_w, self.output_w, self.progress_r, self.output_r):
            self._close(fd)


def open_channels() -> Channels:
    """Create the progress and output pipes; read ends are non-blocking."""
    opened: List[int] = []
    try:
        progress_r, progress_w = os.pipe()
        opened += [progress_r, progress_w]
        output_r, output_w = os.pipe()
        opened += [output_r, output_w]
        os.set_blocking(progress_r, False)
        os.set_blocking(output_r, False)
    except OSError as e:
        for fd in opened:
            try:
                os.close(fd)
            except OSError:
                pass
        raise ChannelSetupError(e.errno, f"cannot create channels: {e.strerror or e}") from e
    return Channels(progress_r, progress_w, output_r, output_w)


def build_argv(request: "ExecutionRequest", interpreter: Optional[str] = None) -> List[str]:
    argv = [interpreter, request.descriptor.path] if interpreter else [request.descriptor.path]
    if request.parameters:
        argv.append(request.parameters)
    return argv


def invocation_command(request: "ExecutionRequest") -> str:
    """Human-readable command line as it appears in logs: '<path> [params]'."""
    if request.parameters:
        return f"{request.descriptor.path} {request.parameters}"
    return request.descriptor.path


def spawn_script(request: "ExecutionRequest", channels: Channels, interpreter: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None) -> subprocess.Popen:
    argv = build_argv(request, interpreter)
    child_env = dict(os.environ if env is None else env)
    child_env[PROGRESS_FD_ENV] = str(channels.progress_w)
    try:
        proc = subprocess.Popen(
            argv,
            stdout=channels.output_w,
            stderr=subprocess.STDOUT,
            env=child_env,
            pass_fds=(channels.progress_w,),
            start_new_session=True,
        )
    except PermissionError as e:
        raise LaunchError(e.errno, f"{argv[0]}: permission denied") from e
    except FileNotFoundError as e:
        raise LaunchError(e.errno, f"{argv[0]}: no such file or directory") from e
    except OSError as e:
        raise LaunchError(e.errno, f"{argv[0]}: {e.strerror or e}") from e
    log.debug(f"Spawned pid {proc.pid}: {argv}")
    return proc


def drain(fd: int, limit: int = DRAIN_LIMIT) -> Tuple[bytes, bool]:
    """Read whatever is available right now. Returns (data, reached_eof)."""
    chunks = []
    total = 0
    while total < limit:
        try:
            data = os.read(fd, READ_CHUNK)
        except BlockingIOError:
            return b"".join(chunks), False
        except InterruptedError:
            continue
        if not data:
            return b"".join(chunks), True
        chunks.append(data)
        total += len(data)
    return b"".join(chunks), False


def terminate_process(proc: subprocess.Popen, grace: float = 2.0) -> int:
    """SIGTERM the child's process group, escalate to SIGKILL, and reap."""
    if proc.poll() is not None:
        return proc.returncode
    _signal_group(proc, signal.SIGTERM)
    try:
        return proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        log.warning(f"pid {proc.pid} ignored SIGTERM for {grace}s, killing")
    _signal_group(proc, signal.SIGKILL)
    return proc.wait()


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(os.getpgid(proc.pid), sig)
    except ProcessLookupError:
        pass
    except OSError:
        # group lookup failed, fall back to the child alone
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass
