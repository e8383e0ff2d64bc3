# outcome.py — classified results of one script run
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Sentinels live outside 0..255 so they never collide with a script's own code
ABNORMAL_TERMINATION_CODE = 256
LAUNCH_FAILURE_CODE = 257
CANCELLED_CODE = -1

SUCCESS = "success"
WARNING = "warning"
FAILURE = "failure"


@dataclass(frozen=True)
class ExecutionOutcome:
    exit_code: int
    terminated_abnormally: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ExecutionCompleted(ExecutionOutcome):
    """The script exited on its own with a numeric status."""


@dataclass(frozen=True)
class AbnormalTermination(ExecutionOutcome):
    """The script was killed by a signal or crashed."""
    exit_code: int = ABNORMAL_TERMINATION_CODE
    terminated_abnormally: bool = True
    signal: Optional[int] = None


@dataclass(frozen=True)
class LaunchFailure(ExecutionOutcome):
    """The script never ran: exec failed before the child could start."""
    exit_code: int = LAUNCH_FAILURE_CODE
    reason: str = ""


@dataclass(frozen=True)
class Cancelled(ExecutionOutcome):
    """The run was interrupted from our side and the child was terminated."""
    exit_code: int = CANCELLED_CODE
    terminated_abnormally: bool = True


def classify(returncode: int) -> ExecutionOutcome:
    """Map a reaped child's return code to an outcome.

    Popen reports death-by-signal N as -N; everything else is the exit status.
    """
    if returncode < 0:
        return AbnormalTermination(signal=-returncode)
    return ExecutionCompleted(exit_code=returncode)


def result_kind(outcome: ExecutionOutcome) -> str:
    if outcome.exit_code == 0:
        return SUCCESS
    if outcome.exit_code < 0:
        return WARNING
    return FAILURE
