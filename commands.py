#!/usr/bin/env python3
# commands.py - menu actions for script-menu

import os
import sys
from pathlib import Path

from outcome import SUCCESS, WARNING, LaunchFailure, result_kind
from process_subsystem import ExecutionRequest
from script_catalog import InvalidSelection

COLOR_RESET = '\033[0m'
COLOR_RED = '\033[31m'
COLOR_GREEN = '\033[32m'
COLOR_YELLOW = '\033[33m'
COLOR_CYAN = '\033[36m'
COLOR_BOLD = '\033[1m'

PROGRESS_WIDTH = 30


def _paint(text, color, enabled=True):
    return f"{color}{text}{COLOR_RESET}" if enabled else text


def printable(text):
    # undecodable filename bytes arrive as surrogates, which a terminal cannot encode
    return text.encode("utf-8", "backslashreplace").decode("utf-8")


def use_color(stream=None):
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


# -----------------------
# Selection
# -----------------------
def resolve_selection(catalog, text):
    """Menu numbers are 1-based; anything that is not a number is looked up by name."""
    text = (text or "").strip()
    if not text:
        raise InvalidSelection("empty selection")
    if text.isdigit():
        return catalog.script_at(int(text) - 1)
    return catalog.find(text)


# -----------------------
# Rendering
# -----------------------
def render_menu(catalog, color=True):
    lines = [_paint("=== SCRIPT MENU ===", COLOR_BOLD + COLOR_CYAN, color), ""]
    if not len(catalog):
        lines.append("No scripts found.")
    for i, script in enumerate(catalog, start=1):
        lines.append(f"{_paint(f'{i}.', COLOR_YELLOW, color)} "
                     f"{_paint(printable(script.name), COLOR_BOLD, color)} - {printable(script.description)}")
    lines += ["", "[number] run   [r] refresh   [l] logs   [q] quit"]
    return "\n".join(lines)


def render_progress(percent, width=PROGRESS_WIDTH, color=True):
    percent = max(0, min(100, int(percent)))
    filled = (percent * width) // 100
    bar = _paint("█" * filled, COLOR_GREEN, color and filled > 0) + " " * (width - filled)
    return f"Progress: [{bar}] {percent:3d}%"


def render_result(outcome, log_path=None, color=True):
    kind = result_kind(outcome)
    if kind == SUCCESS:
        lines = [f"Result: {_paint('PASS', COLOR_GREEN, color)} Script executed successfully!"]
    elif kind == WARNING:
        lines = [f"Result: {_paint('WARNING', COLOR_YELLOW, color)} "
                 f"Script completed with warnings (code {outcome.exit_code})."]
    else:
        lines = [f"Result: {_paint('FAIL', COLOR_RED, color)} Script failed with error code {outcome.exit_code}"]
        if isinstance(outcome, LaunchFailure) and outcome.reason:
            lines.append(f"Could not start script: {outcome.reason}")
        elif outcome.terminated_abnormally:
            sig = getattr(outcome, "signal", None)
            lines.append("Script terminated abnormally" + (f" (signal {sig})" if sig else ""))

    if kind != SUCCESS and log_path:
        lines.append(f"Detailed log saved to: {_paint(log_path, COLOR_CYAN, color)}")
        lines.append(f"View log with: {_paint(f'cat {log_path}', COLOR_BOLD, color)}")
    return "\n".join(lines)


# -----------------------
# Actions
# -----------------------
def run_script(supervisor, descriptor, params=None, out=None, color=True):
    """Run one script with a live progress bar. Returns (outcome, log_path)."""
    out = out or sys.stdout
    print(f"Executing: {_paint(printable(descriptor.name), COLOR_CYAN, color)}", file=out)
    print(f"Description: {printable(descriptor.description)}", file=out)

    def on_progress(percent):
        out.write("\r" + render_progress(percent, color=color))
        out.flush()

    outcome = supervisor.execute(ExecutionRequest(descriptor, params), on_progress)
    out.write("\n")
    log_path = supervisor.last_log_path
    print(render_result(outcome, log_path, color=color), file=out)
    return outcome, log_path


def list_logs(log_dir, limit=10):
    """Most recent failure logs first."""
    log_dir = Path(log_dir)
    try:
        logs = [p for p in log_dir.iterdir() if p.suffix == ".log" and p.is_file()]
    except FileNotFoundError:
        return []
    except PermissionError:
        print(f"logs: cannot access '{log_dir}': Permission denied")
        return []
    logs.sort(key=lambda p: p.name, reverse=True)
    return logs[:limit]


def shell_exit_code(outcome):
    # sentinels are outside 0..255 and would wrap in a shell status
    if 0 <= outcome.exit_code <= 255:
        return outcome.exit_code
    return 1

