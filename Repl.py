#!/usr/bin/env python3
# Repl.py - interactive script menu: pick a script, watch its progress, read the verdict
import logging
import sys

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import FileHistory, InMemoryHistory

import argparser
import commands
import config as menu_config
import Interrupt
from external_runner import ChannelSetupError
from log_setup import setup_logging
from log_writer import LogWriter
from process_subsystem import ScriptSupervisor
from script_catalog import InvalidSelection, ScriptCatalog

log = logging.getLogger("script_menu")

EXIT_SETUP_FAILURE = 2
EXIT_INTERRUPTED = 130

_VERBOSITY = {0: logging.WARNING, 1: logging.INFO}


# -----------------------
# Wiring
# -----------------------
def build_catalog(cfg):
    return ScriptCatalog.discover(
        cfg.scripts_dir,
        suffixes=cfg.suffixes,
        max_scripts=cfg.max_scripts,
        require_executable=cfg.interpreter is None,
    )


def build_supervisor(cfg):
    return ScriptSupervisor(
        LogWriter(cfg.log_dir),
        poll_interval=cfg.poll_interval,
        output_capacity=cfg.output_capacity,
        interpreter=cfg.interpreter,
        terminate_grace=cfg.terminate_grace,
    )


def make_session(catalog, cfg):
    words = ["q", "r", "l"] + [str(i) for i in range(1, len(catalog) + 1)] + [s.name for s in catalog]
    history = FileHistory(str(cfg.history_file)) if cfg.history_file else InMemoryHistory()
    return PromptSession(history=history, completer=WordCompleter(words, sentence=True))


# -----------------------
# Non-interactive modes
# -----------------------
def list_mode(catalog, out=None):
    out = out or sys.stdout
    print(commands.render_menu(catalog, color=commands.use_color(out)), file=out)
    return 0


def run_mode(catalog, supervisor, selection, params=None, out=None):
    out = out or sys.stdout
    try:
        descriptor = commands.resolve_selection(catalog, selection)
    except InvalidSelection as e:
        print(f"Invalid selection: {e}", file=sys.stderr)
        return 1
    try:
        outcome, _ = commands.run_script(supervisor, descriptor, params, out=out, color=commands.use_color(out))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=out)
        return EXIT_INTERRUPTED
    return commands.shell_exit_code(outcome)


# -----------------------
# Main loop
# -----------------------
def interactive(catalog, supervisor, cfg, flag, session=None):
    session = session or make_session(catalog, cfg)
    color = commands.use_color()

    while not flag.requested:
        print()
        print(commands.render_menu(catalog, color=color))
        try:
            line = session.prompt("select> ")
        except KeyboardInterrupt:
            # Ctrl-C at the menu leaves, like 'q'
            print()
            break
        except EOFError:
            print()
            break

        choice = line.strip()
        if not choice:
            continue
        if choice.lower() in ("q", "quit", "exit"):
            break
        if choice.lower() == "r":
            catalog.refresh()
            session = make_session(catalog, cfg)
            continue
        if choice.lower() == "l":
            logs = commands.list_logs(cfg.log_dir)
            if not logs:
                print("No failure logs yet.")
            for p in logs:
                print(p)
            continue

        try:
            descriptor = commands.resolve_selection(catalog, choice)
        except InvalidSelection as e:
            print(f"Invalid selection: {e}")
            continue

        try:
            params = session.prompt(f"Parameters for {commands.printable(descriptor.name)} (Enter for none): ")
        except (KeyboardInterrupt, EOFError):
            print()
            continue

        try:
            commands.run_script(supervisor, descriptor, params.strip() or None, color=color)
        except KeyboardInterrupt:
            # a signal landed after the run was over (writing the log or the verdict)
            print("\nInterrupted.")
    print("Goodbye!")
    return 0


def main(argv=None):
    args = argparser.build_parser().parse_args(argv)
    setup_logging(_VERBOSITY.get(args.verbose, logging.DEBUG))

    try:
        cfg = menu_config.from_args(args)
    except ValueError as e:
        print(f"script-menu: {e}", file=sys.stderr)
        return EXIT_SETUP_FAILURE

    catalog = build_catalog(cfg)
    if args.list:
        return list_mode(catalog)

    supervisor = build_supervisor(cfg)
    flag = Interrupt.ShutdownFlag()
    Interrupt.setup_signals(flag)
    try:
        if args.run is not None:
            return run_mode(catalog, supervisor, args.run, args.params)
        return interactive(catalog, supervisor, cfg, flag)
    except ChannelSetupError as e:
        log.critical(f"Cannot set up script channels: {e}")
        print(f"script-menu: cannot start scripts: {e.strerror}", file=sys.stderr)
        return EXIT_SETUP_FAILURE


if __name__ == "__main__":
    sys.exit(main())
