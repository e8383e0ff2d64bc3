# argparser.py
import argparse


def build_parser():
    parser = argparse.ArgumentParser(
        prog="script-menu",
        description="Run scripts from a menu, show their progress and keep logs of failures.",
    )

    parser.add_argument("--scripts-dir", "-d", help="directory scanned for scripts (default: ./scripts)")
    parser.add_argument("--log-dir", help="where failure logs are written (default: $HOME/logs)")
    parser.add_argument("--poll-interval", type=float, default=None,
                        help="seconds between polls of a running script (0 < s <= 1)")
    parser.add_argument("--capacity", type=int, default=None,
                        help="bytes of script output kept for the log")
    parser.add_argument("--interpreter", help="run scripts through this program, e.g. /bin/bash")
    # Accept repeated KEY=VALUE settings on top of flags and environment
    parser.add_argument("--set", action="append", default=[], metavar="KEY=VALUE",
                        help="override any setting, may be repeated")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="more diagnostics on stderr (-vv for debug)")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--list", action="store_true", help="print the available scripts and exit")
    mode.add_argument("--run", metavar="SCRIPT",
                      help="run one script by menu number or name, without the menu")
    parser.add_argument("--params", default=None, help="parameter passed to the script run by --run")

    return parser
