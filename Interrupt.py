# Interrupt.py — clean shutdown of the menu on SIGTERM / SIGHUP

import signal


class ShutdownFlag:
    """Set once a termination signal arrived; the menu loop stops at the next turn."""

    def __init__(self):
        self.requested = False
        self.signum = None

    def request(self, signum=None):
        self.requested = True
        self.signum = signum


def make_handler(flag):
    # Raising KeyboardInterrupt lets a script that is running right now be
    # cancelled through the same path as Ctrl-C
    def handle_termination(signum, frame):
        flag.request(signum)
        raise KeyboardInterrupt

    return handle_termination


# -----------------------------
#   SETUP
# -----------------------------
def setup_signals(flag):
    handler = make_handler(flag)
    signal.signal(signal.SIGTERM, handler)

    if hasattr(signal, "SIGHUP"):  # Windows does not have SIGHUP
        signal.signal(signal.SIGHUP, handler)
    return handler
