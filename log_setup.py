import logging
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'


def setup_logging(console_level: int = logging.WARNING, stream=None) -> None:
    """
    Configures the root logger for the menu.
    Diagnostics go to stderr so they never interleave with the menu drawn on stdout.
    Existing handlers are cleared to prevent duplication on repeated calls.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(console_level)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console_handler)
