"""Logging configuration for yeil-client."""

import logging
import sys

# Define TRACE level (lower than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class ColoredFormatter(logging.Formatter):
    """Colored log formatter using ANSI escape codes."""

    COLORS = {
        "TRACE": "\033[90m",  # Dark gray
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[levelname]}{self.BOLD}{levelname}{self.RESET}"
            )

        result = super().format(record)

        record.levelname = levelname

        return result


def resolve_level(level_name: str) -> int:
    """Map a level name (including TRACE) to its numeric value."""
    name = level_name.upper()
    if name == "TRACE":
        return TRACE
    return getattr(logging, name, logging.INFO)


def setup_logging(level_name: str = "INFO") -> None:
    """Configure console logging for the CLI.

    Logs go to stderr so command output on stdout stays machine-readable.
    At DEBUG the web3 and urllib3 loggers are held at WARNING; use TRACE
    to see their traffic too.

    Args:
        level_name: Level name such as ``"INFO"`` or ``"TRACE"``
    """
    level = resolve_level(level_name)

    handler = logging.StreamHandler(sys.stderr)
    formatter = ColoredFormatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )

    if level == logging.DEBUG:
        logging.getLogger("web3").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
    elif level == TRACE:
        logging.getLogger("web3").setLevel(TRACE)
        logging.getLogger("urllib3").setLevel(TRACE)
