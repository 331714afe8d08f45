import logging
from collections.abc import Callable

RESET = "\033[0m"
DIM = "\033[2m"
BOLD = "\033[1m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
MAGENTA = "\033[35m"

LEVEL_COLORS = {
    logging.DEBUG: DIM,
    logging.INFO: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED + BOLD,
}

# First matching rule wins.
HIGHLIGHTS: list[tuple[Callable[[str], bool], str]] = [
    (lambda msg: msg.startswith("State:") and "->" in msg, BOLD + CYAN),
    (lambda msg: msg.startswith("Transcript:"), CYAN),
    (lambda msg: msg.startswith(("Session started", "Session stopped")), BOLD + GREEN),
    (lambda msg: msg.startswith("Recognition ended"), MAGENTA),
]


class ColoredFormatter(logging.Formatter):
    """Compact console format: time, level, short logger name, message.

    Session lifecycle lines and committed transcript text are highlighted.
    With ``use_color=False`` the same layout is produced without escapes.
    """

    def __init__(self, fmt=None, datefmt=None, use_color: bool = True) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        time = self.formatTime(record, self.datefmt)
        name = record.name.rsplit(".", 1)[-1]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"

        if not self._use_color:
            return f"{time} {record.levelname:<5} {name:<16} {msg}"

        level_color = LEVEL_COLORS.get(record.levelno, "")
        style = self._message_style(record, msg, level_color)
        if style:
            msg = f"{style}{msg}{RESET}"
        return f"{DIM}{time}{RESET} {level_color}{record.levelname:<5}{RESET} {DIM}{name:<16}{RESET} {msg}"

    @staticmethod
    def _message_style(record: logging.LogRecord, msg: str, level_color: str) -> str:
        for matches, style in HIGHLIGHTS:
            if matches(msg):
                return style
        if record.levelno == logging.DEBUG:
            return DIM
        if record.levelno >= logging.WARNING:
            return level_color
        return ""
