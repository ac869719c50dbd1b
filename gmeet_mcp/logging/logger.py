"""
Logging for the Google Meet MCP monitoring core.
Provides colored console output and optional file logging.

Console output goes to stderr: stdout belongs to the MCP stdio transport.
"""

import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

from gmeet_mcp.config.settings import settings


LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


class Logger:
    """Level-filtered logger with colored console output and file logging."""

    # ANSI color codes
    COLORS = {
        'RESET': '\033[0m',
        'DIM': '\033[2m',
        'RED': '\033[91m',
        'GREEN': '\033[92m',
        'YELLOW': '\033[93m',
        'BLUE': '\033[94m',
        'MAGENTA': '\033[95m',
        'BOLD_RED': '\033[1;91m',
        'BOLD_CYAN': '\033[1;96m',
    }

    def __init__(
        self,
        name: str = "gmeet_mcp",
        log_dir: Optional[Path] = None,
        level: Optional[str] = None,
        to_file: Optional[bool] = None,
        stream: Optional[TextIO] = None,
    ):
        """Initialize logger; unset arguments fall back to settings."""
        self.name = name
        self.stream = stream
        self.level = LEVELS.get((level or settings.LOG_LEVEL).upper(), LEVELS["INFO"])
        self.verbose = settings.VERBOSE_LOGGING
        self.debug_mode = settings.DEBUG_MODE
        if self.debug_mode or self.verbose:
            self.level = LEVELS["DEBUG"]

        self.to_file = settings.LOG_TO_FILE if to_file is None else to_file
        self.log_dir = log_dir or settings.LOG_DIR
        self.log_file = None
        if self.to_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = (
                self.log_dir
                / f"{name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
            )

    def set_level(self, level: str):
        """Change the level threshold at runtime."""
        self.level = LEVELS.get(level.upper(), self.level)

    @property
    def _out(self) -> TextIO:
        # Resolved per call so pytest's capsys and redirected stderr apply
        return self.stream or sys.stderr

    def _enabled(self, level: str) -> bool:
        return LEVELS[level] >= self.level

    def _write_to_file(self, msg: str, exc_info: bool = False):
        """Append a message, optionally with the current traceback, to the log file."""
        if not self.log_file:
            return
        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(f"[{datetime.now().isoformat()}] {msg}\n")
                if exc_info:
                    f.write(traceback.format_exc())
        except OSError as e:
            print(f"Failed to write to log file: {e}", file=self._out)

    def _format_message(self, level: str, message: str, color: str = None) -> str:
        """Format message with timestamp and optional color."""
        timestamp = datetime.now().strftime("%H:%M:%S")
        formatted_msg = f"[{timestamp}] [{self.name}] [{level}] {message}"

        if color and self._out.isatty():
            return f"{color}{formatted_msg}{self.COLORS['RESET']}"
        return formatted_msg

    def _emit(self, level: str, msg: str, color: str, exc_info: bool = False):
        if not self._enabled(level):
            return
        print(self._format_message(level, msg, self.COLORS[color]), file=self._out)
        self._write_to_file(f"[{level}] {msg}", exc_info)

    def debug(self, msg: str):
        """Log debug message (only if debug mode is enabled)."""
        self._emit("DEBUG", msg, 'MAGENTA')

    def info(self, msg: str):
        """Log info message."""
        self._emit("INFO", msg, 'BLUE')

    def success(self, msg: str):
        """Log success message at info level."""
        if not self._enabled("INFO"):
            return
        print(self._format_message("SUCCESS", msg, self.COLORS['GREEN']), file=self._out)
        self._write_to_file(f"[SUCCESS] {msg}")

    def warning(self, msg: str):
        """Log warning message."""
        self._emit("WARNING", msg, 'YELLOW')

    def error(self, msg: str, exc_info: bool = False):
        """Log error message."""
        self._emit("ERROR", msg, 'RED', exc_info)

    def critical(self, msg: str):
        """Log critical error message."""
        self._emit("CRITICAL", msg, 'BOLD_RED')

    def exception(self, msg: str):
        """Log an error together with the active traceback."""
        if not self._enabled("ERROR"):
            return
        print(self._format_message("EXCEPTION", msg, self.COLORS['RED']), file=self._out)
        traceback.print_exc(file=self._out)
        self._write_to_file(f"[EXCEPTION] {msg}", exc_info=True)

    def banner(self, title: str):
        """Print a banner with title."""
        line = "=" * (len(title) + 4)
        if self._out.isatty():
            print(f"{self.COLORS['DIM']}{line}{self.COLORS['RESET']}", file=self._out)
            print(f"{self.COLORS['BOLD_CYAN']}  {title}  {self.COLORS['RESET']}", file=self._out)
            print(f"{self.COLORS['DIM']}{line}{self.COLORS['RESET']}", file=self._out)
        else:
            print(f"{line}\n  {title}  \n{line}", file=self._out)
        self._write_to_file(f"BANNER: {title}")


# Global logger instance
logger = Logger()
