"""CLI utility functions for xrdeploy.

This module provides common utilities used across CLI commands including:
- Logging setup (console plus rotating log file under .xrd/logs)
- Error handling and formatting
- Project path validation
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "xrd.log"


def setup_logging(project_dir: Optional[Path] = None, verbose: bool = False) -> Optional[Path]:
    """Setup logging for a CLI invocation.

    Console output shows warnings (everything from DEBUG in verbose mode).
    When a project directory is given, INFO and above also go to a rotating
    log file at ``<project>/.xrd/logs/xrd.log``.

    Args:
        project_dir: Project whose log directory receives the log file
        verbose: Lower the console level to DEBUG

    Returns:
        Path of the log file, or None if no file handler was installed
    """
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        if getattr(handler, "_xrd_handler", False):
            logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    console_handler._xrd_handler = True  # type: ignore[attr-defined]
    logger.addHandler(console_handler)

    if project_dir is None:
        return None

    log_dir = project_dir / ".xrd" / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logging.warning(f"Cannot create log directory {log_dir}: {e}")
        return None

    log_file = log_dir / LOG_FILE_NAME
    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler._xrd_handler = True  # type: ignore[attr-defined]
    logger.addHandler(file_handler)
    return log_file


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str = "") -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Configuration invalid", "Build failed")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        if message:
            print()
            print(message)
        print()

    @staticmethod
    def print_problems(title: str, problems: Iterable[str]) -> None:
        """Print an error title followed by one line per problem."""
        lines: List[str] = [f"  - {problem}" for problem in problems]
        ErrorFormatter.print_error(title, "\n".join(lines))

    @staticmethod
    def print_success(message: str) -> None:
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Interrupted; running tools were stopped")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        logging.exception("Unexpected error")
        ErrorFormatter.print_error("Unexpected error", f"{type(error).__name__}: {error}")

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class PathValidator:
    """Validates project paths and directories."""

    @staticmethod
    def validate_project_dir(project_dir: Path) -> None:
        """Validate that project directory exists and is a directory.

        Raises:
            SystemExit: If path doesn't exist or isn't a directory
        """
        if not project_dir.exists():
            print(f"{ErrorFormatter.RED}✗ Error: Path does not exist: {project_dir}{ErrorFormatter.RESET}")
            sys.exit(2)
        if not project_dir.is_dir():
            print(f"{ErrorFormatter.RED}✗ Error: Path is not a directory: {project_dir}{ErrorFormatter.RESET}")
            sys.exit(2)
