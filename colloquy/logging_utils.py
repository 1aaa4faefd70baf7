"""Logging utilities for Colloquy agents.

Provides color-coded output to distinguish deterministic pipeline steps from
model calls, warnings, and failures.
"""

import os
import traceback
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic operations (storage, composition)
    YELLOW = "\033[93m"    # LLM calls and warnings
    RED = "\033[91m"       # Errors and retries
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if COLLOQUY_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("COLLOQUY_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"  # Deterministic operation
LOG_TAG_LLM = "[AI]"           # LLM call
LOG_TAG_WARNING = "[?]"        # Degraded path / fallback
LOG_TAG_ERROR = "[!]"          # Error/retry
LOG_TAG_SUCCESS = "[✓]"        # Success
LOG_TAG_INFO = "[i]"           # Information


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue)."""
    print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log an LLM operation (yellow)."""
    print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_warning(message: str) -> None:
    """Log a fallback or degraded path (bold yellow)."""
    print(colored(f"{LOG_TAG_WARNING} {message}", Color.YELLOW, bold=True))


def log_error(message: str) -> None:
    """Log an error or retry (red)."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_exception(message: str, exc: BaseException) -> None:
    """Log an error together with the exception's stack trace (red)."""
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    print(colored(f"{LOG_TAG_ERROR} {message}: {exc}\n{stack.rstrip()}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))


def debug_enabled(flag: str) -> bool:
    """Return True when a DEBUG_* environment flag is switched on."""
    return os.getenv(flag, "").lower() in ("1", "true", "yes")
