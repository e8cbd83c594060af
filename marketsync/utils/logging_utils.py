"""
Console log lines for sync runs.

Every line starts with a UTC timestamp and names the section it belongs to,
e.g. ``[2024-01-31 21:00:05] Pagination - wb_cards: page 3, 100 records``.
"""

from datetime import datetime, UTC
from typing import Optional


def _emit(text: str) -> None:
    stamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{stamp}] {text}", flush=True)


def log_section_start(section: str) -> None:
    _emit(f"Starting: {section}")


def log_section_complete(section: str, details: Optional[str] = None) -> None:
    """
    Mark a section as finished.

    Args:
        section (str): Section label used in log_section_start
        details (Optional[str]): Summary appended after a dash
    """
    _emit(f"Completed: {section} - {details}" if details else f"Completed: {section}")


def log_progress(section: str, message: str) -> None:
    _emit(f"{section}: {message}")


def log_warning(section: str, message: str) -> None:
    """Non-fatal anomaly: a skipped record, a stalled cursor, a rejected row."""
    _emit(f"Warning in {section}: {message}")


def log_error(section: str, error: Exception | str) -> None:
    """
    Report a failure caught in a section.

    Args:
        section (str): Section label
        error (Exception | str): Caught exception or message
    """
    _emit(f"Error in {section}: {error}")
