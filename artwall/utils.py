"""Shared utilities for artwall."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def get_artwall_home(override: Optional[str] = None) -> Path:
    """
    Return the library root directory.

    Priority:
    1. Explicit override parameter
    2. ARTWALL_HOME environment variable
    3. Default: $HOME/.artwall
    """
    if override:
        return Path(override).expanduser()
    if "ARTWALL_HOME" in os.environ:
        return Path(os.environ["ARTWALL_HOME"])
    return Path.home() / ".artwall"


def now_iso(now: Optional[datetime] = None) -> str:
    """Return ``now`` (default: the current UTC time) as an ISO 8601 string."""
    now = now or datetime.now(timezone.utc)
    return now.isoformat().replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp written by now_iso (or any offset), None if unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def age_seconds(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Seconds elapsed since an ISO timestamp, or None if it can't be parsed."""
    started = parse_iso(value)
    if started is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (now - started).total_seconds()


def format_box(title: str, width: int = 70) -> str:
    """Format a box title for CLI output."""
    return f"{'═' * width}\n{title.center(width)}\n{'═' * width}"
