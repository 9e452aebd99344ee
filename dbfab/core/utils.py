"""Small formatting and naming helpers."""

import hashlib
import json
from typing import Any, Sequence

from dbfab.core.escaping import json_value


def get_lookup_name(values: Sequence[Any]) -> str:
    """Stable name for a hoisted lookup list; equal lists share a name."""
    payload = json.dumps([json_value(v) for v in values], separators=(",", ":"), default=str)
    digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()
    return f"_lookup_{digest[:12]}"


def format_bytes(size: int) -> str:
    """Format a byte count as a human readable string."""
    if abs(size) < 1024:
        return f"{int(size)} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if abs(value) < 1024:
            return f"{value:.2f} {unit}"
    return f"{value / 1024:.2f} TB"


def format_duration(duration_ms: float) -> str:
    """Format milliseconds as ``850ms``, ``12.34s`` or ``3m 05s``."""
    if duration_ms < 1000:
        return f"{duration_ms:.0f}ms"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, seconds = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m {seconds:02d}s"
