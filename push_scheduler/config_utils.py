from __future__ import annotations

import os
from typing import List, Optional


def env_str(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip()


def env_first(*names: str) -> Optional[str]:
    """Return the first non-blank value among ``names``."""
    for name in names:
        value = (os.environ.get(name) or "").strip()
        if value:
            return value
    return None


def env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in {"1", "true", "yes", "y", "on"}:
        return True
    if raw in {"0", "false", "no", "n", "off"}:
        return False
    return default


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def env_csv(name: str) -> List[str]:
    """Split a comma separated variable, dropping blanks and duplicates."""
    raw = os.environ.get(name) or ""
    seen: List[str] = []
    for part in raw.split(","):
        item = part.strip()
        if item and item not in seen:
            seen.append(item)
    return seen
