"""Privacy notice version numbering.

Notice versions are "major.minor" strings. A major bump resets minor to 0;
a minor bump increments minor. A bare "2" is read as "2.0".
"""

from __future__ import annotations

import re
import secrets

from consenthub.core.errors import ValidationError

_VERSION_RE = re.compile(r"^\s*v?(\d+)(?:\.(\d+))?\s*$")


def parse_version(version: str) -> tuple[int, int]:
    match = _VERSION_RE.match(version or "")
    if match is None:
        raise ValidationError(f"Invalid notice version '{version}', expected 'major.minor'")
    return int(match.group(1)), int(match.group(2) or 0)


def next_version(current: str, *, major: bool = False) -> str:
    """Return the version that follows current.

    >>> next_version("2.3", major=True)
    '3.0'
    >>> next_version("2.3")
    '2.4'
    """
    major_part, minor_part = parse_version(current)
    if major:
        return f"{major_part + 1}.0"
    return f"{major_part}.{minor_part + 1}"


def notice_reference(category: str, epoch_ms: int) -> str:
    """Human-readable notice id, e.g. PN-MARKETING-1718000000000-3F9A."""
    slug = re.sub(r"[^A-Z0-9]+", "", (category or "general").upper())[:12] or "GENERAL"
    return f"PN-{slug}-{epoch_ms}-{secrets.token_hex(2).upper()}"
