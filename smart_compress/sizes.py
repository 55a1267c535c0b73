"""Parsing of caller-facing size strings such as ``"100kb"`` or ``"1.5mb"``."""

import re

from smart_compress.errors import ConstraintError

_UNITS = {
    '': 1,
    'kb': 1024,
    'mb': 1024 * 1024,
}

# No surrounding or embedded whitespace, optional fraction, optional unit
_SIZE_RE = re.compile(r'(?P<number>\d+(?:\.\d+)?|\.\d+)(?P<unit>[a-z]*)', re.IGNORECASE)


def parse_target_size(target_size: str) -> int:
    """
    Convert a size string to a byte count.

    Accepts ``<number>``, ``<number>kb`` and ``<number>mb`` (case-insensitive).
    Fractions are allowed with a unit; a bare number is a raw byte count and
    must be an integer.

    Args:
        target_size: Size string, e.g. ``"100kb"``.

    Returns:
        Size in bytes (fractional results are truncated).

    Raises:
        ConstraintError: If the string is empty, has whitespace, an unknown
            unit or an unparsable number.
    """
    if not isinstance(target_size, str) or not target_size:
        raise ConstraintError(f"Invalid target size format: {target_size!r}")

    match = _SIZE_RE.fullmatch(target_size)
    if match is None:
        raise ConstraintError(f"Invalid target size format: {target_size!r}")

    number = match.group('number')
    unit = match.group('unit').lower()
    if unit not in _UNITS:
        raise ConstraintError(f"Unsupported size unit {unit!r} in {target_size!r}")

    if not unit:
        if '.' in number:
            raise ConstraintError(f"Byte counts must be whole numbers: {target_size!r}")
        return int(number)

    return int(float(number) * _UNITS[unit])


def format_size(size_bytes: int) -> str:
    """Human-readable size used in summaries; negative sizes keep their sign."""
    sign = '-' if size_bytes < 0 else ''
    size_bytes = abs(size_bytes)
    if size_bytes >= 1024 * 1024:
        return f"{sign}{size_bytes / (1024 * 1024):.2f}MB"
    if size_bytes >= 1024:
        return f"{sign}{size_bytes / 1024:.1f}KB"
    return f"{sign}{size_bytes}B"
