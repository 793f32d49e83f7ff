"""Chilean RUT (Rol Único Tributario) validation and formatting.

A RUT is a numeric body followed by a check character (0-9 or 'k') computed
with a weighted modulo-11 checksum. Input is accepted in any common shape
("12.345.678-5", "12345678-5", "123456785") and cleaned before checking.
"""

import re

_NON_RUT_CHARS = re.compile(r"[^0-9kK]")


def clean_rut(raw: str) -> str:
    """Strip every character that is not a digit or k/K.

    Args:
        raw: RUT as typed by the user

    Returns:
        Cleaned string (case of 'k' preserved)
    """
    return _NON_RUT_CHARS.sub("", raw or "")


def format_rut(raw: str) -> str:
    """Format a RUT canonically as ``body-check`` with a lower-case check char.

    Best-effort: never raises. Inputs with one significant character or fewer
    are returned cleaned but otherwise unchanged.

    Args:
        raw: RUT as typed by the user

    Returns:
        Canonical RUT string
    """
    clean = clean_rut(raw)
    if len(clean) <= 1:
        return clean

    body = clean[:-1]
    check_char = clean[-1].lower()
    return f"{body}-{check_char}"


def compute_check_char(body: str) -> str:
    """Compute the modulo-11 check character for a numeric RUT body.

    Digits are consumed least-significant first with multipliers cycling
    9, 8, 7, 6, 5, 4 (equivalent to the classic 2..7 weights).

    Args:
        body: Digits of the RUT without check character

    Returns:
        '0'-'9' or 'k'

    Raises:
        ValueError: If body is empty or not purely numeric
    """
    if not body or not body.isdigit():
        raise ValueError(f"RUT body must be numeric: {body!r}")

    s = 1
    for index, digit in enumerate(reversed(body)):
        s = (s + int(digit) * (9 - index % 6)) % 11
    return str(s - 1) if s else "k"


def validate_rut(raw: str) -> bool:
    """Check a RUT's check character against its body.

    Args:
        raw: RUT in any common shape

    Returns:
        True if the check character matches the checksum
    """
    clean = clean_rut(raw)
    if len(clean) < 2:
        return False

    body = clean[:-1]
    if not body.isdigit():
        return False

    return compute_check_char(body) == clean[-1].lower()
