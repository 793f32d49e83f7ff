"""Unit tests for RUT validation and formatting."""

import pytest

from services.rut.validator import clean_rut, compute_check_char, format_rut, validate_rut

CHECK_CHARS = "0123456789k"


@pytest.mark.parametrize(
    "raw",
    [
        "12345678-5",
        "12.345.678-5",
        "123456785",
        " 12345678 - 5 ",
        "11111111-1",
        "6-k",
        "6-K",
        "14-0",
    ],
)
def test_validate_known_valid(raw: str) -> None:
    """Known valid RUTs in several shapes pass."""
    assert validate_rut(raw) is True


@pytest.mark.parametrize("raw", ["12345678-4", "11111111-2", "6-0", "14-k"])
def test_validate_wrong_check_char(raw: str) -> None:
    """A wrong check character fails."""
    assert validate_rut(raw) is False


@pytest.mark.parametrize("raw", ["", "5", "-", "abc", "k"])
def test_validate_too_short(raw: str) -> None:
    """Fewer than two significant characters is never valid."""
    assert validate_rut(raw) is False


def test_validate_rejects_k_inside_body() -> None:
    """A 'k' is only allowed as check character."""
    assert validate_rut("1k345678-5") is False


def test_clean_rut_strips_separators() -> None:
    assert clean_rut("12.345.678-K") == "12345678K"
    assert clean_rut(None) == ""  # type: ignore[arg-type]


def test_format_rut_canonical() -> None:
    """Formatting inserts the dash and lower-cases the check char."""
    assert format_rut("12.345.678-5") == "12345678-5"
    assert format_rut("6K") == "6-k"
    assert format_rut("7") == "7"
    assert format_rut("") == ""


@pytest.mark.parametrize("raw", ["12.345.678-5", "6K", "7", "", "9.876.543-2", "xx11-1"])
def test_format_rut_idempotent(raw: str) -> None:
    once = format_rut(raw)
    assert format_rut(once) == once


@pytest.mark.parametrize("body", ["1", "6", "14", "999", "12345678", "76543210", "20000000"])
def test_exactly_one_check_char_is_valid(body: str) -> None:
    """Of the 11 possible check characters exactly one validates."""
    valid = [c for c in CHECK_CHARS if validate_rut(format_rut(body + c))]

    assert valid == [compute_check_char(body)]


def test_compute_check_char_known_values() -> None:
    assert compute_check_char("12345678") == "5"
    assert compute_check_char("6") == "k"
    assert compute_check_char("14") == "0"


@pytest.mark.parametrize("body", ["", "12a4", "-1"])
def test_compute_check_char_rejects_non_numeric(body: str) -> None:
    with pytest.raises(ValueError, match="numeric"):
        compute_check_char(body)
