from __future__ import annotations

import base64

import pytest

from trustate.pairing import totp

# RFC 6238 appendix B secret ("12345678901234567890") in base32
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
# "050471" in full-width digits
FULL_WIDTH_CODE = "\uff10\uff15\uff10\uff14\uff17\uff11"


@pytest.mark.parametrize(
    ("unix_time", "expected"),
    [
        (59, "287082"),
        (1111111109, "081804"),
        (1111111111, "050471"),
        (1234567890, "005924"),
        (2000000000, "279037"),
    ],
)
def test_generate_code_matches_reference_vectors(unix_time: int, expected: str) -> None:
    assert totp.generate_code(RFC_SECRET, unix_time) == expected


def test_generate_code_is_stable_within_a_step() -> None:
    assert totp.generate_code(RFC_SECRET, 1111111110) == totp.generate_code(
        RFC_SECRET, 1111111139
    )


def test_generate_secret_is_160_bits_of_base32() -> None:
    secret = totp.generate_secret()
    padded = secret + "=" * (-len(secret) % 8)
    assert len(base64.b32decode(padded)) == 20
    assert secret != totp.generate_secret()


def test_secret_accepts_lowercase_and_spaces() -> None:
    spaced = " ".join(RFC_SECRET[i : i + 4] for i in range(0, len(RFC_SECRET), 4)).lower()
    assert totp.generate_code(spaced, 59) == "287082"


def test_invalid_secret_raises_value_error() -> None:
    with pytest.raises(ValueError):
        totp.generate_code("not base32!", 59)


def test_verify_accepts_previous_current_and_next_step() -> None:
    now = 1111111111
    for offset in (-30, 0, 30):
        code = totp.generate_code(RFC_SECRET, now + offset)
        assert totp.verify_code(RFC_SECRET, code, now) is True


def test_verify_rejects_codes_two_steps_away() -> None:
    now = 1111111111
    for offset in (-60, 60):
        code = totp.generate_code(RFC_SECRET, now + offset)
        assert totp.verify_code(RFC_SECRET, code, now) is False


def test_verify_without_skew_accepts_only_current_step() -> None:
    now = 1111111111
    previous = totp.generate_code(RFC_SECRET, now - 30)
    assert totp.verify_code(RFC_SECRET, previous, now, skew_steps=0) is False
    assert totp.verify_code(RFC_SECRET, totp.generate_code(RFC_SECRET, now), now, skew_steps=0)


@pytest.mark.parametrize(
    "submitted",
    ["", "12345", "1234567", "abcdef", "05047a", FULL_WIDTH_CODE, "050471\n0"],
)
def test_verify_rejects_malformed_codes(submitted: str) -> None:
    assert totp.verify_code(RFC_SECRET, submitted, 1111111111) is False


def test_full_width_digits_of_a_valid_code_are_rejected() -> None:
    assert totp.verify_code(RFC_SECRET, FULL_WIDTH_CODE, 1111111111) is False
    assert totp.verify_code(RFC_SECRET, "050471", 1111111111) is True


def test_verify_ignores_surrounding_whitespace() -> None:
    assert totp.verify_code(RFC_SECRET, " 050471 ", 1111111111) is True


def test_seconds_remaining() -> None:
    assert totp.seconds_remaining(1111111110) == 30
    assert totp.seconds_remaining(1111111139) == 1
    assert totp.seconds_remaining(59) == 1
