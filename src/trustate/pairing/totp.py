"""Time-step one-time codes (RFC 6238, HMAC-SHA1) on top of pyotp.

All functions are pure in ``(secret, unix_time)``; callers pass the broker's
secret explicitly on every call.
"""

from __future__ import annotations

import re

import pyotp

DEFAULT_PERIOD = 30
DEFAULT_DIGITS = 6


def generate_secret() -> str:
    """Return a random 160-bit secret, base32 encoded without padding."""
    return pyotp.random_base32()


def _totp(secret: str, period: int, digits: int) -> pyotp.TOTP:
    normalized = secret.strip().replace(" ", "").upper()
    return pyotp.TOTP(normalized, digits=digits, interval=period)


def generate_code(
    secret: str,
    unix_time: float,
    period: int = DEFAULT_PERIOD,
    digits: int = DEFAULT_DIGITS,
) -> str:
    return _totp(secret, period, digits).at(int(unix_time))


def verify_code(
    secret: str,
    submitted: str,
    unix_time: float,
    period: int = DEFAULT_PERIOD,
    digits: int = DEFAULT_DIGITS,
    skew_steps: int = 1,
) -> bool:
    """Accept the code for the current step or ``skew_steps`` steps either side."""
    submitted = submitted.strip()
    # pyotp normalizes unicode before comparing; only plain ASCII digits are codes.
    if not re.fullmatch(rf"[0-9]{{{digits}}}", submitted):
        return False
    return _totp(secret, period, digits).verify(
        submitted, for_time=int(unix_time), valid_window=skew_steps
    )


def seconds_remaining(unix_time: float, period: int = DEFAULT_PERIOD) -> int:
    return period - (int(unix_time) % period)
