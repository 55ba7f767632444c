# link_shortener/utils.py
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

ALPHABET = string.ascii_letters + string.digits


def generate_short_code(length: int = 6) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def random_length(minimum: int, maximum: int) -> int:
    """Uniform integer in [minimum, maximum] from a secure source."""
    if minimum > maximum:
        raise ValueError("invalid range for random_length")
    return minimum + secrets.randbelow(maximum - minimum + 1)


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class _Unset:
    """Marks a partial-update field the caller did not supply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET = _Unset()
