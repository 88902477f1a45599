"""Identifier helpers: ULID primary keys and human-readable advisory codes."""

import secrets
import string
import time
from typing import Optional

import ulid

_CODE_ALPHABET = string.digits + string.ascii_uppercase
ADVISORY_CODE_PREFIX = "ASE"


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.ULID())


def parse_ulid(ulid_str: str) -> Optional[ulid.ULID]:
    """Parse and validate a ULID string."""
    try:
        return ulid.ULID.from_str(ulid_str)
    except (ValueError, TypeError):
        return None


def is_valid_ulid(ulid_str: str) -> bool:
    """Check if a string is a valid ULID."""
    return parse_ulid(ulid_str) is not None


def generate_advisory_code(now_ms: Optional[int] = None) -> str:
    """
    Build the public advisory code, e.g. ``ASE-1718000000000-K3Z9QA``.

    Uniqueness is enforced by the database; callers regenerate on collision.
    """
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"{ADVISORY_CODE_PREFIX}-{millis}-{suffix}"
