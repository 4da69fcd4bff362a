"""Shared utilities used across the booking assistant."""

import hashlib
import json
import re


def normalize_phone(value: str) -> str:
    """Normalize a messaging identity to digits with an optional leading +.

    Transport prefixes such as ``whatsapp:`` are dropped.

    Examples:
        >>> normalize_phone("whatsapp:+254 712 345 678")
        '+254712345678'
        >>> normalize_phone("0712-345-678")
        '0712345678'
    """
    value = value.strip()
    if ":" in value:
        value = value.split(":", 1)[1].strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def normalize_text(value: str) -> str:
    """Lowercase and collapse internal whitespace."""
    return re.sub(r"\s+", " ", value.strip().lower())


def last_digits(identity: str, count: int = 4) -> str:
    digits = re.sub(r"[^\d]", "", identity)
    return digits[-count:].rjust(count, "0")


def stable_hash(*parts: object) -> str:
    """SHA-256 over a canonical JSON rendering of ``parts``."""
    payload = json.dumps(parts, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
