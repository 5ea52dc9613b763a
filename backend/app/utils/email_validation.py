from __future__ import annotations

from functools import lru_cache

from email_validator import EmailNotValidError, validate_email


@lru_cache(maxsize=256)
def _validate_format_only(candidate: str) -> str:
    """Normalize addresses validating only syntax/IDNA information."""
    info = validate_email(candidate, check_deliverability=False)
    return info.normalized or info.email


def normalize_recipient_email(value: str | None) -> str | None:
    """Return the normalized address, or None when it is blank or malformed.

    Delivery is attempted later by the email backend, so no DNS lookup is made here.
    """
    candidate = (value or "").strip()
    if not candidate:
        return None
    try:
        return _validate_format_only(candidate)
    except EmailNotValidError:
        return None
