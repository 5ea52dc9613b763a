from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from app.core.exceptions import ValidationError


def parse_timestamp(value: str | datetime, *, field: str = "date") -> datetime:
    """Parse an ISO-8601 string (or datetime) into a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = (value or "").strip()
        if not raw:
            raise ValidationError(f"Missing {field}")
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValidationError(f"Invalid {field}: {value!r} is not an ISO-8601 timestamp") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class BillingPeriod:
    """Half-open interval [start, end)."""

    start: datetime
    end: datetime

    @classmethod
    def parse(cls, start: str | datetime, end: str | datetime) -> "BillingPeriod":
        period_start = parse_timestamp(start, field="period start")
        period_end = parse_timestamp(end, field="period end")
        if period_start >= period_end:
            raise ValidationError("Invalid billing period: start date must be before end date")
        return cls(start=period_start, end=period_end)
