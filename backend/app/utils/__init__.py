from app.utils.email_validation import normalize_recipient_email
from app.utils.money import round_minor_units, to_decimal
from app.utils.periods import BillingPeriod, parse_timestamp

__all__ = [
    "normalize_recipient_email",
    "round_minor_units",
    "to_decimal",
    "BillingPeriod",
    "parse_timestamp",
]
