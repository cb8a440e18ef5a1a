import datetime
import decimal
import uuid
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework.exceptions import ValidationError

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value):
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def format_currency(value):
    """Render an amount the way receipts and messages show it, e.g. ``Rs.1,234.50``."""
    prefix = getattr(settings, "POS_CURRENCY_PREFIX", "Rs.")
    return f"{prefix}{to_money(value):,.2f}"


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def local_day_bounds(day, tz=None):
    """First and last instant of ``day`` in the given (default: current) timezone."""
    tz = tz or timezone.get_current_timezone()
    return (
        timezone.make_aware(datetime.datetime.combine(day, datetime.time.min), tz),
        timezone.make_aware(datetime.datetime.combine(day, datetime.time.max), tz),
    )


def parse_date_bound(value, field_name, *, end=False):
    """Accept either a full ISO datetime or a bare YYYY-MM-DD date.

    A bare date expands to the first (or, with ``end``, last) instant of that
    local day. Unparsable input raises a 400 keyed by ``field_name``.
    """
    try:
        moment = parse_datetime(value)
        if moment is not None:
            return moment
        day = parse_date(value)
    except ValueError:
        day = None
    if day is None:
        raise ValidationError({field_name: "Use the YYYY-MM-DD format."})
    start, finish = local_day_bounds(day)
    return finish if end else start
