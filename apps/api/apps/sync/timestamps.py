"""
Timestamp normalization for mobile-authored documents.

Devices write timestamps either as epoch milliseconds (JavaScript
`Date.now()`, sometimes serialized as a string) or as ISO-8601 strings.
Everything is normalized to an aware UTC datetime.
"""
from datetime import date, datetime, timezone as dt_timezone

from django.utils.dateparse import parse_date, parse_datetime


def parse_timestamp(value):
    """
    Parse an epoch-ms number, numeric string or ISO-8601 string.

    Returns an aware UTC datetime, or None for empty input.
    Raises ValueError when the value cannot be interpreted.
    """
    if value is None or value == '':
        return None

    if isinstance(value, bool):
        raise ValueError(f'not a timestamp: {value!r}')

    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)

    if isinstance(value, str):
        text = value.strip()
        try:
            return _from_epoch_ms(float(text))
        except ValueError:
            pass

        parsed = parse_datetime(text)
        if parsed is None:
            # Date-only values ("2024-01-15") mean midnight UTC
            day = parse_date(text)
            if day is None:
                raise ValueError(f'not a timestamp: {value!r}')
            parsed = datetime(day.year, day.month, day.day)

        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=dt_timezone.utc)
        return parsed.astimezone(dt_timezone.utc)

    raise ValueError(f'not a timestamp: {value!r}')


def _from_epoch_ms(value):
    try:
        return datetime.fromtimestamp(value / 1000, tz=dt_timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f'epoch value out of range: {value!r}') from e


def parse_date_value(value):
    """Parse a date of birth ("2023-04-01", ISO datetime or epoch ms) to a date."""
    if value is None or value == '':
        return None
    if isinstance(value, str):
        day = parse_date(value.strip())
        if day is not None:
            return day
    return parse_timestamp(value).date()


def age_in_months(date_of_birth, today=None):
    """Whole months between `date_of_birth` and `today` (never negative)."""
    if date_of_birth is None:
        return None
    today = today or date.today()
    months = (today.year - date_of_birth.year) * 12 + (today.month - date_of_birth.month)
    if today.day < date_of_birth.day:
        months -= 1
    return max(months, 0)
