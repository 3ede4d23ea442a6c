from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Tuple

# Day 25569 is 1970-01-01 in the 1900 date system (leap-year bug included).
UNIX_EPOCH_SERIAL = 25569
SECONDS_PER_DAY = 86400
# Anything above this is treated as a date when scanning headers (~2009-07).
SERIAL_DATE_FLOOR = 40000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def is_number(value: object) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return not math.isnan(value)
    return False


def is_serial_date(value: object) -> bool:
    return is_number(value) and value > SERIAL_DATE_FLOOR


def is_plan_year(value: object) -> bool:
    return is_number(value) and 2020 <= value <= 2100


def serial_to_datetime(serial: float) -> datetime:
    seconds = (serial - UNIX_EPOCH_SERIAL) * SECONDS_PER_DAY
    return _EPOCH + timedelta(seconds=seconds)


def decode_serial(serial: float) -> Tuple[int, int]:
    """Return ``(month, year)`` for a spreadsheet date serial."""
    moment = serial_to_datetime(serial)
    return moment.month, moment.year


def serial_to_date(serial: float) -> date:
    return serial_to_datetime(serial).date()


def encode_serial(year: int, month: int, day: int = 1) -> int:
    return (date(year, month, day) - _EPOCH.date()).days + UNIX_EPOCH_SERIAL


def datetime_to_serial(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    return UNIX_EPOCH_SERIAL + delta.total_seconds() / SECONDS_PER_DAY
