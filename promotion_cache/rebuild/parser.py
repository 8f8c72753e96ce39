"""Parsing of snapshot lines into promotions."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_CEILING

from promotion_cache.schemas.models import EXPIRATION_FORMAT, PRICE_QUANTUM, Promotion
from promotion_cache.utils.errors import (
    InvalidPriceError,
    InvalidTimestampError,
    MalformedLineError,
)

FIELD_SEPARATOR = ","
FIELD_COUNT = 3

# Keeps every accepted price exactly representable as a JSON number.
MAX_PRICE = Decimal("1e13")

_PRICE_PATTERN = re.compile(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?")
_TIMESTAMP_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2} [0-9]{2}:[0-9]{2}:[0-9]{2}")


def ceil_to_cent(value: Decimal) -> Decimal:
    """Round a price up to the next cent; never rounds down."""
    return value.quantize(PRICE_QUANTUM, rounding=ROUND_CEILING)


def _parse_price(raw: str, line: str) -> Decimal:
    if not _PRICE_PATTERN.fullmatch(raw):
        raise InvalidPriceError(f"Price {raw!r} is not numeric", line=line)
    try:
        value = Decimal(raw)
        if value.copy_abs() >= MAX_PRICE:
            raise InvalidPriceError(f"Price {raw!r} is out of range", line=line)
        return ceil_to_cent(value)
    except InvalidOperation as exc:
        raise InvalidPriceError(f"Price {raw!r} is out of range", line=line) from exc


def _parse_expiration(raw: str, line: str) -> datetime:
    # The trailing UTC offset token is dropped, never applied.
    separator = raw.rfind(" ")
    if separator == -1:
        raise InvalidTimestampError(f"Timestamp {raw!r} has no offset token", line=line)
    local = raw[:separator]
    if not _TIMESTAMP_PATTERN.fullmatch(local):
        raise InvalidTimestampError(f"Timestamp {raw!r} does not match layout", line=line)
    try:
        return datetime.strptime(local, EXPIRATION_FORMAT)
    except ValueError as exc:
        raise InvalidTimestampError(f"Timestamp {raw!r} is not a valid date", line=line) from exc


def parse_promotion(line: str) -> Promotion:
    """
    Parse one snapshot line of the form ``id,price,YYYY-MM-DD HH:MM:SS +HHMM``.

    Raises:
        MalformedLineError: wrong field count or empty id.
        InvalidPriceError: price is not a plain ASCII decimal, or falls
            outside ``(-MAX_PRICE, MAX_PRICE)``.
        InvalidTimestampError: timestamp does not match the layout.
    """
    stripped = line.rstrip("\r\n")
    fields = stripped.split(FIELD_SEPARATOR)
    if len(fields) != FIELD_COUNT:
        raise MalformedLineError(
            f"Expected {FIELD_COUNT} fields, got {len(fields)}",
            line=stripped,
        )

    promotion_id, raw_price, raw_expiration = (field.strip() for field in fields)
    if not promotion_id:
        raise MalformedLineError("Promotion id is empty", line=stripped)

    return Promotion(
        id=promotion_id,
        price=_parse_price(raw_price, stripped),
        expiration_date=_parse_expiration(raw_expiration, stripped),
    )
