"""Voucher code wire format: ``{type}-{value}-{suffix}``.

``type`` is ``pass`` or an era identifier. ``value`` is either a play count
(``10``) or a unit-prefixed duration (``days7``, ``week1``, ``months2``).
Everything after the second hyphen is the unique suffix, usually a uuid4.
"""

from __future__ import annotations

import re
from datetime import timedelta
from uuid import uuid4

from app.economy.vouchers.errors import MalformedCodeError
from app.economy.vouchers.types import ValueKind, VoucherDescriptor, VoucherDisplay, VoucherKind

PASS_TYPE_TOKEN = "pass"
PASS_RIGHTS_VALUE = "voucher"
COUNT_VALUE_RE = re.compile(r"^\d+$")
TIME_VALUE_RE = re.compile(r"^([A-Za-z]+)(\d+)$")

DAY = timedelta(days=1)
TIME_UNITS: dict[str, tuple[str, timedelta]] = {
    "day": ("day", DAY),
    "days": ("day", DAY),
    "week": ("week", 7 * DAY),
    "weeks": ("week", 7 * DAY),
    # Months are a fixed 30 days.
    "month": ("month", 30 * DAY),
    "months": ("month", 30 * DAY),
}


def _plural(amount: int, unit: str) -> str:
    return f"{amount} {unit}{'s' if amount > 1 else ''}"


def _parse_value(value: str) -> tuple[ValueKind, int, timedelta | None, str]:
    if COUNT_VALUE_RE.match(value):
        uses = int(value)
        if uses <= 0:
            raise MalformedCodeError("Play count must be at least one")
        return ValueKind.COUNT, uses, None, f"{uses} plays"

    match = TIME_VALUE_RE.match(value)
    if match is None:
        raise MalformedCodeError(f"Invalid value {value!r}: use a count like 10 or a duration like days7")

    unit_token = match.group(1).lower()
    amount = int(match.group(2))
    unit = TIME_UNITS.get(unit_token)
    if unit is None:
        raise MalformedCodeError(f"Unknown time unit {unit_token!r}")
    if amount <= 0:
        raise MalformedCodeError("Duration must be at least one unit")

    unit_name, unit_length = unit
    return ValueKind.TIME, -1, amount * unit_length, f"{_plural(amount, unit_name)} unlimited"


def parse(code: str) -> VoucherDescriptor:
    if not isinstance(code, str) or not code.strip():
        raise MalformedCodeError("Voucher code is required")

    trimmed = code.strip()
    parts = trimmed.split("-")
    if len(parts) < 3:
        raise MalformedCodeError("Invalid voucher format: expected {type}-{value}-{suffix}")

    type_token, value = parts[0], parts[1]
    suffix = "-".join(parts[2:])
    if not type_token:
        raise MalformedCodeError("Voucher type is empty")

    value_kind, uses_granted, duration, display_text = _parse_value(value)
    is_pass = type_token == PASS_TYPE_TOKEN
    return VoucherDescriptor(
        kind=VoucherKind.PASS if is_pass else VoucherKind.ERA,
        type_token=type_token,
        rights_value=PASS_RIGHTS_VALUE if is_pass else type_token,
        value_kind=value_kind,
        uses_granted=uses_granted,
        duration=duration,
        unique_suffix=suffix,
        code=trimmed,
        display_text=display_text,
    )


def validate_format(code: str) -> bool:
    try:
        parse(code)
    except MalformedCodeError:
        return False
    return True


def build_code(type_token: str, value: str | int, suffix: str | None = None) -> str:
    if "-" in type_token:
        raise MalformedCodeError(f"Voucher type {type_token!r} must not contain hyphens")
    code = f"{type_token}-{value}-{suffix or uuid4()}"
    parse(code)
    return code


def era_title(type_token: str) -> str:
    words = type_token.replace("-", " ").replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def describe(code: str) -> VoucherDisplay:
    try:
        descriptor = parse(code)
    except MalformedCodeError:
        return VoucherDisplay(
            title="Invalid Voucher",
            description="This voucher code is not valid",
            display_text=None,
            is_valid=False,
        )

    if descriptor.kind is VoucherKind.PASS:
        title = "Generic Passes"
    else:
        title = f"{era_title(descriptor.type_token)} Access"
    return VoucherDisplay(
        title=title,
        description=f"Redeem for {descriptor.display_text}",
        display_text=descriptor.display_text,
        is_valid=True,
    )


class VoucherCodec:
    parse = staticmethod(parse)
    validate_format = staticmethod(validate_format)
    build_code = staticmethod(build_code)
    describe = staticmethod(describe)
