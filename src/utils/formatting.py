from __future__ import annotations

from decimal import Decimal

VOLUME_QUANTUM = Decimal("0.01")
GALLON_QUANTUM = Decimal("0.001")


def format_liters(value: Decimal) -> str:
    return f"{value.quantize(VOLUME_QUANTUM):,.2f}"


def format_gallons(value: Decimal) -> str:
    return f"{value.quantize(GALLON_QUANTUM):,.3f}"


def format_signed(value: Decimal) -> str:
    text = format_liters(value)
    if value > 0:
        return f"+{text}"
    return text


def format_currency(value: Decimal) -> str:
    cents = value.quantize(Decimal("0.01"))
    return f"{cents:.2f}"
