from __future__ import annotations

from decimal import Decimal

WINE_GALLONS_PER_LITER = Decimal("0.264172")


def liters_to_wine_gallons(liters: Decimal) -> Decimal:
    return liters * WINE_GALLONS_PER_LITER
