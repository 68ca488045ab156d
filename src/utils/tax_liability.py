from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from domain.reconciliation import VolumeRollup
from domain.tax_class import TaxClass, TaxClassConfig

from .units import liters_to_wine_gallons

ZERO = Decimal(0)
CENTS = Decimal("0.01")


@dataclass
class TaxClassLiability:
    tax_class: TaxClass
    taxable_gallons: Decimal
    rate: Decimal
    gross_tax: Decimal
    credit_gallons: Decimal
    credit: Decimal

    @property
    def net_tax(self) -> Decimal:
        return self.gross_tax - self.credit


@dataclass
class TaxLiability:
    lines: list[TaxClassLiability] = field(default_factory=list)
    untaxed_classes: list[TaxClass] = field(default_factory=list)

    @property
    def gross_tax(self) -> Decimal:
        return sum((line.gross_tax for line in self.lines), start=ZERO)

    @property
    def credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), start=ZERO)

    @property
    def net_tax(self) -> Decimal:
        return self.gross_tax - self.credit

    @property
    def credit_gallons(self) -> Decimal:
        return sum((line.credit_gallons for line in self.lines), start=ZERO)


def compute_tax_liability(
    rollups: Iterable[VolumeRollup],
    config: TaxClassConfig,
    *,
    prior_credit_gallons: Decimal = ZERO,
) -> TaxLiability:
    """Excise owed on taxable removals (sales) per tax class.

    The small-producer credit is shared across classes: it applies to the first
    ``limit_gallons`` of the calendar year, in tax-class order, after
    ``prior_credit_gallons`` already credited earlier in the year.
    """
    by_class = {rollup.tax_class: rollup for rollup in rollups if rollup.tax_class is not None}
    credit_terms = config.small_producer_credit
    remaining_credit = max(ZERO, credit_terms.limit_gallons - prior_credit_gallons)

    liability = TaxLiability()
    for tax_class in TaxClass:
        rollup = by_class.get(tax_class)
        if rollup is None or tax_class == TaxClass.EXEMPT or rollup.sales <= 0:
            continue
        rate = config.tax_rates.get(tax_class)
        if rate is None:
            liability.untaxed_classes.append(tax_class)
            continue

        gallons = liters_to_wine_gallons(rollup.sales)
        credit_gallons = min(gallons, remaining_credit)
        remaining_credit -= credit_gallons
        liability.lines.append(
            TaxClassLiability(
                tax_class=tax_class,
                taxable_gallons=gallons,
                rate=rate,
                gross_tax=(gallons * rate).quantize(CENTS),
                credit_gallons=credit_gallons,
                credit=(credit_gallons * credit_terms.credit_per_gallon).quantize(CENTS),
            )
        )
    return liability
