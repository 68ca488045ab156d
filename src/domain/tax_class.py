from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .batch import Batch, CarbonationMethod, ProductType


class TaxClass(StrEnum):
    HARD_CIDER = "hardCider"
    WINE_UNDER_16 = "wineUnder16"
    WINE_16_TO_21 = "wine16To21"
    WINE_21_TO_24 = "wine21To24"
    CARBONATED_WINE = "carbonatedWine"
    SPARKLING_WINE = "sparklingWine"
    APPLE_BRANDY = "appleBrandy"
    GRAPE_SPIRITS = "grapeSpirits"
    EXEMPT = "exempt"


TAX_CLASS_LABELS: dict[TaxClass, str] = {
    TaxClass.HARD_CIDER: "Hard Cider (<8.5% ABV)",
    TaxClass.WINE_UNDER_16: "Wine (<16% ABV)",
    TaxClass.WINE_16_TO_21: "Wine (16-21% ABV)",
    TaxClass.WINE_21_TO_24: "Wine (21-24% ABV)",
    TaxClass.CARBONATED_WINE: "Carbonated Wine",
    TaxClass.SPARKLING_WINE: "Sparkling Wine",
    TaxClass.APPLE_BRANDY: "Apple Brandy",
    TaxClass.GRAPE_SPIRITS: "Grape Spirits",
    TaxClass.EXEMPT: "Exempt (juice)",
}

SPIRIT_PRODUCTS = frozenset({ProductType.BRANDY, ProductType.SPIRITS})


class HardCiderThresholds(BaseModel):
    min_abv: Decimal = Decimal("0.5")
    max_abv: Decimal = Decimal("8.5")
    max_co2_volumes: Decimal = Decimal("3.23")
    allowed_fruit_sources: list[str] = Field(default_factory=lambda: ["apple", "pear"])

    @model_validator(mode="after")
    def _validate(self) -> HardCiderThresholds:
        if self.min_abv > self.max_abv:
            raise ValueError("hard cider min_abv must be <= max_abv")
        return self


class AbvBrackets(BaseModel):
    under_16_max_abv: Decimal = Decimal("16")
    mid_range_max_abv: Decimal = Decimal("21")
    upper_max_abv: Decimal = Decimal("24")

    @model_validator(mode="after")
    def _validate(self) -> AbvBrackets:
        if not self.under_16_max_abv <= self.mid_range_max_abv <= self.upper_max_abv:
            raise ValueError("ABV brackets must be ascending")
        return self


class ClassificationThresholds(BaseModel):
    hard_cider: HardCiderThresholds = Field(default_factory=HardCiderThresholds)
    still_wine_max_co2_volumes: Decimal = Decimal("1.98")
    abv_brackets: AbvBrackets = Field(default_factory=AbvBrackets)


class SmallProducerCredit(BaseModel):
    credit_per_gallon: Decimal = Decimal("0.056")
    limit_gallons: Decimal = Decimal("30000")


def _default_rates() -> dict[TaxClass, Decimal]:
    # Federal excise, USD per wine gallon. Spirits are taxed per proof gallon and
    # carry no wine-gallon rate.
    return {
        TaxClass.HARD_CIDER: Decimal("0.226"),
        TaxClass.WINE_UNDER_16: Decimal("1.07"),
        TaxClass.WINE_16_TO_21: Decimal("1.57"),
        TaxClass.WINE_21_TO_24: Decimal("3.15"),
        TaxClass.CARBONATED_WINE: Decimal("3.30"),
        TaxClass.SPARKLING_WINE: Decimal("3.40"),
    }


class TaxClassConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    thresholds: ClassificationThresholds = Field(default_factory=ClassificationThresholds)
    tax_rates: dict[TaxClass, Decimal] = Field(default_factory=_default_rates)
    small_producer_credit: SmallProducerCredit = Field(default_factory=SmallProducerCredit)

    @model_validator(mode="after")
    def _validate_rates(self) -> TaxClassConfig:
        if TaxClass.EXEMPT in self.tax_rates:
            raise ValueError("exempt product cannot carry a tax rate")
        for tax_class, rate in self.tax_rates.items():
            if rate < 0:
                raise ValueError(f"tax rate for {tax_class} must be >= 0")
        return self


DEFAULT_TAX_CLASS_CONFIG = TaxClassConfig()


def conservative_tax_class_config() -> TaxClassConfig:
    """Fallback when no configuration is available: no preferential hard-cider rate."""
    thresholds = ClassificationThresholds(
        hard_cider=HardCiderThresholds(allowed_fruit_sources=[]),
    )
    return TaxClassConfig(thresholds=thresholds)


def load_tax_class_config(path: Path) -> TaxClassConfig:
    return TaxClassConfig.model_validate_json(path.read_text(encoding="utf-8"))


def _co2_volumes(batch: Batch) -> Decimal:
    if batch.carbonation is None:
        return Decimal(0)
    return batch.carbonation.co2_volumes


def _is_hard_cider(batch: Batch, abv: Decimal | None, co2: Decimal, limits: HardCiderThresholds) -> bool:
    if abv is None or not limits.min_abv <= abv < limits.max_abv:
        return False
    if co2 > limits.max_co2_volumes:
        return False
    allowed = {source.strip().lower() for source in limits.allowed_fruit_sources}
    return (batch.fruit_source or "").strip().lower() in allowed


def classify(batch: Batch, config: TaxClassConfig) -> TaxClass:
    """Map batch composition to a tax class. Pure: reads attributes, never writes them."""
    if batch.product_type == ProductType.JUICE:
        return TaxClass.EXEMPT

    if batch.product_type in SPIRIT_PRODUCTS:
        if (batch.fruit_source or "").strip().lower() == "grape":
            return TaxClass.GRAPE_SPIRITS
        return TaxClass.APPLE_BRANDY

    thresholds = config.thresholds
    abv = batch.effective_abv
    co2 = _co2_volumes(batch)

    # Lightly carbonated cider may exceed the still-wine CO2 limit and still qualify.
    if _is_hard_cider(batch, abv, co2, thresholds.hard_cider):
        return TaxClass.HARD_CIDER

    if co2 > thresholds.still_wine_max_co2_volumes:
        method = batch.carbonation.method if batch.carbonation is not None else CarbonationMethod.NONE
        if method == CarbonationMethod.NATURAL:
            return TaxClass.SPARKLING_WINE
        return TaxClass.CARBONATED_WINE

    brackets = thresholds.abv_brackets
    if abv is None or abv <= brackets.under_16_max_abv:
        return TaxClass.WINE_UNDER_16
    if abv <= brackets.mid_range_max_abv:
        return TaxClass.WINE_16_TO_21
    return TaxClass.WINE_21_TO_24
