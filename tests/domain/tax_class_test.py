import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from domain.batch import CarbonationMeasurement, CarbonationMethod, ProductType
from domain.tax_class import (
    DEFAULT_TAX_CLASS_CONFIG,
    SmallProducerCredit,
    TaxClass,
    TaxClassConfig,
    classify,
    conservative_tax_class_config,
    load_tax_class_config,
)
from tests.helpers.ledger_builders import make_batch


def _carbonation(volumes: str, method: CarbonationMethod = CarbonationMethod.FORCED) -> CarbonationMeasurement:
    return CarbonationMeasurement(
        measured_at=datetime(2025, 3, 1, tzinfo=timezone.utc),
        co2_volumes=Decimal(volumes),
        method=method,
    )


def test_juice_is_exempt() -> None:
    batch = make_batch(product_type=ProductType.JUICE, abv=None)

    assert classify(batch, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.EXEMPT


def test_still_apple_cider_is_hard_cider() -> None:
    assert classify(make_batch(), DEFAULT_TAX_CLASS_CONFIG) == TaxClass.HARD_CIDER


def test_fruit_source_outside_allowed_list_falls_to_wine() -> None:
    batch = make_batch(fruit_source="Quince")

    assert classify(batch, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.WINE_UNDER_16


def test_fruit_source_match_is_case_insensitive() -> None:
    batch = make_batch(product_type=ProductType.PERRY, fruit_source=" Pear ")

    assert classify(batch, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.HARD_CIDER


def test_lightly_carbonated_cider_keeps_hard_cider_rate() -> None:
    batch = make_batch(carbonation=_carbonation("2.5"))

    assert classify(batch, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.HARD_CIDER


def test_highly_carbonated_product_splits_on_method() -> None:
    natural = make_batch(product_type=ProductType.PET_NAT, carbonation=_carbonation("3.5", CarbonationMethod.NATURAL))
    forced = make_batch(product_type=ProductType.WINE, abv=Decimal("12"), carbonation=_carbonation("2.5"))

    assert classify(natural, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.SPARKLING_WINE
    assert classify(forced, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.CARBONATED_WINE


@pytest.mark.parametrize(
    ("abv", "expected"),
    [
        ("12", TaxClass.WINE_UNDER_16),
        ("16", TaxClass.WINE_UNDER_16),
        ("18", TaxClass.WINE_16_TO_21),
        ("22", TaxClass.WINE_21_TO_24),
        ("30", TaxClass.WINE_21_TO_24),
    ],
)
def test_still_wine_abv_brackets(abv: str, expected: TaxClass) -> None:
    batch = make_batch(product_type=ProductType.POMMEAU, abv=Decimal(abv))

    assert classify(batch, DEFAULT_TAX_CLASS_CONFIG) == expected


def test_missing_abv_uses_estimate_then_lowest_bracket() -> None:
    estimated = make_batch(abv=None, estimated_abv=Decimal("7"))
    unknown = make_batch(abv=None, estimated_abv=None)

    assert classify(estimated, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.HARD_CIDER
    assert classify(unknown, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.WINE_UNDER_16


def test_cider_at_upper_abv_limit_is_wine() -> None:
    batch = make_batch(abv=Decimal("8.5"))

    assert classify(batch, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.WINE_UNDER_16


def test_spirits_skip_fermented_thresholds() -> None:
    apple_brandy = make_batch(product_type=ProductType.BRANDY, abv=Decimal("40"))
    grape = make_batch(product_type=ProductType.SPIRITS, abv=Decimal("60"), fruit_source="Grape")

    assert classify(apple_brandy, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.APPLE_BRANDY
    assert classify(grape, DEFAULT_TAX_CLASS_CONFIG) == TaxClass.GRAPE_SPIRITS


def test_conservative_config_disables_hard_cider_rate() -> None:
    assert classify(make_batch(), conservative_tax_class_config()) == TaxClass.WINE_UNDER_16


def test_measurement_date_does_not_change_class() -> None:
    early = make_batch(carbonation=_carbonation("2.5"))
    late = make_batch(
        carbonation=_carbonation("2.5").model_copy(update={"measured_at": datetime(2025, 9, 1, tzinfo=timezone.utc)})
    )

    assert classify(early, DEFAULT_TAX_CLASS_CONFIG) == classify(late, DEFAULT_TAX_CLASS_CONFIG)


def test_classify_does_not_mutate_batch() -> None:
    batch = make_batch(carbonation=_carbonation("3.5"))
    before = batch.model_dump()

    classify(batch, DEFAULT_TAX_CLASS_CONFIG)

    assert batch.model_dump() == before


def test_load_tax_class_config(tmp_path: Path) -> None:
    path = tmp_path / "tax_classes.json"
    path.write_text(
        json.dumps(
            {
                "thresholds": {"hard_cider": {"max_abv": "7", "allowed_fruit_sources": ["apple"]}},
                "tax_rates": {"hardCider": "0.2", "wineUnder16": "1.07"},
                "small_producer_credit": {"limit_gallons": "750000"},
            }
        ),
        encoding="utf-8",
    )

    config = load_tax_class_config(path)

    assert config.tax_rates[TaxClass.HARD_CIDER] == Decimal("0.2")
    assert config.thresholds.hard_cider.max_abv == Decimal("7")
    assert config.thresholds.still_wine_max_co2_volumes == Decimal("1.98")
    assert config.small_producer_credit == SmallProducerCredit(limit_gallons=Decimal("750000"))
    assert classify(make_batch(abv=Decimal("7.5")), config) == TaxClass.WINE_UNDER_16


def test_exempt_rate_is_rejected() -> None:
    with pytest.raises(ValidationError):
        TaxClassConfig(tax_rates={TaxClass.EXEMPT: Decimal("0.1")})
