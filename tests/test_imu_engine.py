"""Tests for the IMU computation engine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from imucalc.finance.imu import ImuEngine, qualifying_appurtenances, validate_batch
from imucalc.finance.models import (
    Appurtenance,
    ContractKind,
    ImuValidationError,
    MunicipalityKey,
    PrimaryResidence,
)
from imucalc.finance.tables import DEFAULT_RATE_TABLE, ValuationMultipliers
from tests.conftest import appurtenance, make_property, rented, residence


@pytest.fixture
def engine():
    return ImuEngine()


def _compute(engine, *properties, tables=None):
    return engine.compute(list(properties), tables or {})


class TestWorkedExamples:
    def test_available_property(self, engine):
        result = _compute(engine, make_property("p1")).properties[0]
        assert result.multiplier == 140
        assert result.taxable_base == Decimal("73500.00")
        assert result.rate == Decimal("0.86")
        assert result.deduction == Decimal("0.00")
        assert result.tax_due == Decimal("632.10")
        assert result.primary_residence is False

    def test_primary_residence_with_deduction(self, engine):
        result = _compute(engine, residence("p1")).properties[0]
        assert result.rate == Decimal("0.4")
        assert result.deduction == Decimal("200.00")
        assert result.tax_due == Decimal("94.00")
        assert result.primary_residence is True

    def test_family_use_halves_base(self, engine):
        result = _compute(engine, rented("p1", ContractKind.FAMILY_USE)).properties[0]
        assert result.taxable_base == Decimal("36750.00")
        assert result.rate == Decimal("1.06")
        assert result.tax_due == Decimal("389.55")


class TestPrimaryResidence:
    @pytest.mark.parametrize("category", ["A/1", "A/8", "A/9"])
    def test_luxury_gets_no_deduction(self, engine, category):
        result = _compute(engine, residence("p1", category=category)).properties[0]
        assert result.rate == Decimal("0.6")
        assert result.deduction == Decimal("0.00")
        assert result.primary_residence is True

    def test_luxury_amount(self, engine):
        result = _compute(engine, residence("p1", category="A/1", rent="1000")).properties[0]
        # 1000 * 1.05 * 176 = 184800; 0.6%
        assert result.taxable_base == Decimal("184800.00")
        assert result.tax_due == Decimal("1108.80")

    def test_deduction_never_makes_tax_negative(self, engine):
        result = _compute(engine, residence("p1", rent="100")).properties[0]
        assert result.tax_due == Decimal("0.00")

    def test_uses_municipal_table(self, engine, roma_table):
        tables = {MunicipalityKey.of("RM", "Roma"): roma_table}
        result = _compute(engine, residence("p1"), tables=tables).properties[0]
        # 73500 * 0.5% = 367.50 - 200
        assert result.tax_due == Decimal("167.50")


class TestAppurtenances:
    def test_highest_rent_qualifies(self, engine):
        assessment = _compute(
            engine,
            residence("casa"),
            appurtenance("box1", "casa", rent="100"),
            appurtenance("box2", "casa", rent="150"),
        )
        box1 = assessment.result_for("box1")
        box2 = assessment.result_for("box2")
        assert box2.rate == Decimal("0.4")
        assert box2.primary_residence is True
        assert box2.deduction == Decimal("0.00")
        # 150 * 1.05 * 55 = 8662.5; 0.4%
        assert box2.tax_due == Decimal("34.65")
        assert box1.rate == Decimal("0.86")
        assert box1.primary_residence is False
        # 5775 * 0.86% = 49.665, rounded half-up
        assert box1.tax_due == Decimal("49.67")

    def test_tie_goes_to_first_in_input_order(self, engine):
        assessment = _compute(
            engine,
            residence("casa"),
            appurtenance("box1", "casa", rent="100"),
            appurtenance("box2", "casa", rent="100"),
        )
        assert assessment.result_for("box1").primary_residence is True
        assert assessment.result_for("box2").primary_residence is False

    def test_one_per_category(self, engine):
        assessment = _compute(
            engine,
            residence("casa"),
            appurtenance("box", "casa", category="C/6"),
            appurtenance("cantina", "casa", category="C/2"),
            appurtenance("tettoia", "casa", category="C/7"),
        )
        assert all(r.primary_residence for r in assessment.properties)

    def test_exactly_one_per_shared_category(self, engine):
        props = [residence("casa")] + [
            appurtenance(f"box{i}", "casa", rent=str(rent))
            for i, rent in enumerate([80, 120, 95, 120, 60])
        ]
        assert qualifying_appurtenances(props) == {"box1"}

    def test_category_not_permitted(self, engine):
        assessment = _compute(
            engine,
            residence("casa"),
            appurtenance("negozio", "casa", category="C/1"),
        )
        assert assessment.result_for("negozio").rate == Decimal("0.86")

    def test_reference_to_non_primary_residence(self, engine):
        assessment = _compute(
            engine,
            make_property("casa"),
            appurtenance("box", "casa"),
        )
        assert assessment.result_for("box").rate == Decimal("0.86")

    def test_reference_to_missing_property(self, engine):
        assessment = _compute(engine, appurtenance("box", "nowhere"))
        assert assessment.result_for("box").rate == Decimal("0.86")

    def test_luxury_residence_rate_applies(self, engine):
        assessment = _compute(
            engine,
            residence("villa", category="A/1"),
            appurtenance("box", "villa", rent="100"),
        )
        assert assessment.result_for("box").rate == Decimal("0.6")
        assert assessment.result_for("box").tax_due == Decimal("34.65")

    def test_rate_comes_from_residence_table(self, engine, roma_table):
        tables = {MunicipalityKey.of("RM", "Roma"): roma_table}
        assessment = _compute(
            engine,
            residence("casa"),
            appurtenance("box", "casa", municipality="Milano", province="MI"),
            tables=tables,
        )
        assert assessment.result_for("box").rate == Decimal("0.5")


class TestRentedAndDefault:
    def test_market_contract(self, engine):
        result = _compute(engine, rented("p1", ContractKind.MARKET)).properties[0]
        assert result.rate == Decimal("1.06")
        assert result.tax_due == Decimal("779.10")

    @pytest.mark.parametrize(
        "contract", [ContractKind.AGREED, ContractKind.TRANSITIONAL, ContractKind.STUDENT]
    )
    def test_reduced_contracts(self, engine, contract):
        result = _compute(engine, rented("p1", contract)).properties[0]
        assert result.rate == Decimal("0.575")
        assert result.taxable_base == Decimal("73500.00")

    def test_contract_missing_from_table_uses_default_rate(self, engine):
        table = DEFAULT_RATE_TABLE.model_copy(update={"rented_rates": {}})
        tables = {MunicipalityKey.of("RM", "Roma"): table}
        result = _compute(engine, rented("p1", ContractKind.MARKET), tables=tables).properties[0]
        assert result.rate == Decimal("0.86")

    @pytest.mark.parametrize(
        "category,rent",
        [("A/2", "500"), ("A/3", "612.45"), ("C/1", "1234.56"), ("D/1", "8000"), ("A/10", "0")],
    )
    def test_available_is_base_times_default_rate(self, engine, category, rent):
        result = _compute(engine, make_property("p1", category=category, rent=rent)).properties[0]
        multiplier = ValuationMultipliers().for_category(category)
        expected = (Decimal(rent) * Decimal("1.05") * multiplier * Decimal("0.86") / 100).quantize(
            Decimal("0.01"), rounding="ROUND_HALF_UP"
        )
        assert result.deduction == Decimal("0.00")
        assert result.tax_due == expected

    def test_municipality_match_is_case_insensitive(self, engine, roma_table):
        tables = {MunicipalityKey.of("rm", "ROMA"): roma_table}
        result = _compute(engine, make_property("p1", municipality=" roma "), tables=tables).properties[0]
        assert result.rate == Decimal("1.06")


class TestMultiplierFallback:
    def test_unknown_category_uses_default_fallback(self, engine):
        result = _compute(engine, make_property("p1", category="Z/9", rent="100")).properties[0]
        assert result.multiplier == 126
        assert result.tax_due == Decimal("113.78")

    def test_configurable_fallback(self):
        engine = ImuEngine(ValuationMultipliers(fallback=160))
        result = _compute(engine, make_property("p1", category="Z/9", rent="100")).properties[0]
        assert result.multiplier == 160
        assert result.tax_due == Decimal("144.48")


class TestAggregate:
    def test_total_is_sum_of_rounded_amounts(self, engine):
        assessment = _compute(
            engine,
            make_property("a", category="C/6", rent="100"),
            make_property("b", category="C/6", rent="100"),
        )
        # each 49.665 -> 49.67; unrounded sum would give 99.33
        assert assessment.total == Decimal("99.34")
        assert assessment.total == sum(r.tax_due for r in assessment.properties)

    def test_results_in_input_order(self, engine):
        ids = ["z", "a", "m"]
        assessment = _compute(engine, *(make_property(i) for i in ids))
        assert [r.id for r in assessment.properties] == ids

    def test_idempotent(self, engine, roma_table):
        props = [residence("casa"), appurtenance("box", "casa"), rented("r", ContractKind.FAMILY_USE)]
        tables = {MunicipalityKey.of("RM", "Roma"): roma_table}
        first = engine.compute(props, tables)
        second = engine.compute(props, tables)
        assert first == second


class TestValidation:
    def test_empty_batch(self, engine):
        with pytest.raises(ImuValidationError, match="No properties"):
            engine.compute([], {})

    def test_blank_municipality(self):
        with pytest.raises(ImuValidationError, match="municipality"):
            validate_batch([make_property("p1", municipality="  ")])

    def test_blank_category(self):
        with pytest.raises(ImuValidationError, match="category"):
            validate_batch([make_property("p1", category="")])

    def test_duplicate_ids(self):
        with pytest.raises(ImuValidationError, match="Duplicate"):
            validate_batch([make_property("p1"), make_property("p1")])

    def test_valid_batch_passes(self):
        validate_batch([
            make_property("p1"),
            make_property("p2", condition=PrimaryResidence()),
            make_property("p3", condition=Appurtenance(of="p2"), category="C/6"),
        ])
