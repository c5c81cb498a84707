"""Tests for stored rule condition normalization."""

import json
from decimal import Decimal

import pytest

from txintel.db.conditions import build_condition, conditions_to_json, normalize_conditions
from txintel.db.models import NumericCondition, NumericOperator, TextCondition, TextOperator


class TestBuildCondition:
    """Tests for build_condition."""

    def test_text_operator(self):
        """Test text operators produce a text condition."""
        cond = build_condition("merchant_name", "contains", "shell")
        assert cond == TextCondition("merchant_name", TextOperator.CONTAINS, "shell")

    def test_numeric_operator_coerces_once(self):
        """Test numeric values are parsed into Decimals."""
        cond = build_condition("amount", "between", " 10 ", "50.5")
        assert isinstance(cond, NumericCondition)
        assert cond.operator == NumericOperator.BETWEEN
        assert cond.value == Decimal("10")
        assert cond.value_end == Decimal("50.5")

    def test_numeric_empty_end_is_none(self):
        """Test a blank upper bound is treated as missing."""
        cond = build_condition("amount", "between", "10", "")
        assert cond.value_end is None

    def test_non_numeric_value_rejected(self):
        """Test numeric operators reject text values."""
        with pytest.raises(ValueError):
            build_condition("amount", "greater_than", "lots")

    def test_non_finite_value_rejected(self):
        """Test NaN and infinity are not usable thresholds."""
        with pytest.raises(ValueError):
            build_condition("amount", "less_than", "NaN")
        with pytest.raises(ValueError):
            build_condition("amount", "less_than", "Infinity")

    def test_unknown_operator_rejected(self):
        """Test an unknown operator raises."""
        with pytest.raises(ValueError):
            build_condition("amount", "regex", ".*")


class TestNormalizeConditions:
    """Tests for normalize_conditions."""

    def test_json_string(self):
        """Test a stored JSON list is decoded."""
        raw = json.dumps(
            [
                {"field": "merchant_name", "operator": "contains", "value": "uber"},
                {"field": "amount", "operator": "less_than", "value": "30"},
            ]
        )
        conditions = normalize_conditions(raw)
        assert len(conditions) == 2
        assert conditions[1].value == Decimal("30")

    def test_decoded_list(self):
        """Test an already-decoded list is accepted."""
        conditions = normalize_conditions(
            [{"field": "description", "operator": "starts_with", "value": "ACH"}]
        )
        assert conditions[0].operator == TextOperator.STARTS_WITH

    def test_legacy_single_condition(self):
        """Test legacy columns are used when the list is empty."""
        conditions = normalize_conditions("[]", "amount", "between", "10", "20")
        assert conditions == [
            NumericCondition("amount", NumericOperator.BETWEEN, Decimal("10"), Decimal("20"))
        ]

    def test_legacy_when_conditions_missing(self):
        """Test legacy columns are used when conditions are NULL."""
        conditions = normalize_conditions(None, "merchant_name", "equals", "Shell")
        assert conditions == [TextCondition("merchant_name", TextOperator.EQUALS, "Shell")]

    def test_nothing_stored(self):
        """Test a rule with neither shape has no conditions."""
        assert normalize_conditions(None) == []

    @pytest.mark.parametrize(
        "conditions",
        [["bad"], [{"field": "amount", "operator": None, "value": "1"}], [{"field": 1}]],
    )
    def test_malformed_item_rejected(self, conditions):
        """Test list items that are not field/operator objects raise ValueError."""
        with pytest.raises(ValueError):
            normalize_conditions(json.dumps(conditions))


class TestConditionsToJson:
    """Tests for conditions_to_json."""

    def test_serializes_value_end_only_when_present(self):
        """Test value_end is written only for bounded ranges."""
        payload = json.loads(
            conditions_to_json(
                [
                    TextCondition("merchant_name", TextOperator.CONTAINS, "uber"),
                    NumericCondition(
                        "amount", NumericOperator.BETWEEN, Decimal("1"), Decimal("2")
                    ),
                ]
            )
        )
        assert payload[0] == {"field": "merchant_name", "operator": "contains", "value": "uber"}
        assert payload[1]["value_end"] == "2"
