"""Tests for the categorization engine."""

from decimal import Decimal

import pytest
from conftest import make_txn

from txintel.db.models import (
    CategorizedBy,
    Category,
    CategoryRule,
    MerchantMapping,
    NumericCondition,
    NumericOperator,
    TextCondition,
    TextOperator,
)
from txintel.rules import (
    CategorizationCache,
    CategorizationEngine,
    condition_matches,
    next_confidence,
    normalize_merchant,
    resolve_field,
    rule_matches,
)
from txintel.rules.defaults import DEFAULT_PATTERNS, AmountHint, DefaultPattern


def text_rule(id: int, value: str, category_id: int = 1, priority: int = 0, **kwargs):
    """Helper to create a single-condition merchant rule."""
    return CategoryRule(
        id=id,
        user_id="u",
        category_id=category_id,
        conditions=[TextCondition("merchant_name", TextOperator.CONTAINS, value)],
        priority=priority,
        **kwargs,
    )


def between(low: str, high: str) -> NumericCondition:
    return NumericCondition("amount", NumericOperator.BETWEEN, Decimal(low), Decimal(high))


def mapping(pattern: str, category_id: int, confidence: float = 0.9) -> MerchantMapping:
    return MerchantMapping(
        id=None,
        user_id="u",
        merchant_pattern=pattern,
        category_id=category_id,
        confidence=confidence,
    )


class TestHelpers:
    """Tests for module-level helpers."""

    def test_normalize_merchant(self):
        """Test lowercasing and trimming."""
        assert normalize_merchant("  Blue Bottle ") == "blue bottle"
        assert normalize_merchant(None) == ""

    def test_next_confidence_sequence(self):
        """Test the learning curve from the initial confidence."""
        first = next_confidence(0.6)
        second = next_confidence(first)
        assert first == pytest.approx(0.64)
        assert second == pytest.approx(0.676)

    def test_next_confidence_never_exceeds_one(self):
        """Test confidence approaches but stays at or below 1."""
        value = 0.6
        for _ in range(200):
            new_value = next_confidence(value)
            assert new_value >= value
            assert new_value <= 1.0
            value = new_value
        assert next_confidence(1.0) == 1.0


class TestResolveField:
    """Tests for condition field resolution."""

    def test_merchant_falls_back_to_description(self):
        """Test merchant_name resolves to description when missing."""
        txn = make_txn(description="POS 1234 SHELL", merchant_name=None)
        assert resolve_field(txn, "merchant_name") == "POS 1234 SHELL"

    def test_description_falls_back_to_merchant(self):
        """Test description resolves to merchant_name when missing."""
        txn = make_txn(description=None, merchant_name="Shell")
        assert resolve_field(txn, "description") == "Shell"

    def test_amount_is_absolute(self):
        """Test amount resolves to its absolute value."""
        txn = make_txn(amount="-42.50")
        assert resolve_field(txn, "amount") == Decimal("42.50")

    def test_account_id(self):
        """Test account_id resolves to the raw account."""
        txn = make_txn(account_id=7)
        assert resolve_field(txn, "account_id") == 7

    def test_unknown_field(self):
        """Test unknown fields resolve to None."""
        assert resolve_field(make_txn(), "memo") is None


class TestConditionMatches:
    """Tests for single condition evaluation."""

    def test_contains_case_insensitive(self):
        """Test contains ignores case on both sides."""
        cond = TextCondition("merchant_name", TextOperator.CONTAINS, "starbucks")
        assert condition_matches(cond, make_txn(merchant_name="STARBUCKS #4521"))

    def test_equals(self):
        """Test equals requires the whole value."""
        cond = TextCondition("merchant_name", TextOperator.EQUALS, "Shell")
        assert condition_matches(cond, make_txn(merchant_name="SHELL"))
        assert not condition_matches(cond, make_txn(merchant_name="SHELL OIL"))

    def test_starts_with(self):
        """Test starts_with anchors at the beginning."""
        cond = TextCondition("description", TextOperator.STARTS_WITH, "pos")
        assert condition_matches(cond, make_txn(description="POS PURCHASE"))
        assert not condition_matches(cond, make_txn(description="ACH POS"))

    def test_between_is_inclusive(self):
        """Test between accepts both bounds and rejects just outside."""
        cond = between("10", "50")
        assert condition_matches(cond, make_txn(amount="-10.00"))
        assert condition_matches(cond, make_txn(amount="-50.00"))
        assert not condition_matches(cond, make_txn(amount="-9.99"))
        assert not condition_matches(cond, make_txn(amount="-50.01"))

    def test_between_without_end_uses_value(self):
        """Test a missing upper bound collapses the range to the value."""
        cond = NumericCondition("amount", NumericOperator.BETWEEN, Decimal("20"))
        assert condition_matches(cond, make_txn(amount="20"))
        assert not condition_matches(cond, make_txn(amount="20.01"))

    def test_greater_and_less_than_are_strict(self):
        """Test greater_than and less_than exclude the boundary."""
        gt = NumericCondition("amount", NumericOperator.GREATER_THAN, Decimal("100"))
        lt = NumericCondition("amount", NumericOperator.LESS_THAN, Decimal("100"))
        assert condition_matches(gt, make_txn(amount="-100.01"))
        assert not condition_matches(gt, make_txn(amount="-100"))
        assert condition_matches(lt, make_txn(amount="99.99"))
        assert not condition_matches(lt, make_txn(amount="100"))

    def test_numeric_on_non_numeric_text(self):
        """Test a numeric comparison against text never matches."""
        cond = NumericCondition("merchant_name", NumericOperator.GREATER_THAN, Decimal("1"))
        assert not condition_matches(cond, make_txn(merchant_name="Shell"))

    def test_numeric_on_account_id(self):
        """Test numeric comparison against account_id."""
        cond = NumericCondition("account_id", NumericOperator.BETWEEN, Decimal("3"), Decimal("5"))
        assert condition_matches(cond, make_txn(account_id=4))
        assert not condition_matches(cond, make_txn(account_id=6))

    def test_missing_field_never_matches(self):
        """Test a field that resolves to nothing fails the condition."""
        cond = TextCondition("memo", TextOperator.CONTAINS, "")
        assert not condition_matches(cond, make_txn())


class TestRuleMatches:
    """Tests for AND-combined rule evaluation."""

    def test_all_conditions_required(self):
        """Test every condition must hold."""
        rule = CategoryRule(
            id=1,
            user_id="u",
            category_id=1,
            conditions=[
                TextCondition("merchant_name", TextOperator.CONTAINS, "shell"),
                between("20", "80"),
            ],
        )
        assert rule_matches(rule, make_txn(merchant_name="Shell", amount="-45"))
        assert not rule_matches(rule, make_txn(merchant_name="Shell", amount="-95"))

    def test_empty_rule_never_matches(self):
        """Test a rule with no conditions matches nothing."""
        rule = CategoryRule(id=1, user_id="u", category_id=1, conditions=[])
        assert not rule_matches(rule, make_txn(merchant_name="anything"))


class TestCategorizationEngine:
    """Tests for the categorization cascade."""

    def setup_method(self):
        self.defaults = [
            Category(id=11, user_id=None, name="Subscriptions"),
            Category(id=12, user_id=None, name="Income"),
            Category(id=13, user_id=None, name="Entertainment & Going Out"),
        ]

    def test_first_rule_in_priority_order_wins(self):
        """Test rules are walked in the given order."""
        engine = CategorizationEngine()
        cache = CategorizationCache(
            rules=[text_rule(1, "coffee", category_id=5), text_rule(2, "blue", category_id=6)],
        )
        result = engine.categorize(make_txn(merchant_name="Blue Bottle Coffee"), cache)
        assert result.category_id == 5
        assert result.method == CategorizedBy.RULE
        assert result.confidence is None

    def test_rule_side_effects_carried(self):
        """Test set_* fields of the rule are returned with the result."""
        engine = CategorizationEngine()
        rule = text_rule(
            1, "venmo", set_ignored=True, set_merchant_name="Venmo", set_tags=["p2p"]
        )
        result = engine.categorize(
            make_txn(merchant_name="VENMO *JANE"), CategorizationCache(rules=[rule])
        )
        assert result.set_ignored is True
        assert result.set_merchant_name == "Venmo"
        assert result.set_tags == ["p2p"]

    def test_rule_beats_default(self):
        """Test a user rule wins over a matching default pattern."""
        engine = CategorizationEngine()
        cache = CategorizationCache(
            rules=[text_rule(1, "starbucks", category_id=99)],
            default_categories=self.defaults,
        )
        result = engine.categorize(make_txn(merchant_name="STARBUCKS #4521"), cache)
        assert result.category_id == 99
        assert result.method == CategorizedBy.RULE

    def test_learned_mapping_contained_in_merchant(self):
        """Test a learned pattern found inside the merchant text matches."""
        engine = CategorizationEngine()
        cache = CategorizationCache(mappings=[mapping("blue bottle", 7, 0.85)])
        result = engine.categorize(make_txn(merchant_name="BLUE BOTTLE COFFEE 22"), cache)
        assert result.category_id == 7
        assert result.method == CategorizedBy.LEARNED
        assert result.confidence == 0.85

    def test_learned_mapping_containing_merchant(self):
        """Test a merchant found inside the learned pattern matches."""
        engine = CategorizationEngine()
        cache = CategorizationCache(mappings=[mapping("blue bottle coffee", 7)])
        result = engine.categorize(make_txn(merchant_name="Blue Bottle"), cache)
        assert result.category_id == 7

    def test_learned_uses_first_mapping(self):
        """Test the first mapping in confidence order wins."""
        engine = CategorizationEngine()
        cache = CategorizationCache(
            mappings=[mapping("bottle", 1, 0.95), mapping("blue bottle", 2, 0.9)]
        )
        result = engine.categorize(make_txn(merchant_name="Blue Bottle"), cache)
        assert result.category_id == 1

    def test_learned_requires_merchant_name(self):
        """Test a transaction without a merchant name skips learned mappings."""
        engine = CategorizationEngine(
            (DefaultPattern("Subscriptions", ("netflix",), AmountHint.NEGATIVE),)
        )
        cache = CategorizationCache(
            mappings=[mapping("netflix", 99)], default_categories=self.defaults
        )
        txn = make_txn(merchant_name=None, description="NETFLIX.COM", amount="-15.49")
        result = engine.categorize(txn, cache)
        assert result.category_id == 11
        assert result.method == CategorizedBy.DEFAULT

    def test_default_pattern_end_to_end(self):
        """Test a default keyword assigns the system category."""
        engine = CategorizationEngine()
        cache = CategorizationCache(default_categories=self.defaults)
        txn = make_txn(merchant_name="Netflix", description="NETFLIX.COM", amount="-15.49")
        result = engine.categorize(txn, cache)
        assert result.category_id == 11
        assert result.method == CategorizedBy.DEFAULT

    def test_default_pattern_respects_amount_hint(self):
        """Test a negative-only pattern skips positive amounts."""
        engine = CategorizationEngine(
            (DefaultPattern("Subscriptions", ("netflix",), AmountHint.NEGATIVE),)
        )
        cache = CategorizationCache(default_categories=self.defaults)
        result = engine.categorize(make_txn(merchant_name="Netflix refund", amount="15.49"), cache)
        assert result.category_id == 12
        assert result.confidence == 0.5

    def test_positive_fallback_to_income(self):
        """Test unmatched positive amounts fall back to Income at 0.5."""
        engine = CategorizationEngine(())
        cache = CategorizationCache(default_categories=self.defaults)
        result = engine.categorize(make_txn(merchant_name="Mystery Deposit", amount="250"), cache)
        assert result.category_id == 12
        assert result.method == CategorizedBy.DEFAULT
        assert result.confidence == 0.5

    def test_negative_unmatched_is_none(self):
        """Test unmatched negative amounts stay uncategorized."""
        engine = CategorizationEngine(())
        cache = CategorizationCache(default_categories=self.defaults)
        assert engine.categorize(make_txn(merchant_name="Mystery", amount="-5"), cache) is None

    def test_missing_default_category_falls_to_fallback(self):
        """Test a pattern whose category is absent does not keep scanning."""
        engine = CategorizationEngine(
            (
                DefaultPattern("Paycheck", ("payroll",), AmountHint.POSITIVE),
                DefaultPattern("Subscriptions", ("payroll",), AmountHint.ANY),
            )
        )
        cache = CategorizationCache(default_categories=self.defaults)
        result = engine.categorize(make_txn(merchant_name="ACME PAYROLL", amount="1000"), cache)
        assert result.category_id == 12
        assert result.confidence == 0.5

    def test_no_default_categories_skips_defaults(self):
        """Test the default stage is skipped without system categories."""
        engine = CategorizationEngine()
        cache = CategorizationCache()
        assert engine.categorize(make_txn(merchant_name="Netflix", amount="50"), cache) is None

    def test_default_category_lookup_case_insensitive(self):
        """Test system category names compare without case."""
        cache = CategorizationCache(
            default_categories=[Category(id=3, user_id=None, name="INCOME")]
        )
        assert cache.default_category("income").id == 3
        assert cache.default_category("Rent") is None

    def test_engine_exposes_injected_table(self):
        """Test the keyword table is swappable per engine."""
        custom = (DefaultPattern("Subscriptions", ("acme",)),)
        assert CategorizationEngine(custom).default_patterns == custom
        assert CategorizationEngine().default_patterns == DEFAULT_PATTERNS


class TestAmountHint:
    """Tests for default pattern amount hints."""

    def test_allows(self):
        """Test sign checks for each hint."""
        assert AmountHint.NEGATIVE.allows(Decimal("-1"))
        assert not AmountHint.NEGATIVE.allows(Decimal("0"))
        assert AmountHint.POSITIVE.allows(Decimal("0"))
        assert not AmountHint.POSITIVE.allows(Decimal("-0.01"))
        assert AmountHint.ANY.allows(Decimal("-3"))
