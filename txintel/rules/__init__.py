"""Cascading categorization engine: rule, learned mapping, default pattern, fallback."""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from txintel.db.models import (
    CategorizedBy,
    Category,
    CategoryRule,
    ConditionField,
    MerchantMapping,
    NumericCondition,
    NumericOperator,
    RuleCondition,
    TextOperator,
    Transaction,
)
from txintel.rules.defaults import (
    DEFAULT_PATTERNS,
    POSITIVE_AMOUNT_FALLBACK,
    POSITIVE_AMOUNT_FALLBACK_CONFIDENCE,
    DefaultPattern,
)

LEARNED_MIN_CONFIDENCE = 0.8
INITIAL_LEARNED_CONFIDENCE = 0.6
LEARNING_RATE = 0.1


@dataclass
class CategorizeResult:
    """Category decision plus any side effects carried by a matching rule."""

    category_id: int
    method: CategorizedBy
    confidence: float | None = None
    set_ignored: bool | None = None
    set_merchant_name: str | None = None
    set_tags: list[str] | None = None


@dataclass(frozen=True)
class CategorizationCache:
    """Read-only snapshot of everything categorization needs for one batch.

    ``rules`` must already be in priority order and ``mappings`` filtered to
    confident entries sorted by descending confidence.
    """

    rules: list[CategoryRule] = field(default_factory=list)
    mappings: list[MerchantMapping] = field(default_factory=list)
    default_categories: list[Category] = field(default_factory=list)
    category_types: dict[int, str] = field(default_factory=dict)

    def default_category(self, name: str) -> Category | None:
        """Find a system category by case-insensitive name."""
        wanted = name.lower()
        for category in self.default_categories:
            if category.name.lower() == wanted:
                return category
        return None


def normalize_merchant(text: str | None) -> str:
    """Lowercase and trim merchant text for pattern comparison."""
    return (text or "").lower().strip()


def next_confidence(confidence: float) -> float:
    """Move a learned confidence a tenth of the remaining way toward 1."""
    return min(1.0, confidence + LEARNING_RATE * (1 - confidence))


def merchant_text(txn: Transaction) -> str | None:
    """Merchant name, falling back to the description."""
    return txn.merchant_name if txn.merchant_name is not None else txn.description


def resolve_field(txn: Transaction, field_name: str) -> str | Decimal | int | None:
    """Resolve a condition field against a transaction.

    Amounts resolve to their absolute value. Unknown fields resolve to None.
    """
    if field_name == ConditionField.MERCHANT_NAME.value:
        return merchant_text(txn)
    if field_name == ConditionField.DESCRIPTION.value:
        return txn.description if txn.description is not None else txn.merchant_name
    if field_name == ConditionField.AMOUNT.value:
        return abs(txn.amount)
    if field_name == ConditionField.ACCOUNT_ID.value:
        return txn.account_id
    return None


def condition_matches(condition: RuleCondition, txn: Transaction) -> bool:
    """Evaluate one condition against a transaction."""
    value = resolve_field(txn, condition.field)
    if value is None:
        return False
    if isinstance(condition, NumericCondition):
        return _numeric_matches(condition, value)
    text = str(value).lower()
    target = condition.value.lower()
    if condition.operator == TextOperator.CONTAINS:
        return target in text
    if condition.operator == TextOperator.EQUALS:
        return text == target
    return text.startswith(target)


def _numeric_matches(condition: NumericCondition, value) -> bool:
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        return False
    if not number.is_finite():
        return False
    if condition.operator == NumericOperator.GREATER_THAN:
        return number > condition.value
    if condition.operator == NumericOperator.LESS_THAN:
        return number < condition.value
    upper = condition.value_end if condition.value_end is not None else condition.value
    return condition.value <= number <= upper


def rule_matches(rule: CategoryRule, txn: Transaction) -> bool:
    """Check that every condition of a rule holds. Empty rules never match."""
    if not rule.conditions:
        return False
    return all(condition_matches(c, txn) for c in rule.conditions)


class CategorizationEngine:
    """Categorizes transactions against a prefetched cache.

    The cascade is evaluated in strict order and the first stage that
    produces a category wins:

    1. User rules, in priority order.
    2. Learned merchant mappings, highest confidence first.
    3. The default keyword table, in declared order.
    4. Positive amounts fall back to the "Income" system category.
    """

    def __init__(self, default_patterns: tuple[DefaultPattern, ...] = DEFAULT_PATTERNS):
        self._default_patterns = tuple(default_patterns)

    @property
    def default_patterns(self) -> tuple[DefaultPattern, ...]:
        """Get the keyword table this engine was built with."""
        return self._default_patterns

    def categorize(
        self, txn: Transaction, cache: CategorizationCache
    ) -> CategorizeResult | None:
        """Decide a category for a transaction, or None when nothing applies."""
        rule = self.match_rule(txn, cache.rules)
        if rule is not None:
            return CategorizeResult(
                category_id=rule.category_id,
                method=CategorizedBy.RULE,
                set_ignored=rule.set_ignored,
                set_merchant_name=rule.set_merchant_name,
                set_tags=list(rule.set_tags) if rule.set_tags is not None else None,
            )
        learned = self.match_learned(txn, cache.mappings)
        if learned is not None:
            return learned
        return self.match_default(txn, cache)

    def match_rule(self, txn: Transaction, rules: list[CategoryRule]) -> CategoryRule | None:
        """Find the first rule whose conditions all hold."""
        for rule in rules:
            if rule_matches(rule, txn):
                return rule
        return None

    def match_learned(
        self, txn: Transaction, mappings: list[MerchantMapping]
    ) -> CategorizeResult | None:
        """Find the first learned mapping contained in, or containing, the merchant name.

        Transactions without a merchant name are left to the default table.
        """
        normalized = normalize_merchant(txn.merchant_name)
        if not normalized:
            return None
        for mapping in mappings:
            pattern = mapping.merchant_pattern.lower()
            if not pattern:
                continue
            if pattern in normalized or normalized in pattern:
                return CategorizeResult(
                    category_id=mapping.category_id,
                    method=CategorizedBy.LEARNED,
                    confidence=mapping.confidence,
                )
        return None

    def match_default(
        self, txn: Transaction, cache: CategorizationCache
    ) -> CategorizeResult | None:
        """Apply the keyword table, then the positive-amount fallback."""
        if not cache.default_categories:
            return None
        text = (merchant_text(txn) or "").lower()
        pattern = self._find_default_pattern(text, txn.amount)
        if pattern is not None:
            category = cache.default_category(pattern.category)
            if category is not None:
                return CategorizeResult(category_id=category.id, method=CategorizedBy.DEFAULT)
        if txn.amount > 0:
            fallback = cache.default_category(POSITIVE_AMOUNT_FALLBACK)
            if fallback is not None:
                return CategorizeResult(
                    category_id=fallback.id,
                    method=CategorizedBy.DEFAULT,
                    confidence=POSITIVE_AMOUNT_FALLBACK_CONFIDENCE,
                )
        return None

    def _find_default_pattern(self, text: str, amount: Decimal) -> DefaultPattern | None:
        for pattern in self._default_patterns:
            if not pattern.amount_hint.allows(amount):
                continue
            if any(keyword in text for keyword in pattern.keywords):
                return pattern
        return None
