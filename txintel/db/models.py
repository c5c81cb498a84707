"""Database models and schema definitions."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class CategorizedBy(Enum):
    """How a transaction's category was decided."""

    RULE = "rule"
    LEARNED = "learned"
    DEFAULT = "default"
    MANUAL = "manual"
    TRANSFER = "transfer"


class ConditionField(Enum):
    """Transaction fields a rule condition can test."""

    MERCHANT_NAME = "merchant_name"
    DESCRIPTION = "description"
    AMOUNT = "amount"
    ACCOUNT_ID = "account_id"


class TextOperator(Enum):
    """Case-insensitive text comparisons."""

    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"


class NumericOperator(Enum):
    """Numeric comparisons."""

    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"


class Frequency(Enum):
    """Cadence of a recurring series."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class RecurringSource(Enum):
    """Where a recurring rule came from."""

    MANUAL = "manual"
    DETECTED = "detected"


@dataclass(frozen=True)
class TextCondition:
    """Rule condition comparing a resolved text field."""

    field: str
    operator: TextOperator
    value: str


@dataclass(frozen=True)
class NumericCondition:
    """Rule condition comparing a resolved numeric field.

    ``value_end`` is only meaningful for ``BETWEEN`` and defaults to ``value``.
    """

    field: str
    operator: NumericOperator
    value: Decimal
    value_end: Decimal | None = None


RuleCondition = TextCondition | NumericCondition


@dataclass
class Account:
    """A user's bank or card account."""

    id: int | None
    user_id: str
    name: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Category:
    """Spending category. ``user_id`` is None for system defaults."""

    id: int | None
    user_id: str | None
    name: str
    type: str | None = None


@dataclass
class CategoryRule:
    """User-owned categorization rule with AND-combined conditions."""

    id: int | None
    user_id: str
    category_id: int
    conditions: list[RuleCondition]
    priority: int = 0
    is_active: bool = True
    set_ignored: bool | None = None
    set_merchant_name: str | None = None
    set_tags: list[str] | None = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class MerchantMapping:
    """Learned merchant pattern to category association."""

    id: int | None
    user_id: str
    merchant_pattern: str
    category_id: int
    confidence: float
    times_confirmed: int = 1
    last_updated: datetime = field(default_factory=datetime.now)


@dataclass
class Transaction:
    """Bank transaction with classification and linkage fields."""

    id: int | None
    account_id: int
    date: date
    amount: Decimal
    description: str
    merchant_name: str | None = None
    category_id: int | None = None
    categorized_by: CategorizedBy | None = None
    type: str | None = None
    category_confidence: float | None = None
    category_confirmed: bool = False
    review_flagged: bool = False
    review_flagged_reason: str | None = None
    ignored: bool = False
    tags: list[str] = field(default_factory=list)
    recurring_id: int | None = None
    is_recurring: bool = False
    to_account_id: int | None = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class RecurringRule:
    """Stored expectation of a repeating bill or deposit."""

    id: int | None
    user_id: str
    merchant_pattern: str
    frequency: Frequency = Frequency.MONTHLY
    merchant_name: str | None = None
    category_id: int | None = None
    expected_amount: Decimal | None = None
    expected_day: int | None = None
    confirmed: bool | None = None
    source: RecurringSource = RecurringSource.MANUAL
    is_active: bool = True
    next_expected: date | None = None
    last_matched_at: datetime | None = None
    occurrence_count: int = 0
    dismissed_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)
