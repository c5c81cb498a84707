"""Recurring series matching and frequency inference."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from txintel.dates import add_months, clamp_day_to_month
from txintel.db.models import Frequency, RecurringRule, Transaction
from txintel.rules import merchant_text, normalize_merchant

AMOUNT_TOLERANCE_RATIO = Decimal("0.15")
AMOUNT_TOLERANCE_FLOOR = Decimal("5")

# Upper bound on the average gap (in days) for each frequency, checked in order.
FREQUENCY_GAP_LIMITS: tuple[tuple[int, Frequency], ...] = (
    (10, Frequency.WEEKLY),
    (18, Frequency.BIWEEKLY),
    (45, Frequency.MONTHLY),
    (100, Frequency.QUARTERLY),
    (400, Frequency.ANNUAL),
)


@dataclass
class RecurringPattern:
    """Cadence inferred from a merchant's transaction history."""

    frequency: Frequency
    expected_day: int
    avg_amount: Decimal


@dataclass
class RecurringCandidate:
    """A merchant whose history looks like a recurring series."""

    merchant_pattern: str
    merchant_name: str
    frequency: Frequency
    expected_day: int
    avg_amount: Decimal
    occurrence_count: int
    last_date: date


def amount_within_tolerance(amount: Decimal, expected: Decimal) -> bool:
    """Accept unless the difference exceeds both 15% of expected and $5."""
    diff = abs(abs(amount) - abs(expected))
    tolerance = abs(expected) * AMOUNT_TOLERANCE_RATIO
    return not (diff > tolerance and diff > AMOUNT_TOLERANCE_FLOOR)


def match_transaction_to_rule(
    txn: Transaction, rules: list[RecurringRule]
) -> RecurringRule | None:
    """Return the first rule the transaction belongs to.

    Rules are walked in the order given and the first eligible one wins,
    even if a later rule's expected amount is closer.
    """
    if txn.recurring_id is not None:
        return None
    merchant = normalize_merchant(merchant_text(txn))
    if not merchant:
        return None
    for rule in rules:
        pattern = normalize_merchant(rule.merchant_pattern)
        if not pattern:
            continue
        if pattern not in merchant and merchant not in pattern:
            continue
        if rule.expected_amount is not None and not amount_within_tolerance(
            txn.amount, rule.expected_amount
        ):
            continue
        return rule
    return None


def compute_next_expected(
    last_date: date, frequency: Frequency, expected_day: int | None = None
) -> date:
    """Project the next occurrence after last_date."""
    if frequency == Frequency.WEEKLY:
        return last_date + timedelta(days=7)
    if frequency == Frequency.BIWEEKLY:
        return last_date + timedelta(days=14)
    if frequency == Frequency.ANNUAL:
        return add_months(last_date, 12)
    months = 1 if frequency == Frequency.MONTHLY else 3
    result = add_months(last_date, months)
    if expected_day:
        result = result.replace(day=clamp_day_to_month(result.year, result.month, expected_day))
    return result


def classify_gap(avg_gap: float) -> Frequency | None:
    """Bucket an average gap in days into a frequency, or None if too sparse."""
    for limit, frequency in FREQUENCY_GAP_LIMITS:
        if avg_gap <= limit:
            return frequency
    return None


def detect_recurring_pattern(history: list[Transaction]) -> RecurringPattern | None:
    """Infer frequency, usual day of month and average amount from one merchant's history."""
    if len(history) < 2:
        return None
    ordered = sorted(history, key=lambda t: t.date)
    gaps = [(curr.date - prev.date).days for prev, curr in zip(ordered, ordered[1:])]
    frequency = classify_gap(sum(gaps) / len(gaps))
    if frequency is None:
        return None

    day_counts: dict[int, int] = {}
    for txn in ordered:
        day_counts[txn.date.day] = day_counts.get(txn.date.day, 0) + 1
    expected_day = ordered[0].date.day
    best = 0
    for day, count in day_counts.items():
        if count > best:
            best = count
            expected_day = day

    avg_amount = sum((abs(t.amount) for t in history), Decimal("0")) / len(history)
    return RecurringPattern(frequency=frequency, expected_day=expected_day, avg_amount=avg_amount)


def find_recurring_candidates(
    transactions: list[Transaction],
    existing_patterns: set[str] | None = None,
    min_occurrences: int = 2,
) -> list[RecurringCandidate]:
    """Group history by merchant and propose series not already covered by a rule."""
    existing = {p.lower() for p in existing_patterns or ()}
    groups: dict[str, list[Transaction]] = defaultdict(list)
    for txn in transactions:
        pattern = normalize_merchant(merchant_text(txn))
        if pattern and pattern not in existing:
            groups[pattern].append(txn)

    candidates = []
    for pattern, group in groups.items():
        if len(group) < max(2, min_occurrences):
            continue
        detected = detect_recurring_pattern(group)
        if detected is None:
            continue
        latest = max(group, key=lambda t: t.date)
        candidates.append(
            RecurringCandidate(
                merchant_pattern=pattern,
                merchant_name=(merchant_text(latest) or pattern).strip(),
                frequency=detected.frequency,
                expected_day=detected.expected_day,
                avg_amount=detected.avg_amount,
                occurrence_count=len(group),
                last_date=latest.date,
            )
        )
    candidates.sort(key=lambda c: (-c.occurrence_count, c.merchant_pattern))
    return candidates
