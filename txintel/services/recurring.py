"""Store-backed recurring matching and pattern confirmation."""

import logging
from datetime import date, datetime
from decimal import Decimal

from txintel.dates import add_months
from txintel.db.models import RecurringRule, RecurringSource
from txintel.db.repository import Repository
from txintel.recurring import (
    RecurringCandidate,
    compute_next_expected,
    find_recurring_candidates,
    match_transaction_to_rule,
)

log = logging.getLogger("txintel.recurring")

CANDIDATE_LOOKBACK_MONTHS = 12
CENTS = Decimal("0.01")


async def match_recurring_on_import(
    repo: Repository,
    user_id: str,
    transaction_ids: list[int],
    now: datetime | None = None,
) -> int:
    """Link newly imported transactions to the user's active recurring rules.

    Each match stamps the rule's category and its type on the transaction and
    advances the rule's next expected date. Transactions are walked in date
    order so the schedule follows the latest match. A failed write skips
    that transaction only.
    """
    if not transaction_ids:
        return 0
    rules = await repo.get_active_recurring_rules(user_id)
    if not rules:
        return 0
    account_ids = set(await repo.get_account_ids(user_id))
    transactions = [
        t for t in await repo.get_transactions_by_ids(transaction_ids)
        if t.account_id in account_ids
    ]
    # Oldest first so a rule ends up scheduled from its latest match.
    transactions.sort(key=lambda t: (t.date, t.id))
    category_types = await repo.get_category_types(user_id)

    matched = 0
    for txn in transactions:
        rule = match_transaction_to_rule(txn, rules)
        if rule is None:
            continue
        next_expected = compute_next_expected(txn.date, rule.frequency, rule.expected_day)
        fields = {"recurring_id": rule.id, "is_recurring": True}
        if rule.category_id is not None:
            fields["category_id"] = rule.category_id
            fields["type"] = category_types.get(rule.category_id)
        try:
            await repo.update_transaction_fields(txn.id, fields)
            await repo.update_recurring_schedule(rule.id, next_expected, now or datetime.now())
        except Exception as e:
            log.error(f"Failed to link txn {txn.id} to recurring rule {rule.id}: {e}")
            continue
        log.debug(f"Txn {txn.id} matched recurring rule {rule.id}, next expected {next_expected}")
        matched += 1

    log.info(f"Matched {matched} of {len(transactions)} transactions to recurring rules")
    return matched


async def suggest_recurring_candidates(
    repo: Repository,
    user_id: str,
    today: date | None = None,
    lookback_months: int = CANDIDATE_LOOKBACK_MONTHS,
) -> list[RecurringCandidate]:
    """Propose recurring series from recent history, skipping known or dismissed merchants."""
    today = today or date.today()
    account_ids = await repo.get_account_ids(user_id)
    if not account_ids:
        return []
    history = await repo.get_transactions_since(account_ids, add_months(today, -lookback_months))
    history = [t for t in history if t.to_account_id is None]
    known = await repo.get_recurring_patterns(user_id)
    return find_recurring_candidates(history, known)


async def confirm_recurring_pattern(
    repo: Repository,
    user_id: str,
    candidate: RecurringCandidate,
    category_id: int | None = None,
    today: date | None = None,
) -> RecurringRule:
    """Store a detected candidate as a confirmed, active rule."""
    today = today or date.today()
    rule = RecurringRule(
        id=None,
        user_id=user_id,
        merchant_pattern=candidate.merchant_pattern,
        merchant_name=candidate.merchant_name,
        category_id=category_id,
        expected_amount=candidate.avg_amount.quantize(CENTS),
        frequency=candidate.frequency,
        expected_day=candidate.expected_day,
        confirmed=True,
        source=RecurringSource.DETECTED,
        is_active=True,
        next_expected=compute_next_expected(today, candidate.frequency, candidate.expected_day),
        occurrence_count=candidate.occurrence_count,
    )
    saved = await repo.save_recurring_rule(rule)
    log.info(f"Confirmed recurring '{candidate.merchant_pattern}' as rule {saved.id}")
    return saved


async def dismiss_recurring_pattern(
    repo: Repository,
    user_id: str,
    candidate: RecurringCandidate,
    now: datetime | None = None,
) -> RecurringRule:
    """Remember a rejected candidate so it is not suggested again."""
    rule = RecurringRule(
        id=None,
        user_id=user_id,
        merchant_pattern=candidate.merchant_pattern,
        merchant_name=candidate.merchant_name,
        expected_amount=candidate.avg_amount.quantize(CENTS),
        frequency=candidate.frequency,
        confirmed=False,
        source=RecurringSource.DETECTED,
        is_active=False,
        dismissed_at=now or datetime.now(),
    )
    saved = await repo.save_recurring_rule(rule)
    log.info(f"Dismissed recurring '{candidate.merchant_pattern}'")
    return saved
