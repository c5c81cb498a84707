"""Runs categorization, recurring matching and transfer detection on a new batch."""

import logging
from dataclasses import dataclass
from datetime import datetime

from txintel.config import PipelineConfig
from txintel.db.repository import Repository
from txintel.rules import CategorizationEngine
from txintel.services.categorize import categorize_new_transactions
from txintel.services.recurring import match_recurring_on_import
from txintel.services.transfers import detect_transfers_for_new_transactions

log = logging.getLogger("txintel.pipeline")


@dataclass
class PipelineResult:
    """Counts produced by one pipeline run."""

    categorized: int = 0
    recurring_matched: int = 0
    transfers_linked: int = 0


async def process_new_transactions(
    repo: Repository,
    user_id: str,
    transaction_ids: list[int],
    engine: CategorizationEngine | None = None,
    config: PipelineConfig | None = None,
    now: datetime | None = None,
) -> PipelineResult:
    """Categorize, match recurring rules, then link transfers for newly stored transactions.

    Transfer linking runs last so it overrides earlier categories. Callers
    must not run this concurrently for the same user. A PrefetchError from
    the categorization stage aborts the run.
    """
    result = PipelineResult()
    if not transaction_ids:
        return result
    config = config or PipelineConfig()

    account_ids = set(await repo.get_account_ids(user_id))
    transactions = [
        t for t in await repo.get_transactions_by_ids(transaction_ids)
        if t.account_id in account_ids
    ]
    if not transactions:
        log.warning(f"No transactions found for user {user_id} among {len(transaction_ids)} ids")
        return result
    ids = [t.id for t in transactions]

    result.categorized = await categorize_new_transactions(
        repo, user_id, transactions, engine=engine, config=config
    )
    result.recurring_matched = await match_recurring_on_import(repo, user_id, ids, now=now)
    result.transfers_linked = await detect_transfers_for_new_transactions(
        repo, user_id, ids, config=config
    )
    log.info(
        f"Pipeline for user {user_id}: {result.categorized} categorized, "
        f"{result.recurring_matched} recurring, {result.transfers_linked} transfers"
    )
    return result
