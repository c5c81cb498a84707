"""Store-backed transfer detection and linking."""

import logging
from datetime import date, timedelta

from txintel.config import PipelineConfig
from txintel.dates import add_months
from txintel.db.models import CategorizedBy
from txintel.db.repository import TRANSFER_CATEGORY_TYPE, Repository
from txintel.transfers import TransferPair, detect_transfer_pairs, pairs_touching

log = logging.getLogger("txintel.transfers")


def transfer_leg_fields(counterpart_account_id: int, transfer_category_id: int | None) -> dict:
    """Fields written on one leg of a detected transfer.

    With a transfer category available the leg is re-stamped as a transfer,
    overriding whatever categorization decided earlier.
    """
    fields = {"to_account_id": counterpart_account_id}
    if transfer_category_id is not None:
        fields.update(
            {
                "category_id": transfer_category_id,
                "type": TRANSFER_CATEGORY_TYPE,
                "categorized_by": CategorizedBy.TRANSFER,
                "category_confidence": None,
                "review_flagged": False,
                "review_flagged_reason": None,
            }
        )
    return fields


async def link_transfer_pairs(
    repo: Repository, pairs: list[TransferPair], transfer_category_id: int | None
) -> int:
    """Write both legs of each pair. A failed pair is logged and skipped."""
    linked = 0
    for pair in pairs:
        try:
            await repo.update_transactions(
                [
                    (
                        pair.outflow_id,
                        transfer_leg_fields(pair.inflow_account_id, transfer_category_id),
                    ),
                    (
                        pair.inflow_id,
                        transfer_leg_fields(pair.outflow_account_id, transfer_category_id),
                    ),
                ]
            )
        except Exception as e:
            log.error(f"Failed to link transfer {pair.outflow_id} -> {pair.inflow_id}: {e}")
            continue
        log.debug(
            f"Linked transfer of {pair.amount} from account {pair.outflow_account_id} "
            f"to account {pair.inflow_account_id} ({pair.outflow_id} -> {pair.inflow_id})"
        )
        linked += 1
    return linked


async def detect_and_link_transfers(
    repo: Repository,
    user_id: str,
    today: date | None = None,
    config: PipelineConfig | None = None,
) -> int:
    """Scan recent unlinked history across all of the user's accounts."""
    config = config or PipelineConfig()
    account_ids = await repo.get_account_ids(user_id)
    if len(account_ids) < 2:
        return 0
    start_date = add_months(today or date.today(), -config.transfer_lookback_months)
    transactions = await repo.get_unlinked_transactions(account_ids, start_date=start_date)
    if not transactions:
        return 0

    transfer_category_id = await repo.get_transfer_category_id()
    pairs = detect_transfer_pairs(transactions, config.transfer_window_days)
    linked = await link_transfer_pairs(repo, pairs, transfer_category_id)
    log.info(f"Linked {linked} transfer pairs for user {user_id}")
    return linked


async def detect_transfers_for_new_transactions(
    repo: Repository,
    user_id: str,
    new_transaction_ids: list[int],
    config: PipelineConfig | None = None,
) -> int:
    """Pair newly landed transactions against stored counterparts.

    The candidate pool spans every account the user owns, limited to the
    date window around the new transactions widened by the tolerance.
    Only pairs with at least one new leg are linked.
    """
    if not new_transaction_ids:
        return 0
    config = config or PipelineConfig()
    account_ids = await repo.get_account_ids(user_id)
    if len(account_ids) < 2:
        return 0
    owned = set(account_ids)
    new_transactions = [
        t for t in await repo.get_transactions_by_ids(new_transaction_ids)
        if t.account_id in owned
    ]
    if not new_transactions:
        return 0

    window = timedelta(days=config.transfer_window_days)
    dates = [t.date for t in new_transactions]
    candidates = await repo.get_unlinked_transactions(
        account_ids, start_date=min(dates) - window, end_date=max(dates) + window
    )
    if not candidates:
        return 0

    transfer_category_id = await repo.get_transfer_category_id()
    pairs = detect_transfer_pairs(candidates, config.transfer_window_days)
    relevant = pairs_touching(pairs, {t.id for t in new_transactions})
    linked = await link_transfer_pairs(repo, relevant, transfer_category_id)
    log.info(f"Linked {linked} transfer pairs from {len(new_transactions)} new transactions")
    return linked
