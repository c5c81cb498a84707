"""Detection of internal transfers between a user's own accounts."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from txintel.dates import days_between
from txintel.db.models import Transaction

DATE_TOLERANCE_DAYS = 3
AMOUNT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class TransferPair:
    """Outbound and inbound legs of one internal money movement."""

    outflow_id: int
    inflow_id: int
    outflow_account_id: int
    inflow_account_id: int
    amount: Decimal
    date: date


def is_transfer_candidate(
    outflow: Transaction,
    inflow: Transaction,
    date_tolerance_days: int = DATE_TOLERANCE_DAYS,
) -> bool:
    """Check whether an inflow could be the other leg of an outflow."""
    if inflow.account_id == outflow.account_id:
        return False
    if abs(inflow.amount - abs(outflow.amount)) > AMOUNT_TOLERANCE:
        return False
    return days_between(outflow.date, inflow.date) <= date_tolerance_days


def detect_transfer_pairs(
    transactions: list[Transaction],
    date_tolerance_days: int = DATE_TOLERANCE_DAYS,
) -> list[TransferPair]:
    """Pair outflows with inflows on other accounts.

    Greedy single pass: each outflow, in list order, takes the still-unmatched
    eligible inflow with the smallest date gap, the first one encountered on
    ties. A transaction is used in at most one pair. This is not a globally
    optimal matching and is not meant to be.
    """
    pairs: list[TransferPair] = []
    matched: set[int] = set()
    outflows = [t for t in transactions if t.amount < 0]
    inflows = [t for t in transactions if t.amount > 0]

    for outflow in outflows:
        if outflow.id in matched:
            continue
        best: Transaction | None = None
        best_gap: int | None = None
        for inflow in inflows:
            if inflow.id in matched:
                continue
            if not is_transfer_candidate(outflow, inflow, date_tolerance_days):
                continue
            gap = days_between(outflow.date, inflow.date)
            if best_gap is None or gap < best_gap:
                best = inflow
                best_gap = gap
        if best is None:
            continue
        matched.add(outflow.id)
        matched.add(best.id)
        pairs.append(
            TransferPair(
                outflow_id=outflow.id,
                inflow_id=best.id,
                outflow_account_id=outflow.account_id,
                inflow_account_id=best.account_id,
                amount=abs(outflow.amount),
                date=outflow.date,
            )
        )
    return pairs


def pairs_touching(pairs: list[TransferPair], txn_ids: set[int]) -> list[TransferPair]:
    """Keep only pairs with at least one leg among the given IDs."""
    return [p for p in pairs if p.outflow_id in txn_ids or p.inflow_id in txn_ids]
