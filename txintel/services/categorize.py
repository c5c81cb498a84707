"""Store-backed categorization: prefetch, batch write-back and learning."""

import logging
from dataclasses import dataclass

from txintel.config import PipelineConfig
from txintel.db.models import CategorizedBy, MerchantMapping, Transaction
from txintel.db.repository import Repository
from txintel.rules import (
    INITIAL_LEARNED_CONFIDENCE,
    LEARNED_MIN_CONFIDENCE,
    CategorizationCache,
    CategorizationEngine,
    CategorizeResult,
    next_confidence,
    normalize_merchant,
)
from txintel.services import PrefetchError

log = logging.getLogger("txintel.categorize")

REVIEW_NEW_IMPORT = "new_import"
REVIEW_LOW_CONFIDENCE = "low_confidence"
REVIEW_UNCATEGORIZED = "uncategorized"
REVIEW_ERROR = "categorization_error"


@dataclass
class BulkCategorizeResult:
    """Outcome of a bulk categorization pass."""

    categorized: int
    total: int


async def prefetch_categorization_data(
    repo: Repository, user_id: str, min_confidence: float = LEARNED_MIN_CONFIDENCE
) -> CategorizationCache:
    """Load rules, learned mappings, default categories and category types once."""
    try:
        rules = await repo.get_active_rules(user_id)
        mappings = await repo.get_learned_mappings(user_id, min_confidence)
        default_categories = await repo.get_default_categories()
        category_types = await repo.get_category_types(user_id)
    except Exception as e:
        raise PrefetchError(f"Could not load categorization data for user {user_id}: {e}") from e
    log.debug(
        f"Prefetched {len(rules)} rules, {len(mappings)} mappings, "
        f"{len(default_categories)} default categories for user {user_id}"
    )
    return CategorizationCache(
        rules=rules,
        mappings=mappings,
        default_categories=default_categories,
        category_types=category_types,
    )


def build_update(
    result: CategorizeResult | None,
    cache: CategorizationCache,
    review_reason: str,
) -> dict:
    """Translate a category decision into transaction field writes.

    Rule matches are trusted outright; anything else is flagged for review.
    """
    if result is None:
        return {"review_flagged": True, "review_flagged_reason": REVIEW_UNCATEGORIZED}
    is_rule_match = result.method == CategorizedBy.RULE
    fields = {
        "category_id": result.category_id,
        "categorized_by": result.method,
        "type": cache.category_types.get(result.category_id),
        "category_confidence": result.confidence,
        "category_confirmed": is_rule_match,
        "review_flagged": not is_rule_match,
        "review_flagged_reason": None if is_rule_match else review_reason,
    }
    if result.set_ignored is not None:
        fields["ignored"] = result.set_ignored
    if result.set_merchant_name is not None:
        fields["merchant_name"] = result.set_merchant_name
    if result.set_tags is not None:
        fields["tags"] = result.set_tags
    return fields


def categorize_transactions(
    engine: CategorizationEngine,
    transactions: list[Transaction],
    cache: CategorizationCache,
    review_reason: str,
) -> tuple[list[tuple[int, dict]], int]:
    """Categorize a batch against one cache.

    Returns the field updates for every transaction and the number that
    received a category. A transaction that raises is left uncategorized
    and flagged without stopping the batch.
    """
    updates = []
    categorized = 0
    for txn in transactions:
        try:
            result = engine.categorize(txn, cache)
        except Exception as e:
            log.error(f"Failed to categorize txn {txn.id}: {e}")
            updates.append((txn.id, {"review_flagged": True, "review_flagged_reason": REVIEW_ERROR}))
            continue
        if result is not None:
            categorized += 1
            log.debug(f"Txn {txn.id} -> category {result.category_id} via {result.method.value}")
        updates.append((txn.id, build_update(result, cache, review_reason)))
    return updates, categorized


async def write_updates(
    repo: Repository, updates: list[tuple[int, dict]], chunk_size: int
) -> int:
    """Write updates in fixed-size chunks. A failed chunk does not stop the rest."""
    written = 0
    for start in range(0, len(updates), chunk_size):
        chunk = updates[start:start + chunk_size]
        try:
            await repo.update_transactions(chunk)
            written += len(chunk)
        except Exception as e:
            log.error(f"Failed to write chunk of {len(chunk)} updates at offset {start}: {e}")
            continue
    return written


async def bulk_categorize(
    repo: Repository,
    user_id: str,
    account_id: int | None = None,
    engine: CategorizationEngine | None = None,
    config: PipelineConfig | None = None,
) -> BulkCategorizeResult:
    """Categorize a page of the user's uncategorized transactions."""
    config = config or PipelineConfig()
    engine = engine or CategorizationEngine()
    account_ids = await repo.get_account_ids(user_id)
    if account_id is not None:
        account_ids = [a for a in account_ids if a == account_id]
    if not account_ids:
        return BulkCategorizeResult(categorized=0, total=0)

    transactions = await repo.get_uncategorized_transactions(
        account_ids, config.uncategorized_page_size
    )
    if not transactions:
        return BulkCategorizeResult(categorized=0, total=0)

    cache = await prefetch_categorization_data(repo, user_id, config.learned_min_confidence)
    updates, categorized = categorize_transactions(
        engine, transactions, cache, REVIEW_LOW_CONFIDENCE
    )
    await write_updates(repo, updates, config.write_chunk_size)
    log.info(f"Bulk categorized {categorized} of {len(transactions)} transactions for user {user_id}")
    return BulkCategorizeResult(categorized=categorized, total=len(transactions))


async def categorize_new_transactions(
    repo: Repository,
    user_id: str,
    transactions: list[Transaction],
    engine: CategorizationEngine | None = None,
    config: PipelineConfig | None = None,
) -> int:
    """Categorize a freshly imported batch. Raises PrefetchError if the cache cannot load."""
    if not transactions:
        return 0
    config = config or PipelineConfig()
    engine = engine or CategorizationEngine()
    cache = await prefetch_categorization_data(repo, user_id, config.learned_min_confidence)
    updates, categorized = categorize_transactions(engine, transactions, cache, REVIEW_NEW_IMPORT)
    await write_updates(repo, updates, config.write_chunk_size)
    log.info(f"Categorized {categorized} of {len(transactions)} new transactions for user {user_id}")
    return categorized


async def learn_from_override(
    repo: Repository, user_id: str, merchant_name: str, category_id: int
) -> MerchantMapping | None:
    """Reinforce or create the learned mapping for a manually categorized merchant."""
    pattern = normalize_merchant(merchant_name)
    if not pattern:
        return None
    existing = await repo.get_merchant_mapping(user_id, pattern)
    if existing is not None:
        mapping = MerchantMapping(
            id=existing.id,
            user_id=user_id,
            merchant_pattern=pattern,
            category_id=category_id,
            confidence=next_confidence(existing.confidence),
            times_confirmed=existing.times_confirmed + 1,
        )
    else:
        mapping = MerchantMapping(
            id=None,
            user_id=user_id,
            merchant_pattern=pattern,
            category_id=category_id,
            confidence=INITIAL_LEARNED_CONFIDENCE,
            times_confirmed=1,
        )
    saved = await repo.save_merchant_mapping(mapping)
    log.info(
        f"Learned '{pattern}' -> category {category_id} "
        f"(confidence {saved.confidence:.3f}, confirmed {saved.times_confirmed}x)"
    )
    return saved


async def set_manual_category(
    repo: Repository, user_id: str, txn_id: int, category_id: int
) -> Transaction | None:
    """Apply a user's category choice and feed it back into learning."""
    txn = await repo.get_transaction_by_id(txn_id)
    if txn is None or txn.account_id not in await repo.get_account_ids(user_id):
        log.warning(f"Skipping manual category for txn {txn_id}: not found for user {user_id}")
        return None
    category = await repo.get_category_by_id(category_id)
    await repo.update_transaction_fields(
        txn_id,
        {
            "category_id": category_id,
            "categorized_by": CategorizedBy.MANUAL,
            "type": category.type if category else None,
            "category_confirmed": True,
            "review_flagged": False,
            "review_flagged_reason": None,
            "category_confidence": None,
        },
    )
    if txn.merchant_name:
        await learn_from_override(repo, user_id, txn.merchant_name, category_id)
    return await repo.get_transaction_by_id(txn_id)
