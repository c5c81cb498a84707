"""Data access layer for SQLite database."""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path

import aiosqlite

from txintel.db.conditions import conditions_to_json, normalize_conditions
from txintel.db.migrations import SCHEMA_VERSION, get_migration_sql
from txintel.db.models import (
    Account,
    CategorizedBy,
    Category,
    CategoryRule,
    Frequency,
    MerchantMapping,
    RecurringRule,
    RecurringSource,
    Transaction,
)

log = logging.getLogger("txintel.db")

TRANSFER_CATEGORY_NAME = "Transfer"
TRANSFER_CATEGORY_TYPE = "transfer"

# Columns the pipeline may write on a transaction row.
TRANSACTION_UPDATE_FIELDS = frozenset(
    {
        "category_id",
        "categorized_by",
        "type",
        "category_confidence",
        "category_confirmed",
        "review_flagged",
        "review_flagged_reason",
        "ignored",
        "merchant_name",
        "tags",
        "recurring_id",
        "is_recurring",
        "to_account_id",
    }
)


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


def _to_db_value(value):
    """Convert a Python value to its stored column representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, list):
        return json.dumps(value)
    return value


def _optional_bool(value) -> bool | None:
    return None if value is None else bool(value)


class Repository:
    """Async repository for database operations."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _run_migrations(self) -> None:  # pragma: no cover
        """Run pending database migrations."""
        current_version = await self._get_schema_version()
        if current_version < SCHEMA_VERSION:
            migrations = get_migration_sql(current_version, SCHEMA_VERSION)
            for sql in migrations:
                await self._connection.executescript(sql)
            await self._connection.commit()

    async def _get_schema_version(self) -> int:
        """Get current schema version from database."""
        try:
            cursor = await self._connection.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return row["version"] if row else 0
        except aiosqlite.OperationalError:
            return 0

    # Account operations

    async def save_account(self, account: Account) -> Account:
        """Save or update an account."""
        if account.id is None:
            cursor = await self._connection.execute(
                "INSERT INTO accounts (user_id, name, created_at) VALUES (?, ?, ?)",
                (account.user_id, account.name, account.created_at.isoformat()),
            )
            account_id = cursor.lastrowid
        else:
            await self._connection.execute(
                "UPDATE accounts SET user_id=?, name=? WHERE id=?",
                (account.user_id, account.name, account.id),
            )
            account_id = account.id
        await self._connection.commit()
        return await self.get_account_by_id(account_id)

    async def get_account_by_id(self, account_id: int) -> Account | None:
        """Get account by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Account(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def get_account_ids(self, user_id: str) -> list[int]:
        """Get the IDs of every account the user owns."""
        cursor = await self._connection.execute(
            "SELECT id FROM accounts WHERE user_id = ? ORDER BY id", (user_id,)
        )
        rows = await cursor.fetchall()
        return [row["id"] for row in rows]

    # Category operations

    async def save_category(self, category: Category) -> Category:
        """Save or update a category."""
        if category.id is None:
            cursor = await self._connection.execute(
                "INSERT INTO categories (user_id, name, type) VALUES (?, ?, ?)",
                (category.user_id, category.name, category.type),
            )
            category_id = cursor.lastrowid
        else:
            await self._connection.execute(
                "UPDATE categories SET user_id=?, name=?, type=? WHERE id=?",
                (category.user_id, category.name, category.type, category.id),
            )
            category_id = category.id
        await self._connection.commit()
        return await self.get_category_by_id(category_id)

    async def get_category_by_id(self, category_id: int) -> Category | None:
        """Get category by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_category(row) if row else None

    async def get_default_categories(self) -> list[Category]:
        """Get the system categories shared by all users."""
        cursor = await self._connection.execute(
            "SELECT * FROM categories WHERE user_id IS NULL ORDER BY id"
        )
        rows = await cursor.fetchall()
        return [self._row_to_category(row) for row in rows]

    async def get_category_types(self, user_id: str) -> dict[int, str]:
        """Map category ID to type for the user's and system categories."""
        cursor = await self._connection.execute(
            """SELECT id, type FROM categories
               WHERE (user_id = ? OR user_id IS NULL) AND type IS NOT NULL""",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return {row["id"]: row["type"] for row in rows}

    async def get_transfer_category_id(self) -> int | None:
        """Get the canonical transfer category, if one exists."""
        cursor = await self._connection.execute(
            "SELECT id FROM categories WHERE type = ? AND name = ? ORDER BY id LIMIT 1",
            (TRANSFER_CATEGORY_TYPE, TRANSFER_CATEGORY_NAME),
        )
        row = await cursor.fetchone()
        return row["id"] if row else None

    def _row_to_category(self, row: aiosqlite.Row) -> Category:
        """Convert database row to Category object."""
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            type=row["type"],
        )

    # Rule operations

    async def save_rule(self, rule: CategoryRule) -> CategoryRule:
        """Save or update a rule. Conditions are stored as a JSON list."""
        tags = json.dumps(rule.set_tags) if rule.set_tags is not None else None
        set_ignored = int(rule.set_ignored) if rule.set_ignored is not None else None
        if rule.id is None:
            cursor = await self._connection.execute(
                """INSERT INTO category_rules (user_id, category_id, conditions,
                   priority, is_active, set_ignored, set_merchant_name, set_tags,
                   created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    rule.user_id,
                    rule.category_id,
                    conditions_to_json(rule.conditions),
                    rule.priority,
                    int(rule.is_active),
                    set_ignored,
                    rule.set_merchant_name,
                    tags,
                    rule.created_at.isoformat(),
                ),
            )
            rule_id = cursor.lastrowid
        else:
            await self._connection.execute(
                """UPDATE category_rules SET user_id=?, category_id=?, conditions=?,
                   priority=?, is_active=?, set_ignored=?, set_merchant_name=?,
                   set_tags=? WHERE id=?""",
                (
                    rule.user_id,
                    rule.category_id,
                    conditions_to_json(rule.conditions),
                    rule.priority,
                    int(rule.is_active),
                    set_ignored,
                    rule.set_merchant_name,
                    tags,
                    rule.id,
                ),
            )
            rule_id = rule.id
        await self._connection.commit()
        return await self.get_rule_by_id(rule_id)

    async def get_rule_by_id(self, rule_id: int) -> CategoryRule | None:
        """Get rule by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM category_rules WHERE id = ?", (rule_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_rule(row) if row else None

    async def get_active_rules(self, user_id: str) -> list[CategoryRule]:
        """Get the user's active rules in priority order.

        Rules whose stored conditions cannot be interpreted are skipped,
        since they could never match.
        """
        cursor = await self._connection.execute(
            """SELECT * FROM category_rules WHERE user_id = ? AND is_active = 1
               ORDER BY priority ASC, id ASC""",
            (user_id,),
        )
        rows = await cursor.fetchall()
        rules = []
        for row in rows:
            try:
                rules.append(self._row_to_rule(row))
            except ValueError as e:
                log.warning(f"Skipping rule {row['id']}: {e}")
        return rules

    def _row_to_rule(self, row: aiosqlite.Row) -> CategoryRule:
        """Convert database row to CategoryRule, normalizing legacy shapes."""
        return CategoryRule(
            id=row["id"],
            user_id=row["user_id"],
            category_id=row["category_id"],
            conditions=normalize_conditions(
                row["conditions"],
                row["field"],
                row["operator"],
                row["value"],
                row["value_end"],
            ),
            priority=row["priority"],
            is_active=bool(row["is_active"]),
            set_ignored=_optional_bool(row["set_ignored"]),
            set_merchant_name=row["set_merchant_name"],
            set_tags=json.loads(row["set_tags"]) if row["set_tags"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # Merchant mapping operations

    async def save_merchant_mapping(self, mapping: MerchantMapping) -> MerchantMapping:
        """Insert or update a learned mapping keyed by (user, pattern)."""
        now = datetime.now().isoformat()
        await self._connection.execute(
            """INSERT INTO merchant_mappings (user_id, merchant_pattern, category_id,
               confidence, times_confirmed, last_updated)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, merchant_pattern) DO UPDATE SET
               category_id=excluded.category_id,
               confidence=excluded.confidence,
               times_confirmed=excluded.times_confirmed,
               last_updated=excluded.last_updated""",
            (
                mapping.user_id,
                mapping.merchant_pattern,
                mapping.category_id,
                mapping.confidence,
                mapping.times_confirmed,
                now,
            ),
        )
        await self._connection.commit()
        return await self.get_merchant_mapping(mapping.user_id, mapping.merchant_pattern)

    async def get_merchant_mapping(
        self, user_id: str, merchant_pattern: str
    ) -> MerchantMapping | None:
        """Get a learned mapping by its normalized pattern."""
        cursor = await self._connection.execute(
            "SELECT * FROM merchant_mappings WHERE user_id = ? AND merchant_pattern = ?",
            (user_id, merchant_pattern),
        )
        row = await cursor.fetchone()
        return self._row_to_merchant_mapping(row) if row else None

    async def get_learned_mappings(
        self, user_id: str, min_confidence: float
    ) -> list[MerchantMapping]:
        """Get confident mappings, highest confidence first."""
        cursor = await self._connection.execute(
            """SELECT * FROM merchant_mappings
               WHERE user_id = ? AND confidence >= ?
               ORDER BY confidence DESC, id ASC""",
            (user_id, min_confidence),
        )
        rows = await cursor.fetchall()
        return [self._row_to_merchant_mapping(row) for row in rows]

    def _row_to_merchant_mapping(self, row: aiosqlite.Row) -> MerchantMapping:
        """Convert database row to MerchantMapping object."""
        return MerchantMapping(
            id=row["id"],
            user_id=row["user_id"],
            merchant_pattern=row["merchant_pattern"],
            category_id=row["category_id"],
            confidence=row["confidence"],
            times_confirmed=row["times_confirmed"],
            last_updated=datetime.fromisoformat(row["last_updated"]),
        )

    # Transaction operations

    async def save_transaction(self, txn: Transaction) -> Transaction:
        """Save or update a transaction."""
        values = (
            txn.account_id,
            txn.date.isoformat(),
            str(txn.amount),
            txn.description,
            txn.merchant_name,
            txn.category_id,
            txn.categorized_by.value if txn.categorized_by else None,
            txn.type,
            txn.category_confidence,
            int(txn.category_confirmed),
            int(txn.review_flagged),
            txn.review_flagged_reason,
            int(txn.ignored),
            json.dumps(txn.tags),
            txn.recurring_id,
            int(txn.is_recurring),
            txn.to_account_id,
        )
        if txn.id is None:
            cursor = await self._connection.execute(
                """INSERT INTO transactions (account_id, date, amount, description,
                   merchant_name, category_id, categorized_by, type,
                   category_confidence, category_confirmed, review_flagged,
                   review_flagged_reason, ignored, tags, recurring_id,
                   is_recurring, to_account_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (*values, txn.created_at.isoformat()),
            )
            txn_id = cursor.lastrowid
        else:
            await self._connection.execute(
                """UPDATE transactions SET account_id=?, date=?, amount=?,
                   description=?, merchant_name=?, category_id=?, categorized_by=?,
                   type=?, category_confidence=?, category_confirmed=?,
                   review_flagged=?, review_flagged_reason=?, ignored=?, tags=?,
                   recurring_id=?, is_recurring=?, to_account_id=?
                   WHERE id=?""",
                (*values, txn.id),
            )
            txn_id = txn.id
        await self._connection.commit()
        return await self.get_transaction_by_id(txn_id)

    async def get_transaction_by_id(self, txn_id: int) -> Transaction | None:
        """Get transaction by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM transactions WHERE id = ?", (txn_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None

    async def get_transactions_by_ids(self, txn_ids: list[int]) -> list[Transaction]:
        """Get transactions by ID, in ID order."""
        if not txn_ids:
            return []
        cursor = await self._connection.execute(
            f"SELECT * FROM transactions WHERE id IN ({_placeholders(txn_ids)}) ORDER BY id",
            list(txn_ids),
        )
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def get_uncategorized_transactions(
        self, account_ids: list[int], limit: int
    ) -> list[Transaction]:
        """Get a page of uncategorized transactions, newest first."""
        if not account_ids:
            return []
        cursor = await self._connection.execute(
            f"""SELECT * FROM transactions
                WHERE account_id IN ({_placeholders(account_ids)})
                AND category_id IS NULL
                ORDER BY date DESC, id DESC LIMIT ?""",
            [*account_ids, limit],
        )
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def get_unlinked_transactions(
        self,
        account_ids: list[int],
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Transaction]:
        """Get transactions not yet linked to a counterpart account."""
        if not account_ids:
            return []
        conditions = [f"account_id IN ({_placeholders(account_ids)})", "to_account_id IS NULL"]
        params: list = list(account_ids)
        if start_date is not None:
            conditions.append("date >= ?")
            params.append(start_date.isoformat())
        if end_date is not None:
            conditions.append("date <= ?")
            params.append(end_date.isoformat())
        query = (
            f"SELECT * FROM transactions WHERE {' AND '.join(conditions)} "
            "ORDER BY date DESC, id ASC"
        )
        cursor = await self._connection.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def get_transactions_since(
        self, account_ids: list[int], start_date: date
    ) -> list[Transaction]:
        """Get all transactions on or after a date, oldest first."""
        if not account_ids:
            return []
        cursor = await self._connection.execute(
            f"""SELECT * FROM transactions
                WHERE account_id IN ({_placeholders(account_ids)}) AND date >= ?
                ORDER BY date ASC, id ASC""",
            [*account_ids, start_date.isoformat()],
        )
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def update_transaction_fields(self, txn_id: int, fields: dict) -> None:
        """Write a subset of pipeline-owned fields on one transaction."""
        await self._execute_transaction_update(txn_id, fields)
        await self._connection.commit()

    async def update_transactions(self, updates: list[tuple[int, dict]]) -> None:
        """Write field updates for several transactions in one commit.

        Nothing from the batch is kept if any update fails.
        """
        try:
            for txn_id, fields in updates:
                await self._execute_transaction_update(txn_id, fields)
        except Exception:
            await self._connection.rollback()
            raise
        await self._connection.commit()

    async def _execute_transaction_update(self, txn_id: int, fields: dict) -> None:
        unknown = set(fields) - TRANSACTION_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update transaction fields: {sorted(unknown)}")
        if not fields:
            return
        columns = sorted(fields)
        assignments = ", ".join(f"{column}=?" for column in columns)
        await self._connection.execute(
            f"UPDATE transactions SET {assignments} WHERE id=?",
            [*(_to_db_value(fields[column]) for column in columns), txn_id],
        )

    def _row_to_transaction(self, row: aiosqlite.Row) -> Transaction:
        """Convert database row to Transaction object."""
        return Transaction(
            id=row["id"],
            account_id=row["account_id"],
            date=date.fromisoformat(row["date"]),
            amount=Decimal(row["amount"]),
            description=row["description"],
            merchant_name=row["merchant_name"],
            category_id=row["category_id"],
            categorized_by=(
                CategorizedBy(row["categorized_by"]) if row["categorized_by"] else None
            ),
            type=row["type"],
            category_confidence=row["category_confidence"],
            category_confirmed=bool(row["category_confirmed"]),
            review_flagged=bool(row["review_flagged"]),
            review_flagged_reason=row["review_flagged_reason"],
            ignored=bool(row["ignored"]),
            tags=json.loads(row["tags"]) if row["tags"] else [],
            recurring_id=row["recurring_id"],
            is_recurring=bool(row["is_recurring"]),
            to_account_id=row["to_account_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # Recurring rule operations

    async def save_recurring_rule(self, rule: RecurringRule) -> RecurringRule:
        """Save or update a recurring rule."""
        values = (
            rule.user_id,
            rule.merchant_pattern,
            rule.merchant_name,
            rule.category_id,
            str(rule.expected_amount) if rule.expected_amount is not None else None,
            rule.frequency.value,
            rule.expected_day,
            int(rule.confirmed) if rule.confirmed is not None else None,
            rule.source.value,
            int(rule.is_active),
            rule.next_expected.isoformat() if rule.next_expected else None,
            rule.last_matched_at.isoformat() if rule.last_matched_at else None,
            rule.occurrence_count,
            rule.dismissed_at.isoformat() if rule.dismissed_at else None,
        )
        if rule.id is None:
            cursor = await self._connection.execute(
                """INSERT INTO recurring_rules (user_id, merchant_pattern,
                   merchant_name, category_id, expected_amount, frequency,
                   expected_day, confirmed, source, is_active, next_expected,
                   last_matched_at, occurrence_count, dismissed_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (*values, rule.created_at.isoformat()),
            )
            rule_id = cursor.lastrowid
        else:
            await self._connection.execute(
                """UPDATE recurring_rules SET user_id=?, merchant_pattern=?,
                   merchant_name=?, category_id=?, expected_amount=?, frequency=?,
                   expected_day=?, confirmed=?, source=?, is_active=?,
                   next_expected=?, last_matched_at=?, occurrence_count=?,
                   dismissed_at=? WHERE id=?""",
                (*values, rule.id),
            )
            rule_id = rule.id
        await self._connection.commit()
        return await self.get_recurring_rule_by_id(rule_id)

    async def get_recurring_rule_by_id(self, rule_id: int) -> RecurringRule | None:
        """Get recurring rule by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM recurring_rules WHERE id = ?", (rule_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_recurring_rule(row) if row else None

    async def get_active_recurring_rules(self, user_id: str) -> list[RecurringRule]:
        """Get the user's active recurring rules in table order."""
        cursor = await self._connection.execute(
            "SELECT * FROM recurring_rules WHERE user_id = ? AND is_active = 1 ORDER BY id",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_recurring_rule(row) for row in rows]

    async def get_recurring_patterns(self, user_id: str) -> set[str]:
        """Get every lowercased merchant pattern the user already has a rule for."""
        cursor = await self._connection.execute(
            "SELECT merchant_pattern FROM recurring_rules WHERE user_id = ?", (user_id,)
        )
        rows = await cursor.fetchall()
        return {row["merchant_pattern"].lower() for row in rows}

    async def update_recurring_schedule(
        self, rule_id: int, next_expected: date, last_matched_at: datetime
    ) -> None:
        """Advance a rule after a transaction matched it."""
        await self._connection.execute(
            "UPDATE recurring_rules SET next_expected = ?, last_matched_at = ? WHERE id = ?",
            (next_expected.isoformat(), last_matched_at.isoformat(), rule_id),
        )
        await self._connection.commit()

    def _row_to_recurring_rule(self, row: aiosqlite.Row) -> RecurringRule:
        """Convert database row to RecurringRule object."""
        return RecurringRule(
            id=row["id"],
            user_id=row["user_id"],
            merchant_pattern=row["merchant_pattern"],
            frequency=Frequency(row["frequency"]),
            merchant_name=row["merchant_name"],
            category_id=row["category_id"],
            expected_amount=(
                Decimal(row["expected_amount"]) if row["expected_amount"] else None
            ),
            expected_day=row["expected_day"],
            confirmed=_optional_bool(row["confirmed"]),
            source=RecurringSource(row["source"]),
            is_active=bool(row["is_active"]),
            next_expected=(
                date.fromisoformat(row["next_expected"]) if row["next_expected"] else None
            ),
            last_matched_at=(
                datetime.fromisoformat(row["last_matched_at"])
                if row["last_matched_at"]
                else None
            ),
            occurrence_count=row["occurrence_count"],
            dismissed_at=(
                datetime.fromisoformat(row["dismissed_at"]) if row["dismissed_at"] else None
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
