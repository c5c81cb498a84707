"""Database schema migrations."""

SCHEMA_VERSION = 2

MIGRATIONS = {
    1: """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_accounts_user
            ON accounts(user_id);

        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT,
            name TEXT NOT NULL,
            type TEXT
        );

        CREATE TABLE IF NOT EXISTS category_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            category_id INTEGER NOT NULL REFERENCES categories(id),
            field TEXT,
            operator TEXT,
            value TEXT,
            value_end TEXT,
            conditions TEXT,
            priority INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            set_ignored INTEGER,
            set_merchant_name TEXT,
            set_tags TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_category_rules_user_priority
            ON category_rules(user_id, is_active, priority);

        CREATE TABLE IF NOT EXISTS merchant_mappings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            merchant_pattern TEXT NOT NULL,
            category_id INTEGER NOT NULL REFERENCES categories(id),
            confidence REAL NOT NULL,
            times_confirmed INTEGER NOT NULL DEFAULT 1,
            last_updated TEXT NOT NULL,
            UNIQUE(user_id, merchant_pattern)
        );

        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id INTEGER NOT NULL REFERENCES accounts(id),
            date TEXT NOT NULL,
            amount TEXT NOT NULL,
            description TEXT NOT NULL,
            merchant_name TEXT,
            category_id INTEGER REFERENCES categories(id),
            categorized_by TEXT,
            type TEXT,
            category_confidence REAL,
            category_confirmed INTEGER NOT NULL DEFAULT 0,
            review_flagged INTEGER NOT NULL DEFAULT 0,
            review_flagged_reason TEXT,
            ignored INTEGER NOT NULL DEFAULT 0,
            tags TEXT NOT NULL DEFAULT '[]',
            recurring_id INTEGER,
            is_recurring INTEGER NOT NULL DEFAULT 0,
            to_account_id INTEGER REFERENCES accounts(id),
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_transactions_account_date
            ON transactions(account_id, date);
        CREATE INDEX IF NOT EXISTS idx_transactions_category
            ON transactions(category_id);

        INSERT INTO schema_version (version) VALUES (1);
    """,
    2: """
        CREATE TABLE IF NOT EXISTS recurring_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            merchant_pattern TEXT NOT NULL,
            merchant_name TEXT,
            category_id INTEGER REFERENCES categories(id),
            expected_amount TEXT,
            frequency TEXT NOT NULL DEFAULT 'monthly',
            expected_day INTEGER,
            confirmed INTEGER,
            source TEXT NOT NULL DEFAULT 'manual',
            is_active INTEGER NOT NULL DEFAULT 1,
            next_expected TEXT,
            last_matched_at TEXT,
            occurrence_count INTEGER NOT NULL DEFAULT 0,
            dismissed_at TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_recurring_rules_user_active
            ON recurring_rules(user_id, is_active);

        UPDATE schema_version SET version = 2;
    """,
}


def get_migration_sql(from_version: int, to_version: int) -> list[str]:
    """Get list of migration SQL statements to run."""
    statements = []
    for version in range(from_version + 1, to_version + 1):
        if version in MIGRATIONS:
            statements.append(MIGRATIONS[version])
    return statements
