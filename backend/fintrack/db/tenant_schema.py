# Tenant Database Schema
# Applied to every per-tenant database and, once, to the shared finance database.
# Each table carries user_id so the same SQL works under both storage strategies.

# Format: (version, description, up_sql, down_sql)
TENANT_MIGRATIONS = [
    (
        1,
        "Baseline categories, transactions and settings tables",
        """
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    color TEXT NOT NULL DEFAULT '#607d8b',
    type TEXT NOT NULL CHECK (type IN ('income', 'expense', 'both')),
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (user_id, name, type)
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    amount NUMERIC NOT NULL CHECK (amount > 0),
    type TEXT NOT NULL CHECK (type IN ('income', 'expense')),
    category_id TEXT REFERENCES categories(id) ON DELETE SET NULL,
    date TEXT NOT NULL,
    note TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS settings (
    user_id TEXT NOT NULL,
    setting_key TEXT NOT NULL,
    setting_value TEXT,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (user_id, setting_key)
);

CREATE INDEX IF NOT EXISTS idx_categories_user ON categories(user_id, type);
CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date DESC);
CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id);
""",
        """
DROP INDEX IF EXISTS idx_transactions_category;
DROP INDEX IF EXISTS idx_transactions_user_date;
DROP INDEX IF EXISTS idx_categories_user;
DROP TABLE IF EXISTS settings;
DROP TABLE IF EXISTS transactions;
DROP TABLE IF EXISTS categories;
"""
    ),
    (
        2,
        "Protect default categories from deletion",
        """
-- A user_id listed here is being torn down and may drop its default categories
CREATE TABLE IF NOT EXISTS tenant_retirements (
    user_id TEXT PRIMARY KEY
);

CREATE TRIGGER IF NOT EXISTS protect_default_categories
BEFORE DELETE ON categories
WHEN OLD.is_default = 1
    AND NOT EXISTS (SELECT 1 FROM tenant_retirements WHERE user_id = OLD.user_id)
BEGIN
    SELECT RAISE(ABORT, 'Default categories cannot be deleted');
END;
""",
        """
DROP TRIGGER IF EXISTS protect_default_categories;
DROP TABLE IF EXISTS tenant_retirements;
"""
    ),
]

# (name, color, type)
DEFAULT_CATEGORIES = [
    ("Salary", "#27ae60", "income"),
    ("Freelance", "#2ecc71", "income"),
    ("Investment", "#16a085", "income"),
    ("Other Income", "#1abc9c", "income"),
    ("Food & Dining", "#e74c3c", "expense"),
    ("Transportation", "#e67e22", "expense"),
    ("Shopping", "#f39c12", "expense"),
    ("Entertainment", "#9b59b6", "expense"),
    ("Bills & Utilities", "#34495e", "expense"),
    ("Healthcare", "#1abc9c", "expense"),
    ("Education", "#3498db", "expense"),
    ("Travel", "#e91e63", "expense"),
    ("Home & Garden", "#795548", "expense"),
    ("Other Expenses", "#607d8b", "expense"),
]

DEFAULT_SETTINGS = {
    "currency": "USD",
    "date_format": "MM/DD/YYYY",
    "theme": "light",
    "notifications": "true",
}
