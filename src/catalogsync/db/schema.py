"""
Catalog database schema.

Tables:
- api_keys: extracted Algolia credentials (history, newest wins)
- settings: key-value pairs (active store, last refresh stamps)
- stores / products / store_products: the replicated catalog
- servings / nutrition_facts: per-product nutrition data
- categories / tags: derived ontology, rebuilt on every commit
"""

from __future__ import annotations

import sqlite3

SCHEMA = """
CREATE TABLE IF NOT EXISTS api_keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL,
    app_id TEXT NOT NULL,
    extracted_at TEXT NOT NULL,
    expires_at TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stores (
    store_number TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    city TEXT,
    state TEXT,
    zip_code TEXT,
    street_address TEXT,
    latitude REAL,
    longitude REAL,
    has_pickup INTEGER NOT NULL DEFAULT 0,
    has_delivery INTEGER NOT NULL DEFAULT 0,
    has_ecommerce INTEGER NOT NULL DEFAULT 0,
    last_updated TEXT,
    catalog_refreshed_at TEXT
);

CREATE TABLE IF NOT EXISTS products (
    product_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    brand TEXT,
    description TEXT,
    pack_size TEXT,
    image_url TEXT,
    ingredients TEXT,
    allergens TEXT,
    is_sold_by_weight INTEGER NOT NULL DEFAULT 0,
    is_alcohol INTEGER NOT NULL DEFAULT 0,
    upc TEXT,
    category_path TEXT,
    tags_filter TEXT,
    tags_popular TEXT
);

CREATE TABLE IF NOT EXISTS store_products (
    product_id TEXT NOT NULL REFERENCES products(product_id) ON DELETE CASCADE,
    store_number TEXT NOT NULL REFERENCES stores(store_number) ON DELETE CASCADE,
    price_in_store REAL,
    price_in_store_loyalty REAL,
    price_delivery REAL,
    price_delivery_loyalty REAL,
    unit_price TEXT,
    aisle TEXT,
    shelf TEXT,
    is_available INTEGER NOT NULL DEFAULT 0,
    is_sold_at_store INTEGER NOT NULL DEFAULT 0,
    last_updated TEXT,
    PRIMARY KEY (product_id, store_number)
);

CREATE TABLE IF NOT EXISTS servings (
    product_id TEXT PRIMARY KEY REFERENCES products(product_id) ON DELETE CASCADE,
    serving_size TEXT,
    serving_size_unit TEXT,
    servings_per_container TEXT,
    household_measurement TEXT
);

CREATE TABLE IF NOT EXISTS nutrition_facts (
    product_id TEXT NOT NULL REFERENCES products(product_id) ON DELETE CASCADE,
    nutrient TEXT NOT NULL,
    quantity REAL,
    unit TEXT,
    percent_daily REAL,
    category TEXT NOT NULL CHECK (category IN ('general', 'vitamin')),
    PRIMARY KEY (product_id, nutrient)
);

CREATE TABLE IF NOT EXISTS categories (
    path TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    level INTEGER NOT NULL,
    product_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS tags (
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('filter', 'popular')),
    product_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (name, type)
);

CREATE INDEX IF NOT EXISTS idx_store_products_store
    ON store_products(store_number, last_updated);
CREATE INDEX IF NOT EXISTS idx_products_category ON products(category_path);
CREATE INDEX IF NOT EXISTS idx_products_upc ON products(upc);
CREATE INDEX IF NOT EXISTS idx_categories_level ON categories(level);
"""


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes. Safe to call repeatedly."""
    conn.executescript(SCHEMA)
    _add_missing_columns(conn)


# Columns added after the first release: (table, column, type)
ADDED_COLUMNS = [("stores", "catalog_refreshed_at", "TEXT")]


def _add_missing_columns(conn: sqlite3.Connection) -> None:
    for table, column, kind in ADDED_COLUMNS:
        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
        if column not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {kind}")
