"""
Product, store-product, serving and nutrition upserts.

Every write is INSERT ... ON CONFLICT DO UPDATE keyed by the table's primary
key, so applying the same record twice leaves the same state as applying it
once.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from typing import Iterable, List, Optional

from ..catalog.types import (
    CatalogRecord,
    NutrientCategory,
    NutritionFact,
    Product,
    Serving,
    StoreProduct,
)


def upsert_product(conn: sqlite3.Connection, product: Product) -> None:
    params = asdict(product)
    params["is_sold_by_weight"] = int(product.is_sold_by_weight)
    params["is_alcohol"] = int(product.is_alcohol)
    params["tags_filter"] = json.dumps(product.tags_filter)
    params["tags_popular"] = json.dumps(product.tags_popular)
    conn.execute(
        """
        INSERT INTO products (
            product_id, name, brand, description, pack_size, image_url,
            ingredients, allergens, is_sold_by_weight, is_alcohol, upc,
            category_path, tags_filter, tags_popular
        ) VALUES (
            :product_id, :name, :brand, :description, :pack_size, :image_url,
            :ingredients, :allergens, :is_sold_by_weight, :is_alcohol, :upc,
            :category_path, :tags_filter, :tags_popular
        )
        ON CONFLICT(product_id) DO UPDATE SET
            name = excluded.name,
            brand = excluded.brand,
            description = excluded.description,
            pack_size = excluded.pack_size,
            image_url = excluded.image_url,
            ingredients = excluded.ingredients,
            allergens = excluded.allergens,
            is_sold_by_weight = excluded.is_sold_by_weight,
            is_alcohol = excluded.is_alcohol,
            upc = excluded.upc,
            category_path = excluded.category_path,
            tags_filter = excluded.tags_filter,
            tags_popular = excluded.tags_popular
        """,
        params,
    )


def upsert_store_product(conn: sqlite3.Connection, sp: StoreProduct) -> None:
    params = asdict(sp)
    params["is_available"] = int(sp.is_available)
    params["is_sold_at_store"] = int(sp.is_sold_at_store)
    conn.execute(
        """
        INSERT INTO store_products (
            product_id, store_number, price_in_store, price_in_store_loyalty,
            price_delivery, price_delivery_loyalty, unit_price,
            aisle, shelf, is_available, is_sold_at_store, last_updated
        ) VALUES (
            :product_id, :store_number, :price_in_store, :price_in_store_loyalty,
            :price_delivery, :price_delivery_loyalty, :unit_price,
            :aisle, :shelf, :is_available, :is_sold_at_store, :last_updated
        )
        ON CONFLICT(product_id, store_number) DO UPDATE SET
            price_in_store = excluded.price_in_store,
            price_in_store_loyalty = excluded.price_in_store_loyalty,
            price_delivery = excluded.price_delivery,
            price_delivery_loyalty = excluded.price_delivery_loyalty,
            unit_price = excluded.unit_price,
            aisle = excluded.aisle,
            shelf = excluded.shelf,
            is_available = excluded.is_available,
            is_sold_at_store = excluded.is_sold_at_store,
            last_updated = excluded.last_updated
        """,
        params,
    )


def upsert_serving(conn: sqlite3.Connection, serving: Serving) -> None:
    conn.execute(
        """
        INSERT INTO servings (
            product_id, serving_size, serving_size_unit,
            servings_per_container, household_measurement
        ) VALUES (
            :product_id, :serving_size, :serving_size_unit,
            :servings_per_container, :household_measurement
        )
        ON CONFLICT(product_id) DO UPDATE SET
            serving_size = excluded.serving_size,
            serving_size_unit = excluded.serving_size_unit,
            servings_per_container = excluded.servings_per_container,
            household_measurement = excluded.household_measurement
        """,
        asdict(serving),
    )


def upsert_nutrition_facts(
    conn: sqlite3.Connection, facts: Iterable[NutritionFact]
) -> None:
    conn.executemany(
        """
        INSERT INTO nutrition_facts (
            product_id, nutrient, quantity, unit, percent_daily, category
        ) VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(product_id, nutrient) DO UPDATE SET
            quantity = excluded.quantity,
            unit = excluded.unit,
            percent_daily = excluded.percent_daily,
            category = excluded.category
        """,
        [
            (
                f.product_id,
                f.nutrient,
                f.quantity,
                f.unit,
                f.percent_daily,
                NutrientCategory(f.category).value,
            )
            for f in facts
        ],
    )


def upsert_record(conn: sqlite3.Connection, record: CatalogRecord) -> None:
    """Write every row derived from one fetched hit.

    The product row goes first so the store-product foreign key holds.
    """
    upsert_product(conn, record.product)
    upsert_store_product(conn, record.store_product)
    if record.serving is not None:
        upsert_serving(conn, record.serving)
    if record.nutrition:
        upsert_nutrition_facts(conn, record.nutrition)


def prune_store_products(
    conn: sqlite3.Connection, store_number: str, refreshed_at: str
) -> int:
    """Drop a store's rows that the refresh stamped ``refreshed_at`` did not write.

    Returns the number of delisted rows removed.
    """
    cur = conn.execute(
        "DELETE FROM store_products WHERE store_number = ? AND last_updated <> ?",
        (store_number, refreshed_at),
    )
    return cur.rowcount


def _row_to_product(row: sqlite3.Row) -> Product:
    return Product(
        product_id=row["product_id"],
        name=row["name"],
        brand=row["brand"],
        description=row["description"],
        pack_size=row["pack_size"],
        image_url=row["image_url"],
        ingredients=row["ingredients"],
        allergens=row["allergens"],
        is_sold_by_weight=bool(row["is_sold_by_weight"]),
        is_alcohol=bool(row["is_alcohol"]),
        upc=row["upc"],
        category_path=row["category_path"],
        tags_filter=json.loads(row["tags_filter"] or "[]"),
        tags_popular=json.loads(row["tags_popular"] or "[]"),
    )


def get_product(conn: sqlite3.Connection, product_id: str) -> Optional[Product]:
    row = conn.execute(
        "SELECT * FROM products WHERE product_id = ?", (product_id,)
    ).fetchone()
    return _row_to_product(row) if row else None


def iter_products(conn: sqlite3.Connection) -> Iterable[Product]:
    """Stream every product row."""
    for row in conn.execute("SELECT * FROM products ORDER BY product_id"):
        yield _row_to_product(row)


def get_store_product(
    conn: sqlite3.Connection, product_id: str, store_number: str
) -> Optional[StoreProduct]:
    row = conn.execute(
        "SELECT * FROM store_products WHERE product_id = ? AND store_number = ?",
        (product_id, store_number),
    ).fetchone()
    if not row:
        return None
    return StoreProduct(
        product_id=row["product_id"],
        store_number=row["store_number"],
        price_in_store=row["price_in_store"],
        price_in_store_loyalty=row["price_in_store_loyalty"],
        price_delivery=row["price_delivery"],
        price_delivery_loyalty=row["price_delivery_loyalty"],
        unit_price=row["unit_price"],
        aisle=row["aisle"],
        shelf=row["shelf"],
        is_available=bool(row["is_available"]),
        is_sold_at_store=bool(row["is_sold_at_store"]),
        last_updated=row["last_updated"],
    )


def get_nutrition_facts(
    conn: sqlite3.Connection, product_id: str
) -> List[NutritionFact]:
    rows = conn.execute(
        "SELECT * FROM nutrition_facts WHERE product_id = ? ORDER BY nutrient",
        (product_id,),
    ).fetchall()
    return [
        NutritionFact(
            product_id=row["product_id"],
            nutrient=row["nutrient"],
            quantity=row["quantity"],
            unit=row["unit"],
            percent_daily=row["percent_daily"],
            category=NutrientCategory(row["category"]),
        )
        for row in rows
    ]
