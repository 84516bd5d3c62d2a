"""Raw Algolia hit -> catalog rows."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from ..algolia.schemas import AlgoliaHit, Nutrient, Price
from .types import (
    CatalogRecord,
    NutrientCategory,
    NutritionFact,
    Product,
    Serving,
    StoreProduct,
)

logger = logging.getLogger(__name__)


def _amount(price: Optional[Price]) -> Optional[float]:
    return price.amount if price else None


def _text(value: Union[str, float, int, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _number(value: Union[str, float, None]) -> Optional[float]:
    """Numeric value or None for things like "<1" or ""."""
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_product(hit: AlgoliaHit, product_id: str) -> Product:
    return Product(
        product_id=product_id,
        name=hit.product_name or "",
        brand=hit.brand,
        description=hit.description,
        pack_size=hit.pack_size,
        image_url=hit.images[0] if hit.images else None,
        ingredients=hit.ingredients,
        allergens=hit.allergens,
        is_sold_by_weight=bool(hit.is_sold_by_weight),
        is_alcohol=bool(hit.is_alcohol),
        upc=str(hit.upc[0]) if hit.upc else None,
        category_path=hit.categories.leaf() if hit.categories else None,
        tags_filter=list(hit.filter_tags),
        tags_popular=list(hit.popular_tags),
    )


def to_store_product(
    hit: AlgoliaHit, product_id: str, store_number: str, refreshed_at: str
) -> StoreProduct:
    in_store = hit.price_in_store
    return StoreProduct(
        product_id=product_id,
        store_number=store_number,
        price_in_store=_amount(in_store),
        price_in_store_loyalty=_amount(hit.price_in_store_loyalty),
        price_delivery=_amount(hit.price_delivery),
        price_delivery_loyalty=_amount(hit.price_delivery_loyalty),
        unit_price=in_store.unit_price if in_store else None,
        aisle=_text(hit.planogram.aisle) if hit.planogram else None,
        shelf=_text(hit.planogram.shelf) if hit.planogram else None,
        is_available=bool(hit.is_available),
        is_sold_at_store=bool(hit.is_sold_at_store),
        last_updated=refreshed_at,
    )


def to_serving(hit: AlgoliaHit, product_id: str) -> Optional[Serving]:
    serving = hit.nutrition.serving if hit.nutrition else None
    if serving is None:
        return None
    return Serving(
        product_id=product_id,
        serving_size=_text(serving.serving_size),
        serving_size_unit=serving.serving_size_uom,
        servings_per_container=_text(serving.servings_per_container),
        household_measurement=serving.household_measurement,
    )


def _fact(
    product_id: str, nutrient: Nutrient, category: NutrientCategory
) -> NutritionFact:
    return NutritionFact(
        product_id=product_id,
        nutrient=nutrient.name,
        quantity=_number(nutrient.quantity),
        unit=nutrient.unit_of_measure,
        percent_daily=_number(nutrient.percent_of_daily),
        category=category,
    )


def to_nutrition_facts(hit: AlgoliaHit, product_id: str) -> List[NutritionFact]:
    """One fact per nutrient name; later duplicates win."""
    if not hit.nutrition:
        return []
    facts: Dict[str, NutritionFact] = {}
    for entry in hit.nutrition.nutritions:
        for nutrient in entry.general:
            facts[nutrient.name] = _fact(product_id, nutrient, NutrientCategory.GENERAL)
        for nutrient in entry.vitamins:
            facts[nutrient.name] = _fact(product_id, nutrient, NutrientCategory.VITAMIN)
    return list(facts.values())


def to_record(
    raw: Dict[str, Any], store_number: str, refreshed_at: str
) -> Optional[CatalogRecord]:
    """Build all rows for one hit, or None if it has no usable identifier."""
    hit = AlgoliaHit.model_validate(raw)
    product_id = hit.resolved_product_id()
    if product_id is None:
        return None
    return CatalogRecord(
        product=to_product(hit, product_id),
        store_product=to_store_product(hit, product_id, store_number, refreshed_at),
        serving=to_serving(hit, product_id),
        nutrition=to_nutrition_facts(hit, product_id),
    )


def build_records(
    hits: Iterable[Dict[str, Any]], store_number: str, refreshed_at: str
) -> Tuple[List[CatalogRecord], int]:
    """Validate and transform hits, keyed by product id (last one wins).

    Returns (records, skipped) where skipped counts hits that failed
    validation or had no identifier.
    """
    records: Dict[str, CatalogRecord] = {}
    skipped = 0
    for raw in hits:
        try:
            record = to_record(raw, store_number, refreshed_at)
        except ValidationError as e:
            logger.warning(
                f"Skipping invalid hit {raw.get('objectID')!r} for store "
                f"{store_number}: {e.error_count()} validation errors"
            )
            skipped += 1
            continue
        if record is None:
            skipped += 1
            continue
        records[record.product_id] = record
    return list(records.values()), skipped
