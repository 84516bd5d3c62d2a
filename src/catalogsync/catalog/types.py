"""Row types produced from fetched catalog records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class NutrientCategory(str, Enum):
    """Nutrition fact grouping."""

    GENERAL = "general"
    VITAMIN = "vitamin"


class TagType(str, Enum):
    """The two independently-typed tag collections on a record."""

    FILTER = "filter"
    POPULAR = "popular"


@dataclass
class Product:
    """Store-independent product data."""

    product_id: str
    name: str
    brand: Optional[str] = None
    description: Optional[str] = None
    pack_size: Optional[str] = None
    image_url: Optional[str] = None
    ingredients: Optional[str] = None
    allergens: Optional[str] = None
    is_sold_by_weight: bool = False
    is_alcohol: bool = False
    upc: Optional[str] = None
    category_path: Optional[str] = None
    tags_filter: List[str] = field(default_factory=list)
    tags_popular: List[str] = field(default_factory=list)


@dataclass
class StoreProduct:
    """Per-store pricing, location and availability."""

    product_id: str
    store_number: str
    price_in_store: Optional[float] = None
    price_in_store_loyalty: Optional[float] = None
    price_delivery: Optional[float] = None
    price_delivery_loyalty: Optional[float] = None
    unit_price: Optional[str] = None
    aisle: Optional[str] = None
    shelf: Optional[str] = None
    is_available: bool = False
    is_sold_at_store: bool = False
    last_updated: Optional[str] = None


@dataclass
class Serving:
    product_id: str
    serving_size: Optional[str] = None
    serving_size_unit: Optional[str] = None
    servings_per_container: Optional[str] = None
    household_measurement: Optional[str] = None


@dataclass
class NutritionFact:
    product_id: str
    nutrient: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    percent_daily: Optional[float] = None
    category: NutrientCategory = NutrientCategory.GENERAL


@dataclass
class CatalogRecord:
    """Everything derived from one fetched hit."""

    product: Product
    store_product: StoreProduct
    serving: Optional[Serving] = None
    nutrition: List[NutritionFact] = field(default_factory=list)

    @property
    def product_id(self) -> str:
        return self.product.product_id


@dataclass
class Store:
    """A physical store from the directory (or a placeholder)."""

    store_number: str
    name: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    street_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    has_pickup: bool = False
    has_delivery: bool = False
    has_ecommerce: bool = False
    last_updated: Optional[str] = None
    catalog_refreshed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
