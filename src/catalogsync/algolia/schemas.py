"""
Pydantic models for Algolia responses.

Hits carry many more fields than we store; unknown fields are kept
(extra="allow") so a raw record survives validation unchanged. Upstream
sends ``null`` for list fields it has no data for, so those are read as
empty lists rather than rejecting the record.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Scalar = Union[float, str]


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


class _Model(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Price(_Model):
    amount: Optional[float] = None
    unit_price: Optional[str] = Field(default=None, alias="unitPrice")


class Planogram(_Model):
    aisle: Optional[Union[str, int]] = None
    shelf: Optional[Union[str, int]] = None


class Categories(_Model):
    lvl0: Optional[str] = None
    lvl1: Optional[str] = None
    lvl2: Optional[str] = None
    lvl3: Optional[str] = None
    lvl4: Optional[str] = None

    def leaf(self) -> Optional[str]:
        """Deepest populated level; each level holds the full path."""
        for path in (self.lvl4, self.lvl3, self.lvl2, self.lvl1, self.lvl0):
            if path:
                return path
        return None


class Nutrient(_Model):
    name: str
    quantity: Optional[Scalar] = None
    unit_of_measure: Optional[str] = Field(default=None, alias="unitOfMeasure")
    percent_of_daily: Optional[Scalar] = Field(default=None, alias="percentOfDaily")


class NutritionEntry(_Model):
    general: List[Nutrient] = Field(default_factory=list)
    vitamins: List[Nutrient] = Field(default_factory=list)

    @field_validator("general", "vitamins", mode="before")
    @classmethod
    def null_as_empty(cls, value: Any) -> Any:
        return _none_to_list(value)


class ServingInfo(_Model):
    serving_size: Optional[Scalar] = Field(default=None, alias="servingSize")
    serving_size_uom: Optional[str] = Field(default=None, alias="servingSizeUom")
    servings_per_container: Optional[Scalar] = Field(
        default=None, alias="servingsPerContainer"
    )
    household_measurement: Optional[str] = Field(
        default=None, alias="householdMeasurement"
    )


class Nutrition(_Model):
    serving: Optional[ServingInfo] = None
    nutritions: List[NutritionEntry] = Field(default_factory=list)

    @field_validator("nutritions", mode="before")
    @classmethod
    def null_as_empty(cls, value: Any) -> Any:
        return _none_to_list(value)


class AlgoliaHit(_Model):
    """One raw catalog record."""

    object_id: Optional[str] = Field(default=None, alias="objectID")
    product_id: Optional[Union[str, int]] = Field(default=None, alias="productId")
    product_id_upper: Optional[Union[str, int]] = Field(
        default=None, alias="productID"
    )
    sku_id: Optional[Union[str, int]] = Field(default=None, alias="skuId")
    product_name: Optional[str] = Field(default=None, alias="productName")
    brand: Optional[str] = Field(default=None, alias="consumerBrandName")
    description: Optional[str] = Field(default=None, alias="productDescription")
    pack_size: Optional[str] = Field(default=None, alias="packSize")
    images: List[str] = Field(default_factory=list)
    ingredients: Optional[str] = None
    allergens: Optional[str] = Field(default=None, alias="allergensAndWarnings")
    is_sold_by_weight: Optional[bool] = Field(default=None, alias="isSoldByWeight")
    is_alcohol: Optional[bool] = Field(default=None, alias="isAlcoholItem")
    upc: List[Union[str, int]] = Field(default_factory=list)
    categories: Optional[Categories] = None
    filter_tags: List[str] = Field(default_factory=list, alias="filterTags")
    popular_tags: List[str] = Field(default_factory=list, alias="popularTags")

    price_in_store: Optional[Price] = Field(default=None, alias="price_inStore")
    price_in_store_loyalty: Optional[Price] = Field(
        default=None, alias="price_inStoreLoyalty"
    )
    price_delivery: Optional[Price] = Field(default=None, alias="price_delivery")
    price_delivery_loyalty: Optional[Price] = Field(
        default=None, alias="price_deliveryLoyalty"
    )
    planogram: Optional[Planogram] = None
    is_available: Optional[bool] = Field(default=None, alias="isAvailable")
    is_sold_at_store: Optional[bool] = Field(default=None, alias="isSoldAtStore")
    store_number: Optional[Union[str, int]] = Field(default=None, alias="storeNumber")
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")

    nutrition: Optional[Nutrition] = None

    @field_validator("images", "upc", "filter_tags", "popular_tags", mode="before")
    @classmethod
    def null_as_empty(cls, value: Any) -> Any:
        return _none_to_list(value)

    def resolved_product_id(self) -> Optional[str]:
        """First available identifier, falling back to objectID."""
        for value in (
            self.product_id,
            self.product_id_upper,
            self.sku_id,
            self.object_id,
        ):
            if value not in (None, ""):
                return str(value)
        return None


class SearchResult(_Model):
    hits: List[Dict[str, Any]] = Field(default_factory=list)
    nb_hits: int = Field(default=0, alias="nbHits")
    page: int = 0
    nb_pages: Optional[int] = Field(default=None, alias="nbPages")
    hits_per_page: Optional[int] = Field(default=None, alias="hitsPerPage")
    facets: Dict[str, Dict[str, int]] = Field(default_factory=dict)

    @field_validator("facets", mode="before")
    @classmethod
    def null_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class SearchResponse(_Model):
    results: List[SearchResult] = Field(default_factory=list)
