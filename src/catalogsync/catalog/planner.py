"""
Query planning for capped search results.

Algolia returns at most ``max_hits_per_query`` records for one query no matter
how many pages are requested, and a store's catalog is larger than that. The
planner runs a count-only query with ``hitsPerPage=0`` and facet counts and, while it is
over the cap, splits it on a facet: one child per facet value plus a ``NOT``
remainder for records carrying none of the values. The resulting leaf queries
partition the store's catalog and are each small enough to fetch in full.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

from ..algolia.client import AlgoliaClient

logger = logging.getLogger(__name__)

MAX_HITS_PER_QUERY = 1000
MAX_COUNT_QUERIES = 500

# Low-cardinality attributes that split cleanly, tried first
PREFERRED_ATTRIBUTES = (
    "categories.lvl0",
    "categories.lvl1",
    "categories.lvl2",
    "categories.lvl3",
    "ebtEligible",
    "isAvailable",
    "isLoyalty",
    "isAlcoholItem",
    "hasOffers",
)

# Single-valued per store, truncated facet lists, or unstable as filters
SKIP_ATTRIBUTES = frozenset(
    {
        "storeNumber",
        "fulfilmentType",
        "digitalCouponsOfferIds",
        "category.key",
        "category.seo",
        "categoryPageId",
        "filterTags",
        "popularTags",
        "keywords",
        "discountType",
        "maxQuantity",
    }
)

_SPECIAL = set(' "\'():,')


def quote_value(value: str) -> str:
    """Facet value as it must appear in a filter expression."""
    if not any(ch in _SPECIAL for ch in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class SplitTask:
    """One query in the plan; ``filter`` is ANDed onto the store scope."""

    name: str
    filter: Optional[str] = None

    def narrow(self, name: str, clause: str) -> SplitTask:
        combined = f"{self.filter} AND {clause}" if self.filter else clause
        return SplitTask(name=name, filter=combined)


@dataclass
class FacetSplit:
    attribute: str
    values: Dict[str, int]


@dataclass
class QueryPlan:
    """Leaf queries for one store plus the store's total match count."""

    tasks: List[SplitTask] = field(default_factory=list)
    expected_hits: int = 0
    count_queries: int = 0


def _try_attribute(
    facets: Dict[str, Dict[str, int]],
    attribute: str,
    count: int,
    max_values: int,
) -> Optional[FacetSplit]:
    values = facets.get(attribute)
    if not values or len(values) < 2 or len(values) > max_values:
        return None
    # A bucket holding everything would not make progress
    if max(values.values()) >= count:
        return None
    return FacetSplit(attribute=attribute, values=dict(values))


def find_best_split(
    facets: Dict[str, Dict[str, int]], count: int
) -> Optional[FacetSplit]:
    """Pick the facet to split a query of ``count`` hits on.

    Preferred attributes are tried with a tight cardinality cap, then with a
    loose one; after that any other facet, fewest values first.
    """
    for max_values in (30, 1000):
        for attribute in PREFERRED_ATTRIBUTES:
            split = _try_attribute(facets, attribute, count, max_values)
            if split:
                return split

    remaining = sorted(
        (
            a
            for a in facets
            if a not in SKIP_ATTRIBUTES and a not in PREFERRED_ATTRIBUTES
        ),
        key=lambda a: len(facets[a]),
    )
    for attribute in remaining:
        split = _try_attribute(facets, attribute, count, 1000)
        if split:
            return split
    return None


def split_task(task: SplitTask, split: FacetSplit, count: int) -> List[SplitTask]:
    """Children covering ``task``: one per value, plus the uncovered remainder."""
    children = [
        task.narrow(
            f"{split.attribute}:{value}",
            f"{split.attribute}:{quote_value(value)}",
        )
        for value in split.values
    ]
    if sum(split.values.values()) < count:
        clauses = " AND ".join(
            f"NOT {split.attribute}:{quote_value(value)}" for value in split.values
        )
        children.append(task.narrow(f"NOT {split.attribute}", clauses))
    return children


class QueryPlanner:
    """Breadth-first facet splitting for one store at a time."""

    def __init__(
        self,
        client: AlgoliaClient,
        max_hits: int = MAX_HITS_PER_QUERY,
        max_count_queries: int = MAX_COUNT_QUERIES,
    ):
        self.client = client
        self.max_hits = max_hits
        self.max_count_queries = max_count_queries

    async def plan(self, api_key: str, app_id: str, store_number: str) -> QueryPlan:
        plan = QueryPlan()
        pending: Deque[SplitTask] = deque([SplitTask(name="root")])

        while pending:
            task = pending.popleft()
            if plan.count_queries >= self.max_count_queries:
                logger.warning(
                    f"Store {store_number}: limit of {self.max_count_queries} count "
                    f"queries reached, fetching {len(pending) + 1} unsplit"
                )
                plan.tasks.append(task)
                plan.tasks.extend(pending)
                break

            result = await self.client.search_page(
                api_key,
                app_id,
                store_number,
                filters=task.filter,
                hits_per_page=0,
                facets=["*"],
            )
            plan.count_queries += 1
            count = result.total_hits
            if task.filter is None:
                plan.expected_hits = count

            if count == 0:
                continue
            if count <= self.max_hits:
                plan.tasks.append(task)
                continue

            split = find_best_split(result.facets, count)
            if split is None:
                logger.warning(
                    f"Store {store_number}: no facet splits {task.name} "
                    f"({count} hits), results will be capped"
                )
                plan.tasks.append(task)
                continue
            logger.debug(
                f"Store {store_number}: splitting {task.name} ({count} hits) "
                f"on {split.attribute} into {len(split.values)} values"
            )
            pending.extend(split_task(task, split, count))

        logger.info(
            f"Store {store_number}: planned {len(plan.tasks)} queries for "
            f"{plan.expected_hits} records in {plan.count_queries} count queries"
        )
        return plan
