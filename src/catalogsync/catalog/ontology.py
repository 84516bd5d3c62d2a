"""
Category tree and tag frequency aggregation.

Counts are distinct products per node/tag. The builder holds one entry per
product id, so re-adding a product replaces what it contributed before, and
``rebuild`` recomputes everything from the products table rather than
incrementing stored counts.
"""

from __future__ import annotations

import sqlite3
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..db.products import iter_products
from .types import Product, TagType

PATH_SEPARATOR = " > "


@dataclass(frozen=True)
class CategoryNode:
    path: str
    name: str
    level: int
    product_count: int


@dataclass(frozen=True)
class TagEntry:
    name: str
    type: TagType
    product_count: int


def category_prefixes(path: Optional[str]) -> List[str]:
    """Every ancestor path of ``path``, root first, including itself.

    >>> category_prefixes("Dairy > Milk > Whole Milk")
    ['Dairy', 'Dairy > Milk', 'Dairy > Milk > Whole Milk']
    """
    if not path:
        return []
    segments = [s.strip() for s in path.split(">")]
    segments = [s for s in segments if s]
    return [PATH_SEPARATOR.join(segments[: i + 1]) for i in range(len(segments))]


class OntologyBuilder:
    """Distinct-product counts per category prefix and per (tag, type)."""

    def __init__(self):
        self._paths: Dict[str, Tuple[str, ...]] = {}
        self._tags: Dict[str, Tuple[Tuple[str, TagType], ...]] = {}

    def add(
        self,
        product_id: str,
        category_path: Optional[str] = None,
        filter_tags: Sequence[str] = (),
        popular_tags: Sequence[str] = (),
    ) -> None:
        """Record (or replace) one product's categories and tags."""
        self.remove(product_id)

        prefixes = tuple(category_prefixes(category_path))
        if prefixes:
            self._paths[product_id] = prefixes

        tags = {(name, TagType.FILTER) for name in filter_tags if name}
        tags |= {(name, TagType.POPULAR) for name in popular_tags if name}
        if tags:
            self._tags[product_id] = tuple(sorted(tags))

    def add_product(self, product: Product) -> None:
        self.add(
            product.product_id,
            product.category_path,
            product.tags_filter,
            product.tags_popular,
        )

    def add_products(self, products: Iterable[Product]) -> None:
        for product in products:
            self.add_product(product)

    def remove(self, product_id: str) -> None:
        self._paths.pop(product_id, None)
        self._tags.pop(product_id, None)

    @property
    def categories(self) -> List[CategoryNode]:
        counts: Counter = Counter()
        for prefixes in self._paths.values():
            counts.update(prefixes)
        nodes = []
        for path, count in counts.items():
            segments = path.split(PATH_SEPARATOR)
            nodes.append(
                CategoryNode(
                    path=path,
                    name=segments[-1],
                    level=len(segments) - 1,
                    product_count=count,
                )
            )
        return sorted(nodes, key=lambda n: (n.level, n.path))

    @property
    def tags(self) -> List[TagEntry]:
        counts: Counter = Counter()
        for tags in self._tags.values():
            counts.update(tags)
        entries = [
            TagEntry(name=name, type=tag_type, product_count=count)
            for (name, tag_type), count in counts.items()
        ]
        return sorted(entries, key=lambda t: (t.type.value, t.name))

    def category(self, path: str) -> Optional[CategoryNode]:
        for node in self.categories:
            if node.path == path:
                return node
        return None

    def tag(self, name: str, tag_type: TagType) -> Optional[TagEntry]:
        for entry in self.tags:
            if entry.name == name and entry.type == tag_type:
                return entry
        return None

    @classmethod
    def from_products(cls, conn: sqlite3.Connection) -> "OntologyBuilder":
        builder = cls()
        builder.add_products(list(iter_products(conn)))
        return builder

    def write(self, conn: sqlite3.Connection) -> Tuple[int, int]:
        """Replace the categories and tags tables with this builder's counts.

        Call inside a transaction. Returns (category_count, tag_count).
        """
        categories = self.categories
        tags = self.tags
        conn.execute("DELETE FROM categories")
        conn.execute("DELETE FROM tags")
        conn.executemany(
            "INSERT INTO categories (path, name, level, product_count) "
            "VALUES (?, ?, ?, ?)",
            [(n.path, n.name, n.level, n.product_count) for n in categories],
        )
        conn.executemany(
            "INSERT INTO tags (name, type, product_count) VALUES (?, ?, ?)",
            [(t.name, t.type.value, t.product_count) for t in tags],
        )
        return len(categories), len(tags)


def rebuild(conn: sqlite3.Connection) -> Tuple[int, int]:
    """Recompute the ontology from current products and store it."""
    return OntologyBuilder.from_products(conn).write(conn)


def read_categories(conn: sqlite3.Connection) -> List[CategoryNode]:
    rows = conn.execute(
        "SELECT path, name, level, product_count FROM categories "
        "ORDER BY level, path"
    ).fetchall()
    return [CategoryNode(*row) for row in rows]


def read_tags(conn: sqlite3.Connection) -> List[TagEntry]:
    rows = conn.execute(
        "SELECT name, type, product_count FROM tags ORDER BY type, name"
    ).fetchall()
    return [TagEntry(row[0], TagType(row[1]), row[2]) for row in rows]
