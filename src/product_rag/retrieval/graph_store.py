"""Entity graph store interfaces and concrete adapters.

Graph schema::

    (:Chunk {id})-[:MENTIONS]->(:Product {name, displayName})
    (:Product)-[:BELONGS_TO]->(:Category {name, displayName})
    (:Product)-[:HAS_INGREDIENT]->(:Ingredient {name, displayName})
    (:Product)-[:RELATED_TO_TOPIC]->(:Topic {name, displayName})

`name` is the trimmed, lowercased key; `displayName` keeps original casing.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from product_rag.types import CategoryCounts, EntityBag

logger = logging.getLogger(__name__)

ENTITY_TYPES: tuple[str, ...] = ("product", "category", "ingredient", "topic")


class GraphStore(Protocol):
    """Minimal graph store contract for enrichment, counting and ingest."""

    async def entities_for(self, chunk_id: str) -> EntityBag:
        """Entities linked to a chunk, grouped by type. `{}` when unknown."""

    async def aggregate_counts(self) -> CategoryCounts:
        """Total product count and per-category product counts."""

    async def link_entities(self, chunk_id: str, entities: Mapping[str, Iterable[str]]) -> None:
        """Attach typed entity names to a chunk."""

    async def close(self) -> None:
        """Release driver resources."""


def normalize_names(names: Iterable[str]) -> list[dict[str, str]]:
    """Turn display names into `{name, displayName}` node keys, dropping blanks."""

    seen: set[str] = set()
    nodes: list[dict[str, str]] = []
    for raw in names:
        display = str(raw).strip()
        key = display.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        nodes.append({"name": key, "displayName": display})
    return nodes


@dataclass(slots=True)
class _ProductNode:
    display_name: str
    categories: dict[str, str] = field(default_factory=dict)
    ingredients: dict[str, str] = field(default_factory=dict)
    topics: dict[str, str] = field(default_factory=dict)


class InMemoryGraphStore:
    """Dict-backed graph with the same shape as the Neo4j schema.

    Used for tests and offline runs.
    """

    def __init__(self) -> None:
        self._chunk_products: dict[str, dict[str, None]] = {}
        self._products: dict[str, _ProductNode] = {}
        self._categories: dict[str, str] = {}

    async def entities_for(self, chunk_id: str) -> EntityBag:
        product_keys = self._chunk_products.get(chunk_id)
        if not product_keys:
            return {}

        bag: EntityBag = {entity_type: [] for entity_type in ENTITY_TYPES}
        seen: dict[str, set[str]] = {entity_type: set() for entity_type in ENTITY_TYPES}

        def _add(entity_type: str, key: str, display: str) -> None:
            if key not in seen[entity_type]:
                seen[entity_type].add(key)
                bag[entity_type].append(display)

        for key in product_keys:
            node = self._products[key]
            _add("product", key, node.display_name)
            for cat_key, display in node.categories.items():
                _add("category", cat_key, display)
            for ing_key, display in node.ingredients.items():
                _add("ingredient", ing_key, display)
            for topic_key, display in node.topics.items():
                _add("topic", topic_key, display)
        return bag

    async def aggregate_counts(self) -> CategoryCounts:
        counts: dict[str, int] = {}
        for node in self._products.values():
            for cat_key in node.categories:
                counts[cat_key] = counts.get(cat_key, 0) + 1
        return CategoryCounts(total_products=len(self._products), categories=counts)

    async def link_entities(self, chunk_id: str, entities: Mapping[str, Iterable[str]]) -> None:
        products = normalize_names(entities.get("product", ()))
        categories = normalize_names(entities.get("category", ()))
        ingredients = normalize_names(entities.get("ingredient", ()))
        topics = normalize_names(entities.get("topic", ()))

        mentions = self._chunk_products.setdefault(chunk_id, {})
        for product in products:
            node = self._products.setdefault(
                product["name"], _ProductNode(display_name=product["displayName"])
            )
            mentions[product["name"]] = None
            for category in categories:
                display = self._categories.setdefault(category["name"], category["displayName"])
                node.categories.setdefault(category["name"], display)
            for ingredient in ingredients:
                node.ingredients.setdefault(ingredient["name"], ingredient["displayName"])
            for topic in topics:
                node.topics.setdefault(topic["name"], topic["displayName"])

    async def close(self) -> None:
        return None


_ENTITIES_QUERY = """
MATCH (c:Chunk {id: $id})
OPTIONAL MATCH (c)-[:MENTIONS]->(p:Product)
OPTIONAL MATCH (p)-[:BELONGS_TO]->(cat:Category)
OPTIONAL MATCH (p)-[:HAS_INGREDIENT]->(i:Ingredient)
OPTIONAL MATCH (p)-[:RELATED_TO_TOPIC]->(t:Topic)
RETURN
  collect(DISTINCT coalesce(p.displayName, p.name)) AS products,
  collect(DISTINCT coalesce(cat.displayName, cat.name)) AS categories,
  collect(DISTINCT coalesce(i.displayName, i.name)) AS ingredients,
  collect(DISTINCT coalesce(t.displayName, t.name)) AS topics
"""

_TOTAL_PRODUCTS_QUERY = "MATCH (p:Product) RETURN count(p) AS totalProducts"

_CATEGORY_COUNTS_QUERY = """
MATCH (c:Category)<-[:BELONGS_TO]-(p:Product)
RETURN toLower(c.name) AS category, count(DISTINCT p) AS count
"""

_LINK_QUERY = """
MERGE (c:Chunk {id: $id})
WITH c
UNWIND (CASE WHEN size($products) = 0 THEN [null] ELSE $products END) AS prod
WITH c, prod WHERE prod IS NOT NULL
MERGE (p:Product {name: prod.name})
  ON CREATE SET p.displayName = prod.displayName
MERGE (c)-[:MENTIONS]->(p)
FOREACH (entry IN $categories |
  MERGE (cat:Category {name: entry.name})
    ON CREATE SET cat.displayName = entry.displayName
  MERGE (p)-[:BELONGS_TO]->(cat)
)
FOREACH (entry IN $ingredients |
  MERGE (i:Ingredient {name: entry.name})
    ON CREATE SET i.displayName = entry.displayName
  MERGE (p)-[:HAS_INGREDIENT]->(i)
)
FOREACH (entry IN $topics |
  MERGE (t:Topic {name: entry.name})
    ON CREATE SET t.displayName = entry.displayName
  MERGE (p)-[:RELATED_TO_TOPIC]->(t)
)
"""


class Neo4jGraphStore:
    """Graph store backed by the Neo4j async driver.

    The driver owns its connection pool; build the store once at startup and
    call `close()` at shutdown.
    """

    def __init__(self, driver: Any, *, database: str | None = None) -> None:
        self._driver = driver
        self._database = database

    @classmethod
    def from_env(cls) -> Neo4jGraphStore | None:
        uri = os.getenv("NEO4J_URI")
        if not uri:
            return None

        from neo4j import AsyncGraphDatabase

        driver = AsyncGraphDatabase.driver(
            uri,
            auth=(os.getenv("NEO4J_USER", "neo4j"), os.getenv("NEO4J_PASSWORD", "")),
        )
        return cls(driver, database=os.getenv("NEO4J_DATABASE"))

    async def entities_for(self, chunk_id: str) -> EntityBag:
        async with self._driver.session(database=self._database) as session:
            result = await session.run(_ENTITIES_QUERY, id=chunk_id)
            record = await result.single()

        if record is None:
            return {}
        return {
            "product": list(record["products"] or []),
            "category": list(record["categories"] or []),
            "ingredient": list(record["ingredients"] or []),
            "topic": list(record["topics"] or []),
        }

    async def aggregate_counts(self) -> CategoryCounts:
        async with self._driver.session(database=self._database) as session:
            total_result = await session.run(_TOTAL_PRODUCTS_QUERY)
            total_record = await total_result.single()
            category_result = await session.run(_CATEGORY_COUNTS_QUERY)
            category_records = [record async for record in category_result]

        categories: dict[str, int] = {}
        for record in category_records:
            name = record["category"]
            count = record["count"]
            if name and isinstance(count, int):
                categories[name] = count

        total = int(total_record["totalProducts"]) if total_record is not None else 0
        return CategoryCounts(total_products=total, categories=categories)

    async def link_entities(self, chunk_id: str, entities: Mapping[str, Iterable[str]]) -> None:
        async with self._driver.session(database=self._database) as session:
            result = await session.run(
                _LINK_QUERY,
                id=chunk_id,
                products=normalize_names(entities.get("product", ())),
                categories=normalize_names(entities.get("category", ())),
                ingredients=normalize_names(entities.get("ingredient", ())),
                topics=normalize_names(entities.get("topic", ())),
            )
            await result.consume()
        logger.debug("linked entities for chunk %s", chunk_id)

    async def close(self) -> None:
        await self._driver.close()
