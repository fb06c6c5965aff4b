"""Answers "how many products ..." questions from the graph's aggregate counts.

Category names in the graph are free text and inconsistently pluralized, so a
keyword matches a category when any of these hold:

* it equals the category name (accents folded on both sides),
* the category name is one of the keyword's synonyms,
* the category name starts or ends with the keyword as a whole word.

Counts of all matched categories are summed. A product filed under two
matched categories is counted twice; the figure is reported as approximate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping

from product_rag.errors import GraphUnavailable
from product_rag.nlu.keywords import tokenize
from product_rag.nlu.lexicon import CATEGORY_STOPWORDS, STOPWORDS, SYNONYMS, fold_accents
from product_rag.retrieval.graph_store import GraphStore
from product_rag.types import CategoryCounts, CountIntent, CountResult

logger = logging.getLogger(__name__)

MAX_LISTED_CATEGORIES = 3

_COUNT_STOPWORDS = STOPWORDS | CATEGORY_STOPWORDS


def category_keywords(query: str) -> list[str]:
    """Query tokens with both general and count-phrasing stopwords removed."""
    return tokenize(query, stopwords=_COUNT_STOPWORDS)


def _variants(keyword: str) -> set[str]:
    variants = {keyword}
    if keyword.endswith("s") and len(keyword) > 3:
        variants.add(keyword[:-1])
    else:
        variants.add(keyword + "s")
    return variants


def _category_matches(keyword: str, category: str, synonyms: Mapping[str, Iterable[str]]) -> bool:
    if category in {fold_accents(alt) for alt in synonyms.get(keyword, ())}:
        return True
    for form in _variants(keyword):
        if category == form:
            return True
        if category.startswith(form + " ") or category.endswith(" " + form):
            return True
    return False


def match_categories(
    keywords: Iterable[str],
    category_names: Iterable[str],
    synonyms: Mapping[str, Iterable[str]] = SYNONYMS,
) -> list[str]:
    """Category names matched by any keyword, in first-match order, without repeats."""

    names = [(name.lower(), fold_accents(name)) for name in category_names]
    matched: list[str] = []
    for keyword in keywords:
        folded_keyword = fold_accents(keyword)
        for name, folded in names:
            if name not in matched and _category_matches(folded_keyword, folded, synonyms):
                matched.append(name)
    return matched


def _format_labels(categories: list[str]) -> str:
    labels = ", ".join(f'"{name}"' for name in categories[:MAX_LISTED_CATEGORIES])
    if len(categories) > MAX_LISTED_CATEGORIES:
        labels += " and more"
    return labels


class CountResolver:
    """Resolves total and category count intents. Holds no per-request state."""

    def __init__(self, graph: GraphStore, *, timeout: float = 10.0) -> None:
        self.graph = graph
        self.timeout = timeout

    async def resolve(self, query: str, count_intent: CountIntent) -> CountResult:
        if count_intent is CountIntent.SEARCH:
            raise ValueError("count resolution requires a 'total' or 'category' intent")

        counts = await self._counts()
        if count_intent is CountIntent.TOTAL:
            return CountResult(
                count=counts.total_products,
                message=f"There are {counts.total_products} products listed in total.",
            )

        table = {name.lower(): count for name, count in counts.categories.items()}
        matched = match_categories(category_keywords(query), table.keys())
        if not matched:
            logger.info("no category matched %r; falling back to total count", query)
            return CountResult(
                count=counts.total_products,
                message=(
                    "Sorry, I couldn't find a matching product category. "
                    f"There are {counts.total_products} products listed in total."
                ),
            )

        total = sum(table[name] for name in matched)
        noun = "category" if len(matched) == 1 else "categories"
        logger.info("category count for %r: %d across %s", query, total, matched)
        return CountResult(
            count=total,
            message=f"There are about {total} products in the {_format_labels(matched)} {noun}.",
            matched_categories=tuple(matched),
        )

    async def _counts(self) -> CategoryCounts:
        try:
            return await asyncio.wait_for(self.graph.aggregate_counts(), self.timeout)
        except asyncio.TimeoutError as exc:
            raise GraphUnavailable(
                f"aggregate count query timed out after {self.timeout:.1f}s"
            ) from exc
        except Exception as exc:
            raise GraphUnavailable(f"aggregate count query failed: {exc}") from exc
