"""Shared domain models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

EntityBag = dict[str, list[str]]
"""Entity display names grouped by type (product, category, ingredient, topic)."""


class MainIntent(str, Enum):
    STORE = "store"
    INFO = "info"


class CountIntent(str, Enum):
    TOTAL = "total"
    CATEGORY = "category"
    SEARCH = "search"


@dataclass(frozen=True, slots=True)
class Intent:
    """Resolved purpose of a query."""

    main: MainIntent
    count: CountIntent

    DEFAULT: ClassVar[Intent]

    @property
    def is_count(self) -> bool:
        """Count intents are answered by the count resolver regardless of `main`."""
        return self.count is not CountIntent.SEARCH

    def as_dict(self) -> dict[str, str]:
        return {"mainIntent": self.main.value, "countIntent": self.count.value}


Intent.DEFAULT = Intent(main=MainIntent.INFO, count=CountIntent.SEARCH)


@dataclass(frozen=True, slots=True)
class ChunkInput:
    """A crawled text chunk waiting to be embedded and indexed."""

    content: str
    source_url: str
    chunk_index: int
    scraped_at: str


@dataclass(frozen=True, slots=True)
class ChunkRecord:
    """An embedded chunk as stored in the vector index."""

    chunk_id: str
    content: str
    source_url: str
    chunk_index: int
    scraped_at: str
    vector: list[float]


@dataclass(frozen=True, slots=True)
class CandidateChunk:
    """A chunk returned by the vector index with its engine-provided score."""

    chunk_id: str
    content: str
    source_url: str
    chunk_index: int
    score: float


@dataclass(frozen=True, slots=True)
class Match:
    """A candidate chunk after graph enrichment and hybrid scoring."""

    chunk: CandidateChunk
    entity_score: float
    final_score: float
    entities: EntityBag = field(default_factory=dict)

    @property
    def score(self) -> float:
        return self.chunk.score

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.chunk.chunk_id,
            "content": self.chunk.content,
            "sourceUrl": self.chunk.source_url,
            "chunkIndex": self.chunk.chunk_index,
            "score": self.chunk.score,
            "entityScore": self.entity_score,
            "finalScore": self.final_score,
            "entities": self.entities,
        }


@dataclass(frozen=True, slots=True)
class CategoryCounts:
    """Aggregate product counts from the entity graph."""

    total_products: int
    categories: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CountResult:
    count: int
    message: str
    matched_categories: tuple[str, ...] = ()


@dataclass(slots=True)
class StageTrace:
    """Trace record for one awaited stage of a request."""

    name: str
    latency_ms: float
    detail: dict[str, Any] = field(default_factory=dict)
