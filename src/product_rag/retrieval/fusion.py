"""Hybrid scoring: vector similarity blended with graph-entity overlap."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from product_rag.config import ScoringConfig
from product_rag.nlu.lexicon import fold_accents
from product_rag.types import CandidateChunk, EntityBag, Match


def combine_scores(base_score: float, entity_score: float, weight: float) -> float:
    """Final score; non-decreasing in both inputs for any `weight >= 0`."""
    return base_score + entity_score * weight


class EntityOverlapScorer:
    """Scores how strongly a chunk's entities overlap the query keywords.

    For every entity in every type bucket and every keyword:
    - exact match adds `exact_match_multiplier * type_weight`,
    - the entity containing the keyword adds `substring_match_multiplier * type_weight`.

    A keyword matching several entities counts once per entity.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def score(self, entities: EntityBag, keywords: frozenset[str] | set[str]) -> float:
        if not keywords or not entities:
            return 0.0

        folded_keywords = {fold_accents(keyword) for keyword in keywords}
        total = 0.0
        for entity_type, names in entities.items():
            weight = self.config.weight_for(entity_type)
            for name in names:
                normalized = fold_accents(name)
                for keyword in folded_keywords:
                    if normalized == keyword:
                        total += self.config.exact_match_multiplier * weight
                    elif keyword in normalized:
                        total += self.config.substring_match_multiplier * weight
        return total


class Reranker(ABC):
    """Reranker interface applied after graph enrichment."""

    @abstractmethod
    def rerank(
        self,
        candidates: Sequence[CandidateChunk],
        entity_bags: Sequence[EntityBag],
        keywords: frozenset[str],
    ) -> list[Match]:
        """Return matches in the final ranking order."""


class HybridReranker(Reranker):
    """Adds a weighted entity-overlap bonus to each base score and sorts.

    Equal final scores are ordered by base score, then by index order.
    """

    def __init__(
        self,
        config: ScoringConfig | None = None,
        scorer: EntityOverlapScorer | None = None,
    ) -> None:
        self.config = config or ScoringConfig()
        self.scorer = scorer or EntityOverlapScorer(self.config)

    def rerank(
        self,
        candidates: Sequence[CandidateChunk],
        entity_bags: Sequence[EntityBag],
        keywords: frozenset[str],
    ) -> list[Match]:
        if len(candidates) != len(entity_bags):
            raise ValueError("candidates and entity_bags must have the same length")

        matches: list[Match] = []
        for chunk, entities in zip(candidates, entity_bags, strict=True):
            entity_score = self.scorer.score(entities, keywords)
            matches.append(
                Match(
                    chunk=chunk,
                    entity_score=entity_score,
                    final_score=combine_scores(
                        chunk.score, entity_score, self.config.entity_weight
                    ),
                    entities=entities,
                )
            )
        by_base = sorted(matches, key=lambda match: match.score, reverse=True)
        return sorted(by_base, key=lambda match: match.final_score, reverse=True)
