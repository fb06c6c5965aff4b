"""Hybrid search: vector retrieval -> graph enrichment -> entity-aware rerank."""

from __future__ import annotations

from collections.abc import Callable

from product_rag.nlu.keywords import normalize_keywords
from product_rag.obs.tracing import Timer
from product_rag.retrieval.enricher import EntityEnricher
from product_rag.retrieval.fusion import Reranker
from product_rag.retrieval.retriever import VectorRetriever
from product_rag.types import Match, StageTrace

StageObserver = Callable[[StageTrace], None]


class HybridSearchPipeline:
    """Runs one informational query end to end and returns ranked matches.

    Enrichment for all candidates is joined before reranking starts; chunks
    whose lookup failed take part with an empty entity bag.
    """

    def __init__(
        self,
        retriever: VectorRetriever,
        enricher: EntityEnricher,
        reranker: Reranker,
    ) -> None:
        self.retriever = retriever
        self.enricher = enricher
        self.reranker = reranker

    async def search(
        self,
        query: str,
        top_k: int,
        *,
        observer: StageObserver | None = None,
    ) -> list[Match]:
        keywords = normalize_keywords(query)

        with Timer() as timer:
            candidates = await self.retriever.retrieve(query, top_k)
        _emit(observer, "vector_search", timer, candidates=len(candidates))
        if not candidates:
            return []

        with Timer() as timer:
            entity_bags = await self.enricher.enrich_many(candidates)
        _emit(
            observer,
            "entity_enrichment",
            timer,
            enriched=sum(1 for bag in entity_bags if bag),
        )

        with Timer() as timer:
            matches = self.reranker.rerank(candidates, entity_bags, keywords)
        _emit(observer, "rerank", timer, keywords=len(keywords))
        return matches


def _emit(observer: StageObserver | None, name: str, timer: Timer, **detail: object) -> None:
    if observer is not None:
        observer(StageTrace(name=name, latency_ms=timer.elapsed_ms, detail=dict(detail)))
