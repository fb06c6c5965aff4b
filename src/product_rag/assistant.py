"""Request orchestration: classify, route, and answer product questions."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from product_rag.answer.assembler import (
    AnswerAssembler,
    ExtractiveGenerator,
    Generator,
    LangChainGenerator,
)
from product_rag.config import AppConfig
from product_rag.counting.resolver import CountResolver
from product_rag.ingest.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from product_rag.ingest.entities import EntityExtractor
from product_rag.ingest.service import CrawledPage, IngestReport, IngestService
from product_rag.llm import create_chat_model, create_embeddings
from product_rag.nlu.intent import IntentClassifier, LLMSemanticClassifier, SemanticClassifier
from product_rag.obs.tracing import RequestTrace, Timer, TraceStore
from product_rag.retrieval.enricher import EntityEnricher
from product_rag.retrieval.fusion import HybridReranker
from product_rag.retrieval.graph_store import GraphStore, InMemoryGraphStore, Neo4jGraphStore
from product_rag.retrieval.pipeline import HybridSearchPipeline
from product_rag.retrieval.retriever import VectorRetriever
from product_rag.retrieval.vector_store import FaissVectorIndex, InMemoryVectorIndex, VectorIndex
from product_rag.stores.locator import (
    InMemoryStoreDataset,
    JsonStoreDataset,
    StoreDataset,
    StoreHit,
    StoreLocator,
    resolve_product,
)
from product_rag.types import CountIntent, CountResult, Intent, MainIntent, Match, StageTrace

logger = logging.getLogger(__name__)

NEED_LOCATION_ANSWER = (
    "I can help you find a nearby store. Please share your location so I can "
    "look up stores that carry it."
)
NEED_PRODUCT_ANSWER = (
    "Which product are you looking for? Tell me the brand (for example KitKat "
    "or Boost) and I'll look up nearby stores."
)


@dataclass(slots=True)
class SearchOutcome:
    intent: Intent
    matches: list[Match] = field(default_factory=list)
    count: CountResult | None = None
    trace_id: str | None = None


@dataclass(slots=True)
class AnswerOutcome:
    intent: Intent
    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    stores: list[StoreHit] | None = None
    count: CountResult | None = None
    trace_id: str | None = None


@dataclass(slots=True)
class StoreOutcome:
    stores: list[StoreHit]
    matched_product: str | None
    trace_id: str | None = None


@dataclass(slots=True)
class IngestOutcome:
    report: IngestReport
    trace_id: str | None = None


class ProductAssistant:
    """Routes each query to the count resolver, the store locator, or hybrid search.

    All collaborators are injected. The assistant holds no per-request state,
    so one instance serves concurrent requests.
    """

    def __init__(
        self,
        *,
        classifier: IntentClassifier,
        counter: CountResolver,
        pipeline: HybridSearchPipeline,
        locator: StoreLocator,
        assembler: AnswerAssembler,
        graph: GraphStore,
        ingestor: IngestService | None = None,
        trace_store: TraceStore | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.classifier = classifier
        self.counter = counter
        self.pipeline = pipeline
        self.locator = locator
        self.assembler = assembler
        self.graph = graph
        self.ingestor = ingestor
        self.trace_store = trace_store or TraceStore()
        self.config = config or AppConfig()

    async def search(
        self,
        query: str,
        *,
        top_k: int | None = None,
        count_intent: CountIntent | None = None,
    ) -> SearchOutcome:
        """Ranked matches, or a count result when the query asks "how many"."""

        limit = min(top_k or self.config.retrieval.search_top_k, self.config.retrieval.max_top_k)
        with self._traced("search", query) as trace:
            if count_intent is not None and count_intent is not CountIntent.SEARCH:
                intent = Intent(main=MainIntent.INFO, count=count_intent)
            else:
                intent = await self._classify(query, trace)
            trace.intent = intent.as_dict()

            if intent.is_count:
                count = await self._count(query, intent.count, trace)
                outcome = SearchOutcome(intent=intent, count=count)
            else:
                trace.route = "hybrid_search"
                matches = await self.pipeline.search(query, limit, observer=trace.add_stage)
                trace.result_count = len(matches)
                outcome = SearchOutcome(intent=intent, matches=matches)
        outcome.trace_id = trace.trace_id
        return outcome

    async def answer(
        self,
        query: str,
        *,
        lat: float | None = None,
        lng: float | None = None,
    ) -> AnswerOutcome:
        """Natural-language answer for any query type."""

        with self._traced("answer", query) as trace:
            intent = await self._classify(query, trace)
            trace.intent = intent.as_dict()

            if intent.is_count:
                count = await self._count(query, intent.count, trace)
                outcome = AnswerOutcome(intent=intent, answer=count.message, count=count)
            elif intent.main is MainIntent.STORE:
                outcome = await self._answer_store(query, intent, lat, lng, trace)
            else:
                trace.route = "hybrid_search"
                top_k = self.config.retrieval.answer_top_k
                matches = await self.pipeline.search(query, top_k, observer=trace.add_stage)
                with Timer() as timer:
                    result = await self.assembler.assemble(query, matches[:top_k])
                trace.add_stage(StageTrace(name="generation", latency_ms=timer.elapsed_ms))
                trace.result_count = len(result.sources)
                outcome = AnswerOutcome(intent=intent, answer=result.answer, sources=result.sources)
        outcome.trace_id = trace.trace_id
        return outcome

    async def stores(
        self,
        *,
        lat: float,
        lng: float,
        product: str | None = None,
        query: str | None = None,
        radius_km: float | None = None,
    ) -> StoreOutcome:
        """Stores near (lat, lng) selling `product`, or the brand named in `query`."""

        with self._traced("stores", product or query or "") as trace:
            trace.route = "store_locator"
            matched = product.strip() if product else resolve_product(query or "")
            if not matched:
                outcome = StoreOutcome(stores=[], matched_product=None)
            else:
                hits = await self._locate(lat, lng, matched, radius_km, trace)
                outcome = StoreOutcome(stores=hits, matched_product=matched)
            trace.result_count = len(outcome.stores)
        outcome.trace_id = trace.trace_id
        return outcome

    async def ingest(self, pages: list[CrawledPage]) -> IngestOutcome:
        """Index crawled pages into the same vector index and graph used for search."""

        if self.ingestor is None:
            raise RuntimeError("assistant was built without an ingest service")
        with self._traced("ingest", f"{len(pages)} pages") as trace:
            trace.route = "ingest"
            with Timer() as timer:
                report = await self.ingestor.ingest(pages)
            trace.add_stage(
                StageTrace(
                    name="ingest",
                    latency_ms=timer.elapsed_ms,
                    detail={"chunks": report.chunks, "entities_linked": report.entities_linked},
                )
            )
            trace.result_count = report.uploaded
            outcome = IngestOutcome(report=report)
        outcome.trace_id = trace.trace_id
        return outcome

    async def close(self) -> None:
        await self.graph.close()

    async def _answer_store(
        self,
        query: str,
        intent: Intent,
        lat: float | None,
        lng: float | None,
        trace: RequestTrace,
    ) -> AnswerOutcome:
        trace.route = "store_locator"
        if lat is None or lng is None:
            return AnswerOutcome(intent=intent, answer=NEED_LOCATION_ANSWER)
        product = resolve_product(query)
        if product is None:
            return AnswerOutcome(intent=intent, answer=NEED_PRODUCT_ANSWER)

        hits = await self._locate(lat, lng, product, None, trace)
        trace.result_count = len(hits)
        return AnswerOutcome(
            intent=intent,
            answer=_format_stores(product, hits, self.locator.config.default_radius_km),
            stores=hits,
        )

    async def _classify(self, query: str, trace: RequestTrace) -> Intent:
        with Timer() as timer:
            intent = await self.classifier.classify(query)
        trace.add_stage(
            StageTrace(name="classification", latency_ms=timer.elapsed_ms, detail=intent.as_dict())
        )
        return intent

    async def _count(self, query: str, count_intent: CountIntent, trace: RequestTrace) -> CountResult:
        trace.route = f"count_{count_intent.value}"
        with Timer() as timer:
            result = await self.counter.resolve(query, count_intent)
        trace.add_stage(
            StageTrace(
                name="count",
                latency_ms=timer.elapsed_ms,
                detail={"matched_categories": list(result.matched_categories)},
            )
        )
        trace.result_count = 1
        return result

    async def _locate(
        self,
        lat: float,
        lng: float,
        product: str,
        radius_km: float | None,
        trace: RequestTrace,
    ) -> list[StoreHit]:
        with Timer() as timer:
            hits = await self.locator.find(lat, lng, product, radius_km)
        trace.add_stage(
            StageTrace(name="store_lookup", latency_ms=timer.elapsed_ms, detail={"product": product})
        )
        return hits

    @contextmanager
    def _traced(self, endpoint: str, query: str) -> Iterator[RequestTrace]:
        trace = RequestTrace(endpoint=endpoint, query=query)
        start = time.perf_counter()
        try:
            yield trace
        except Exception as exc:
            trace.error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            self.trace_store.record(trace, latency_ms=(time.perf_counter() - start) * 1000.0)


def _format_stores(product: str, hits: list[StoreHit], radius_km: float) -> str:
    if not hits:
        return f"Sorry, I couldn't find any store selling {product} within {radius_km:.0f} km of you."

    lines = [f"Here are the nearest stores that carry {product}:", ""]
    for i, hit in enumerate(hits, start=1):
        location = ", ".join(part for part in (hit.address, hit.city) if part)
        lines.append(f"{i}. **{hit.name}** ({hit.distance_km:.1f} km)")
        if location:
            lines.append(f"   {location}")
    return "\n".join(lines)


def build_assistant(
    *,
    config: AppConfig | None = None,
    embedder: Embedder | None = None,
    index: VectorIndex | None = None,
    graph: GraphStore | None = None,
    generator: Generator | None = None,
    semantic: SemanticClassifier | None = None,
    dataset: StoreDataset | None = None,
    extractor: EntityExtractor | None = None,
    trace_store: TraceStore | None = None,
) -> ProductAssistant:
    """Wire the assistant once per process.

    Anything not passed in is built from the environment, falling back to the
    deterministic local implementations when a service is not configured.
    """

    config = config or AppConfig()
    timeouts = config.timeouts

    llm = None
    if generator is None or semantic is None or extractor is None:
        llm = create_chat_model()
    if generator is None:
        generator = LangChainGenerator(llm) if llm is not None else ExtractiveGenerator()
    if semantic is None and llm is not None:
        semantic = LLMSemanticClassifier(llm)
    if extractor is None and llm is not None:
        extractor = EntityExtractor(llm)

    if embedder is None:
        embeddings = create_embeddings()
        embedder = LangChainEmbedder(embeddings) if embeddings is not None else HashingEmbedder()
    index_path = None
    if index is None:
        index_path = os.getenv("FAISS_INDEX_PATH")
        if not index_path:
            index = InMemoryVectorIndex()
        elif os.path.exists(os.path.join(index_path, "index.faiss")):
            index = FaissVectorIndex.load_local(index_path)
        else:
            # Built by the first ingest run and saved to index_path.
            index = FaissVectorIndex()
    if graph is None:
        graph = Neo4jGraphStore.from_env() or InMemoryGraphStore()
    if dataset is None:
        store_path = os.getenv("STORE_DATA_PATH")
        dataset = JsonStoreDataset(store_path) if store_path else InMemoryStoreDataset([])

    logger.info(
        "assistant wired: generator=%s embedder=%s index=%s graph=%s extractor=%s",
        type(generator).__name__,
        type(embedder).__name__,
        type(index).__name__,
        type(graph).__name__,
        type(extractor).__name__ if extractor is not None else "disabled",
    )

    return ProductAssistant(
        classifier=IntentClassifier(semantic, timeout=timeouts.classification),
        counter=CountResolver(graph, timeout=timeouts.aggregate_counts),
        pipeline=HybridSearchPipeline(
            VectorRetriever(embedder, index, timeouts),
            EntityEnricher(graph, timeout=timeouts.enrichment),
            HybridReranker(config.scoring),
        ),
        locator=StoreLocator(dataset, config.stores, timeout=timeouts.store_data),
        assembler=AnswerAssembler(generator, timeout=timeouts.generation),
        graph=graph,
        ingestor=IngestService(
            embedder,
            index,
            graph,
            extractor=extractor,
            config=config.ingest,
            index_path=index_path,
        ),
        trace_store=trace_store,
        config=config,
    )
