import pytest
from langchain_core.messages import AIMessage

from product_rag.config import IngestConfig
from product_rag.ingest.embedder import Embedder, HashingEmbedder
from product_rag.ingest.entities import EntityExtractor, ExtractedEntities, link_chunk_entities
from product_rag.ingest.pipeline import ChunkUploader
from product_rag.retrieval.graph_store import InMemoryGraphStore
from product_rag.retrieval.vector_store import InMemoryVectorIndex
from product_rag.types import ChunkInput, ChunkRecord


class _FlakyIndex(InMemoryVectorIndex):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def upsert(self, records: list[ChunkRecord]) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("vector store busy")
        await super().upsert(records)


class _PickyEmbedder(Embedder):
    """Fails on any text mentioning 'poison'."""

    def __init__(self) -> None:
        self._inner = HashingEmbedder()

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_query(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        if "poison" in text:
            raise RuntimeError("content filtered")
        return await self._inner.embed_query(text)


class _ReplyLLM:
    def __init__(self, replies: dict[str, str]) -> None:
        self.replies = replies

    async def ainvoke(self, messages: list) -> AIMessage:
        text = messages[-1].content
        reply = self.replies[text]
        if reply == "raise":
            raise RuntimeError("model overloaded")
        return AIMessage(content=reply)


def _inputs(*texts: str) -> list[ChunkInput]:
    return [
        ChunkInput(
            content=text,
            source_url="https://example.com/boost",
            chunk_index=i,
            scraped_at="2024-05-01T00:00:00Z",
        )
        for i, text in enumerate(texts)
    ]


_FAST = IngestConfig(batch_size=2, retry_limit=2, retry_backoff_seconds=0.0)


@pytest.mark.asyncio
async def test_uploader_batches_and_skips_unembeddable_chunks() -> None:
    index = InMemoryVectorIndex()
    uploader = ChunkUploader(_PickyEmbedder(), index, _FAST)

    report = await uploader.upload(_inputs("Boost for kids", "poison text", "Aero bubbles", "KitKat"))

    assert report.embedded == 3
    assert report.skipped == 1
    assert report.uploaded == 3
    assert report.failed_batches == []
    assert len(report.chunk_ids) == len(set(report.chunk_ids)) == 3
    assert len(index) == 3


@pytest.mark.asyncio
async def test_uploader_retries_transient_batch_failures() -> None:
    index = _FlakyIndex(failures=2)

    report = await ChunkUploader(HashingEmbedder(), index, _FAST).upload(_inputs("Boost", "Aero"))

    assert index.attempts == 3
    assert report.uploaded == 2
    assert report.failed_batches == []


@pytest.mark.asyncio
async def test_uploader_reports_batches_that_exhaust_retries() -> None:
    index = _FlakyIndex(failures=3)

    report = await ChunkUploader(HashingEmbedder(), index, _FAST).upload(
        _inputs("Boost", "Aero", "KitKat")
    )

    assert report.failed_batches == [1]
    assert report.uploaded == 1
    assert len(index) == 1


@pytest.mark.asyncio
async def test_extractor_parses_fenced_json() -> None:
    llm = _ReplyLLM(
        {"Boost text": '```json\n{"products": ["BOOST Kids"], "topics": ["nutrition"]}\n```'}
    )

    entities = await EntityExtractor(llm).extract("Boost text")

    assert entities.products == ["BOOST Kids"]
    assert entities.to_bag()["topic"] == ["nutrition"]
    assert entities.categories == []


@pytest.mark.asyncio
async def test_extractor_returns_empty_on_malformed_output() -> None:
    entities = await EntityExtractor(_ReplyLLM({"x": "I found some products!"})).extract("x")

    assert entities == ExtractedEntities()
    assert entities.is_empty()


@pytest.mark.asyncio
async def test_link_chunk_entities_skips_failed_and_empty_extractions() -> None:
    llm = _ReplyLLM(
        {
            "boost": '{"products": ["BOOST Kids"], "categories": ["Nutritional Drinks"]}',
            "empty": '{"products": []}',
            "broken": "raise",
        }
    )
    graph = InMemoryGraphStore()

    linked = await link_chunk_entities(
        EntityExtractor(llm),
        graph,
        [("c1", "boost"), ("c2", "empty"), ("c3", "broken")],
        batch_size=2,
    )

    assert linked == 1
    bag = await graph.entities_for("c1")
    assert bag["product"] == ["BOOST Kids"]
    assert bag["category"] == ["Nutritional Drinks"]
    assert await graph.entities_for("c2") == {}
