import pytest

from product_rag.config import IngestConfig
from product_rag.ingest.embedder import HashingEmbedder
from product_rag.ingest.entities import ExtractedEntities
from product_rag.ingest.service import CrawlExport, CrawledPage, IngestService
from product_rag.retrieval.graph_store import InMemoryGraphStore
from product_rag.retrieval.vector_store import FaissVectorIndex, InMemoryVectorIndex
from product_rag.types import ChunkRecord

_FAST = IngestConfig(retry_backoff_seconds=0.0)

_PAGES = [
    CrawledPage(
        url="https://example.com/kitkat",
        chunks=["KitKat is a crispy wafer bar.", "It comes in 4 fingers.", "KitKat is a crispy wafer bar."],
        scraped_at="2024-05-01T00:00:00Z",
    ),
    CrawledPage(url="https://example.com/boost", chunks=["BOOST Kids Essentials is a drink for kids."]),
    CrawledPage(url="https://example.com/empty", chunks=[]),
]


class _KeywordExtractor:
    async def extract(self, text: str) -> ExtractedEntities:
        if "KitKat" in text:
            return ExtractedEntities(products=["KitKat"], categories=["Chocolate Bars"])
        return ExtractedEntities()


class _SavingFaiss(FaissVectorIndex):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[ChunkRecord] = []
        self.saved: list[str] = []

    async def upsert(self, records: list[ChunkRecord]) -> None:
        self.records.extend(records)

    async def save_local(self, folder: str) -> None:
        self.saved.append(folder)


@pytest.mark.asyncio
async def test_ingest_indexes_pages_and_links_entities() -> None:
    index = InMemoryVectorIndex()
    graph = InMemoryGraphStore()
    service = IngestService(
        HashingEmbedder(), index, graph, extractor=_KeywordExtractor(), config=_FAST
    )

    report = await service.ingest(_PAGES)

    assert (report.pages, report.chunks, report.uploaded, report.entities_linked) == (3, 2, 2, 1)
    assert report.failed_batches == []
    assert report.saved_to is None

    query = await HashingEmbedder().embed_query("KitKat wafer")
    hits = await index.search(query, top_k=5)
    assert {hit.source_url for hit in hits} == {"https://example.com/kitkat", "https://example.com/boost"}
    kitkat = next(hit for hit in hits if hit.source_url == "https://example.com/kitkat")
    assert kitkat.content == "KitKat is a crispy wafer bar. It comes in 4 fingers."

    bag = await graph.entities_for(kitkat.chunk_id)
    assert bag["product"] == ["KitKat"]
    assert bag["category"] == ["Chocolate Bars"]
    counts = await graph.aggregate_counts()
    assert counts.total_products == 1


@pytest.mark.asyncio
async def test_ingest_without_extractor_still_indexes() -> None:
    index = InMemoryVectorIndex()
    graph = InMemoryGraphStore()
    service = IngestService(HashingEmbedder(), index, graph, config=_FAST)

    report = await service.ingest(_PAGES[:2])

    assert report.uploaded == 2
    assert report.entities_linked == 0
    assert (await graph.aggregate_counts()).total_products == 0


@pytest.mark.asyncio
async def test_ingest_with_no_text_uploads_nothing() -> None:
    index = _SavingFaiss()
    service = IngestService(
        HashingEmbedder(), index, InMemoryGraphStore(), config=_FAST, index_path="/tmp/never"
    )

    report = await service.ingest([CrawledPage(url="https://example.com/empty")])

    assert (report.chunks, report.uploaded) == (0, 0)
    assert index.records == []
    assert index.saved == []


@pytest.mark.asyncio
async def test_faiss_index_is_saved_after_upload(tmp_path) -> None:
    index = _SavingFaiss()
    target = str(tmp_path / "faiss")
    service = IngestService(
        HashingEmbedder(), index, InMemoryGraphStore(), config=_FAST, index_path=target
    )

    report = await service.ingest(_PAGES[:1])

    assert len(index.records) == 1
    assert index.records[0].scraped_at == "2024-05-01T00:00:00Z"
    assert index.saved == [target]
    assert report.saved_to == target


def test_crawl_export_attributes_loose_chunks_to_site_url() -> None:
    export = CrawlExport.model_validate(
        {
            "success": True,
            "textChunks": ["Welcome to our site."],
            "crawledPages": [
                {"url": "https://example.com/aero", "chunks": ["Aero is bubbly."], "scrapedAt": "2024-06-01"}
            ],
        }
    )

    pages = export.pages("https://example.com")

    assert [page.url for page in pages] == ["https://example.com", "https://example.com/aero"]
    assert pages[0].chunks == ["Welcome to our site."]
    assert pages[1].scraped_at == "2024-06-01"
