import asyncio

from fastapi.testclient import TestClient

from product_rag.answer.assembler import ExtractiveGenerator
from product_rag.api.main import create_app
from product_rag.assistant import build_assistant
from product_rag.ingest.embedder import Embedder, HashingEmbedder
from product_rag.ingest.entities import ExtractedEntities
from product_rag.ingest.pipeline import ChunkUploader
from product_rag.nlu.intent import NullSemanticClassifier
from product_rag.retrieval.graph_store import InMemoryGraphStore
from product_rag.retrieval.vector_store import InMemoryVectorIndex
from product_rag.stores.locator import InMemoryStoreDataset, Store, StoreProduct
from product_rag.types import ChunkInput

USER = {"lat": 43.6532, "lng": -79.3832}


class _DownEmbedder(Embedder):
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise ConnectionError("embedding endpoint unreachable")

    async def embed_query(self, text: str) -> list[float]:
        raise ConnectionError("embedding endpoint unreachable")


async def _seed(index: InMemoryVectorIndex, graph: InMemoryGraphStore) -> None:
    chunks = [
        ChunkInput(
            content="BOOST Kids Essentials is a nutritional drink made for kids.",
            source_url="https://example.com/boost",
            chunk_index=0,
            scraped_at="2024-05-01T00:00:00Z",
        ),
        ChunkInput(
            content="KitKat is a crispy wafer bar covered in milk chocolate.",
            source_url="https://example.com/kitkat",
            chunk_index=0,
            scraped_at="2024-05-01T00:00:00Z",
        ),
    ]
    report = await ChunkUploader(HashingEmbedder(), index).upload(chunks)
    await graph.link_entities(
        report.chunk_ids[0], {"product": ["BOOST Kids Essentials"], "category": ["Nutritional Drinks"]}
    )
    await graph.link_entities(report.chunk_ids[1], {"product": ["KitKat"], "category": ["Chocolate Bars"]})


class _AeroExtractor:
    async def extract(self, text: str) -> ExtractedEntities:
        if "Aero" in text:
            return ExtractedEntities(products=["Aero"], categories=["Chocolate Bars"])
        return ExtractedEntities()


def _client(embedder: Embedder | None = None) -> TestClient:
    index = InMemoryVectorIndex()
    graph = InMemoryGraphStore()
    asyncio.run(_seed(index, graph))
    stores = [
        Store(
            name="Queen St Grocer",
            lat=43.6700,
            lng=-79.3900,
            products=[StoreProduct(name="KitKat 4 Finger")],
        ),
        Store(
            name="King St Market",
            lat=43.6540,
            lng=-79.3840,
            products=[StoreProduct(name="Kit Kat Chunky")],
        ),
    ]
    assistant = build_assistant(
        embedder=embedder or HashingEmbedder(),
        index=index,
        graph=graph,
        generator=ExtractiveGenerator(),
        semantic=NullSemanticClassifier(),
        dataset=InMemoryStoreDataset(stores),
    )
    return TestClient(create_app(assistant))


def test_search_answer_trace_metrics() -> None:
    with _client() as client:
        search_resp = client.post("/search", json={"query": "Is Boost good for kids?", "top": 2})
        assert search_resp.status_code == 200
        payload = search_resp.json()
        assert payload["success"] is True
        assert len(payload["matches"]) == 2
        top = payload["matches"][0]
        assert top["sourceUrl"] == "https://example.com/boost"
        assert top["finalScore"] >= top["score"]
        assert top["entities"]["product"] == ["BOOST Kids Essentials"]

        answer_resp = client.post("/answer", json={"query": "Is Boost good for kids?"})
        assert answer_resp.status_code == 200
        answer = answer_resp.json()
        assert answer["intent"] == {"mainIntent": "info", "countIntent": "search"}
        assert answer["sources"]
        assert "stores" not in answer

        trace_resp = client.get(f"/traces/{payload['traceId']}")
        assert trace_resp.status_code == 200
        assert trace_resp.json()["route"] == "hybrid_search"

        metrics_resp = client.get("/metrics")
        assert metrics_resp.json()["total_requests"] == 2


def test_search_count_shape() -> None:
    with _client() as client:
        classified = client.post("/search", json={"query": "How many Nestlé products are listed?"})
        forced = client.post("/search", json={"query": "kitkat", "countIntent": "category"})

    assert classified.status_code == 200
    assert classified.json()["type"] == "count"
    assert classified.json()["count"] == 2
    assert "2" in classified.json()["message"]
    assert "matches" not in classified.json()
    assert forced.json()["type"] == "count"


def test_answer_store_route_returns_sorted_stores() -> None:
    with _client() as client:
        resp = client.post("/answer", json={"query": "Where can I buy KitKat near me?", **USER})

    body = resp.json()
    assert resp.status_code == 200
    assert body["intent"]["mainIntent"] == "store"
    distances = [store["distanceKm"] for store in body["stores"]]
    assert distances == sorted(distances)
    assert [store["name"] for store in body["stores"]] == ["King St Market", "Queen St Grocer"]


def test_stores_endpoint() -> None:
    with _client() as client:
        by_query = client.post("/stores", json={"query": "kit kat please", **USER})
        by_product = client.post(
            "/stores", json={"product": "KitKat", "radiusKm": 1.0, **USER}
        )
        missing = client.post("/stores", json=USER)

    assert by_query.json()["matchedProduct"] == "kitkat"
    assert len(by_query.json()["stores"]) == 2
    assert [store["name"] for store in by_product.json()["stores"]] == ["King St Market"]
    assert missing.status_code == 400
    assert missing.json()["success"] is False


def test_invalid_requests_get_400_envelope() -> None:
    with _client() as client:
        blank = client.post("/search", json={"query": "   "})
        no_query = client.post("/answer", json={})
        bad_top = client.post("/search", json={"query": "kitkat", "top": 0})
        bad_intent = client.post("/search", json={"query": "kitkat", "countIntent": "search"})

    for resp in (blank, no_query, bad_top, bad_intent):
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["error"]


def test_unavailable_service_gets_500_envelope() -> None:
    with _client(embedder=_DownEmbedder()) as client:
        resp = client.post("/search", json={"query": "Is Boost good for kids?"})
        metrics = client.get("/metrics").json()

    assert resp.status_code == 500
    assert resp.json() == {
        "success": False,
        "error": "embedding failed: embedding endpoint unreachable",
    }
    assert metrics["failed_requests"] == 1


def test_unknown_trace_is_404() -> None:
    with _client() as client:
        resp = client.get("/traces/does-not-exist")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Trace not found: does-not-exist"}


def test_ingest_makes_crawled_pages_searchable() -> None:
    assistant = build_assistant(
        embedder=HashingEmbedder(),
        index=InMemoryVectorIndex(),
        graph=InMemoryGraphStore(),
        generator=ExtractiveGenerator(),
        semantic=NullSemanticClassifier(),
        dataset=InMemoryStoreDataset([]),
        extractor=_AeroExtractor(),
    )
    export = {
        "success": True,
        "crawledPages": [
            {
                "url": "https://example.com/aero",
                "chunks": ["Aero is a bubbly milk chocolate bar.", "Aero melts in your mouth."],
                "scrapedAt": "2024-05-01T00:00:00Z",
            }
        ],
    }

    with TestClient(create_app(assistant)) as client:
        before = client.post("/search", json={"query": "Is Aero bubbly?"})
        ingest_resp = client.post("/ingest", json=export)
        after = client.post("/search", json={"query": "Is Aero bubbly?", "top": 1})
        trace = client.get(f"/traces/{ingest_resp.json()['traceId']}")

    assert before.json()["matches"] == []
    assert ingest_resp.status_code == 200
    body = ingest_resp.json()
    assert body["success"] is True
    assert (body["pages"], body["chunksCreated"], body["uploaded"], body["entitiesLinked"]) == (1, 1, 1, 1)

    top = after.json()["matches"][0]
    assert top["sourceUrl"] == "https://example.com/aero"
    assert top["content"] == "Aero is a bubbly milk chocolate bar. Aero melts in your mouth."
    assert top["entities"]["product"] == ["Aero"]
    assert top["entityScore"] > 0
    assert trace.json()["route"] == "ingest"


def test_ingest_rejects_failed_or_empty_exports() -> None:
    with _client() as client:
        failed = client.post("/ingest", json={"success": False, "crawledPages": []})
        empty = client.post("/ingest", json={"crawledPages": []})
        no_url = client.post("/ingest", json={"crawledPages": [{"chunks": ["text"]}]})

    for resp in (failed, empty, no_url):
        assert resp.status_code == 400
        assert resp.json()["success"] is False
