from product_rag.obs.tracing import RequestTrace, TraceStore
from product_rag.types import StageTrace


def _trace(route: str, error: str | None = None) -> RequestTrace:
    trace = RequestTrace(endpoint="search", query="kitkat", route=route, error=error)
    trace.add_stage(StageTrace(name="vector_search", latency_ms=1.5))
    return trace


def test_record_assigns_trace_id_and_keeps_stages() -> None:
    store = TraceStore()
    trace = _trace("hybrid_search")

    record = store.record(trace, latency_ms=12.0)

    assert trace.trace_id == record.trace_id
    assert store.get(record.trace_id).stages[0].name == "vector_search"
    assert record.success


def test_store_evicts_oldest_records() -> None:
    store = TraceStore(max_records=2)
    ids = [store.record(_trace("hybrid_search"), latency_ms=1.0).trace_id for _ in range(3)]

    assert [record.trace_id for record in store.list_recent()] == ids[1:]
    assert store.list_recent(limit=0) == []


def test_summary_counts_failures_and_routes() -> None:
    store = TraceStore()
    store.record(_trace("hybrid_search"), latency_ms=10.0)
    store.record(_trace("count_total"), latency_ms=20.0)
    store.record(_trace("hybrid_search", error="EmbeddingUnavailable: down"), latency_ms=30.0)

    summary = store.summary()

    assert summary["total_requests"] == 3
    assert summary["failed_requests"] == 1
    assert summary["avg_latency_ms"] == 20.0
    assert summary["routes"] == {"hybrid_search": 2, "count_total": 1}
