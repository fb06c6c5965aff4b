"""Request tracing and latency summaries."""

from __future__ import annotations

import time
import uuid
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from product_rag.types import StageTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    endpoint: str
    query: str
    route: str
    intent: dict[str, str] | None
    result_count: int
    stages: list[StageTrace]
    latency_ms: float
    success: bool = True
    error: str | None = None


@dataclass(slots=True)
class RequestTrace:
    """Mutable collector filled in while a request runs."""

    endpoint: str
    query: str
    route: str = "unrouted"
    intent: dict[str, str] | None = None
    result_count: int = 0
    stages: list[StageTrace] = field(default_factory=list)
    error: str | None = None
    trace_id: str | None = None

    def add_stage(self, stage: StageTrace) -> None:
        self.stages.append(stage)


class TraceStore:
    """Bounded in-memory trace storage for API-level observability."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._max_records = max_records

    def record(self, trace: RequestTrace, *, latency_ms: float) -> TraceRecord:
        trace_id = str(uuid.uuid4())
        record = TraceRecord(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            endpoint=trace.endpoint,
            query=trace.query,
            route=trace.route,
            intent=trace.intent,
            result_count=trace.result_count,
            stages=list(trace.stages),
            latency_ms=latency_ms,
            success=trace.error is None,
            error=trace.error,
        )
        self._records[trace_id] = record
        trace.trace_id = trace_id
        while len(self._records) > self._max_records:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        if limit <= 0:
            return []
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, Any]:
        """Aggregate request metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "failed_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "routes": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "failed_requests": sum(1 for record in records if not record.success),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "routes": dict(Counter(record.route for record in records)),
        }


class Timer:
    """Simple context timer used around awaited stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
