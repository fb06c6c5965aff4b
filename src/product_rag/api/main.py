"""FastAPI entrypoint for search/answer/stores/ingest/trace endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Annotated, Any, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from product_rag.assistant import ProductAssistant, build_assistant
from product_rag.errors import ServiceUnavailable
from product_rag.ingest.service import CrawlExport
from product_rag.types import CountIntent

logger = logging.getLogger(__name__)

QueryText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)]


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: QueryText
    top: int | None = Field(default=None, ge=1, le=50)
    count_intent: Literal["total", "category"] | None = Field(default=None, alias="countIntent")


class AnswerRequest(BaseModel):
    query: QueryText
    lat: float | None = Field(default=None, ge=-90.0, le=90.0)
    lng: float | None = Field(default=None, ge=-180.0, le=180.0)


class StoresRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: QueryText | None = None
    product: QueryText | None = None
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)
    radius_km: float | None = Field(default=None, gt=0.0, alias="radiusKm")

    @model_validator(mode="after")
    def _require_query_or_product(self) -> StoresRequest:
        if not self.query and not self.product:
            raise ValueError("either 'query' or 'product' is required")
        return self


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request body"


def create_app(assistant: ProductAssistant | None = None) -> FastAPI:
    """Build the API around one long-lived assistant (and its client pools)."""

    service = assistant or build_assistant()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await service.close()

    app = FastAPI(title="Product Q&A Assistant", version="0.1.0", lifespan=lifespan)
    app.state.assistant = service

    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, _validation_message(exc))

    @app.exception_handler(ServiceUnavailable)
    async def _on_service_unavailable(_: Request, exc: ServiceUnavailable) -> JSONResponse:
        logger.error("%s unavailable: %s", exc.service, exc)
        return _error(500, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _on_http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "generator": type(service.assembler.generator).__name__,
            "semantic_classifier": type(service.classifier.semantic).__name__,
            "trace_count": len(service.trace_store.list_recent(limit=1000)),
        }

    @app.post("/search")
    async def search(request: SearchRequest) -> dict[str, Any]:
        count_intent = CountIntent(request.count_intent) if request.count_intent else None
        outcome = await service.search(request.query, top_k=request.top, count_intent=count_intent)
        if outcome.count is not None:
            return {
                "success": True,
                "type": "count",
                "count": outcome.count.count,
                "message": outcome.count.message,
                "traceId": outcome.trace_id,
            }
        return {
            "success": True,
            "matches": [match.to_dict() for match in outcome.matches],
            "traceId": outcome.trace_id,
        }

    @app.post("/answer")
    async def answer(request: AnswerRequest) -> dict[str, Any]:
        outcome = await service.answer(request.query, lat=request.lat, lng=request.lng)
        payload: dict[str, Any] = {
            "success": True,
            "answer": outcome.answer,
            "sources": outcome.sources,
            "intent": outcome.intent.as_dict(),
            "traceId": outcome.trace_id,
        }
        if outcome.stores is not None:
            payload["stores"] = [hit.model_dump(by_alias=True) for hit in outcome.stores]
        if outcome.count is not None:
            payload["count"] = outcome.count.count
        return payload

    @app.post("/stores")
    async def stores(request: StoresRequest) -> dict[str, Any]:
        outcome = await service.stores(
            lat=request.lat,
            lng=request.lng,
            product=request.product,
            query=request.query,
            radius_km=request.radius_km,
        )
        return {
            "success": True,
            "stores": [hit.model_dump(by_alias=True) for hit in outcome.stores],
            "matchedProduct": outcome.matched_product,
            "traceId": outcome.trace_id,
        }

    @app.post("/ingest")
    async def ingest(request: CrawlExport) -> dict[str, Any]:
        if not request.success:
            raise HTTPException(status_code=400, detail="Crawl export reports success=false")
        pages = request.pages(service.config.ingest.site_url)
        if not pages:
            raise HTTPException(status_code=400, detail="No pages to ingest")
        if service.ingestor is None:
            raise HTTPException(status_code=503, detail="Ingest is not configured")
        outcome = await service.ingest(pages)
        report = outcome.report
        return {
            "success": not report.failed_batches,
            "pages": report.pages,
            "chunksCreated": report.chunks,
            "uploaded": report.uploaded,
            "skipped": report.skipped,
            "failedBatches": report.failed_batches,
            "entitiesLinked": report.entities_linked,
            "traceId": outcome.trace_id,
        }

    @app.get("/traces")
    async def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in service.trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    async def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = service.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Trace not found: {trace_id}") from exc
        return asdict(record)

    @app.get("/metrics")
    async def metrics() -> dict[str, Any]:
        return service.trace_store.summary()

    return app


app = create_app()
