"""Offline ingest: crawled pages -> packed chunks -> index upload -> entity graph."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from product_rag.config import IngestConfig
from product_rag.ingest.chunker import ParagraphChunker
from product_rag.ingest.embedder import Embedder
from product_rag.ingest.entities import EntityExtractor, link_chunk_entities
from product_rag.ingest.pipeline import ChunkUploader
from product_rag.retrieval.graph_store import GraphStore
from product_rag.retrieval.vector_store import FaissVectorIndex, VectorIndex
from product_rag.types import ChunkInput

logger = logging.getLogger(__name__)


class CrawledPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    chunks: list[str] = Field(default_factory=list)
    scraped_at: str | None = Field(default=None, alias="scrapedAt")


class CrawlExport(BaseModel):
    """The JSON document written by the site crawler."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    text_chunks: list[str] = Field(default_factory=list, alias="textChunks")
    crawled_pages: list[CrawledPage] = Field(default_factory=list, alias="crawledPages")

    def pages(self, site_url: str) -> list[CrawledPage]:
        """Crawled pages, with loose `textChunks` attributed to the site root."""

        pages = list(self.crawled_pages)
        if self.text_chunks:
            pages.insert(0, CrawledPage(url=site_url, chunks=self.text_chunks))
        return pages


@dataclass(slots=True)
class IngestReport:
    pages: int = 0
    chunks: int = 0
    embedded: int = 0
    skipped: int = 0
    uploaded: int = 0
    failed_batches: list[int] = field(default_factory=list)
    entities_linked: int = 0
    saved_to: str | None = None


class IngestService:
    """Chunks, embeds, and indexes crawled pages, then links their entities.

    Entity linking runs only when an extractor is configured; without one the
    chunks are still searchable but carry no graph entities. When
    `index_path` is set and the index is FAISS-backed, the index is written
    there after every run so the API can load it at startup.
    """

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        graph: GraphStore,
        *,
        extractor: EntityExtractor | None = None,
        config: IngestConfig | None = None,
        index_path: str | None = None,
    ) -> None:
        self.config = config or IngestConfig()
        self.chunker = ParagraphChunker(self.config)
        self.uploader = ChunkUploader(embedder, index, self.config)
        self.index = index
        self.graph = graph
        self.extractor = extractor
        self.index_path = index_path

    async def ingest(self, pages: Sequence[CrawledPage]) -> IngestReport:
        report = IngestReport(pages=len(pages))
        scraped_now = datetime.now(timezone.utc).isoformat()

        inputs: list[ChunkInput] = []
        for page in pages:
            inputs.extend(self.chunker.to_inputs(page.url, page.chunks, page.scraped_at or scraped_now))
        report.chunks = len(inputs)
        if not inputs:
            logger.info("nothing to ingest from %d pages", len(pages))
            return report

        upload = await self.uploader.upload(inputs)
        report.embedded = upload.embedded
        report.skipped = upload.skipped
        report.uploaded = upload.uploaded
        report.failed_batches = list(upload.failed_batches)

        if self.extractor is None:
            logger.info("no entity extractor configured, skipping graph linking")
        elif upload.uploaded_chunks:
            report.entities_linked = await link_chunk_entities(
                self.extractor,
                self.graph,
                upload.uploaded_chunks,
                batch_size=self.config.entity_batch_size,
            )

        if self.index_path and upload.uploaded and isinstance(self.index, FaissVectorIndex):
            await self.index.save_local(self.index_path)
            report.saved_to = self.index_path

        logger.info(
            "ingested %d pages: %d chunks, %d uploaded, %d linked",
            report.pages,
            report.chunks,
            report.uploaded,
            report.entities_linked,
        )
        return report
