"""Ingest pipeline: embed crawled chunks -> batched, retried index upserts."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from product_rag.config import IngestConfig
from product_rag.ingest.embedder import Embedder
from product_rag.retrieval.vector_store import VectorIndex
from product_rag.types import ChunkInput, ChunkRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UploadReport:
    embedded: int = 0
    skipped: int = 0
    uploaded: int = 0
    failed_batches: list[int] = field(default_factory=list)
    chunk_ids: list[str] = field(default_factory=list)
    # (chunk_id, content) for every uploaded chunk, in upload order.
    uploaded_chunks: list[tuple[str, str]] = field(default_factory=list)


class ChunkUploader:
    """Embeds `ChunkInput` records and uploads them to the vector index.

    This class isolates ingestion from query-time retrieval so indexing can be
    executed offline, in batch jobs, or during deployment warm-up. A chunk
    that fails to embed is skipped; a batch that still fails after
    `retry_limit` retries is reported in `UploadReport.failed_batches`.
    """

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        config: IngestConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self.config = config or IngestConfig()

    async def upload(self, chunks: list[ChunkInput]) -> UploadReport:
        report = UploadReport()
        records: list[ChunkRecord] = []
        for chunk in chunks:
            try:
                vector = await self._embedder.embed_query(chunk.content)
            except Exception as exc:  # noqa: BLE001 - one bad chunk must not stop the batch
                logger.error(
                    "failed to embed chunk %s#%d: %s", chunk.source_url, chunk.chunk_index, exc
                )
                report.skipped += 1
                continue
            if not vector:
                logger.error(
                    "empty embedding for chunk %s#%d", chunk.source_url, chunk.chunk_index
                )
                report.skipped += 1
                continue
            records.append(
                ChunkRecord(
                    chunk_id=str(uuid.uuid4()),
                    content=chunk.content,
                    source_url=chunk.source_url,
                    chunk_index=chunk.chunk_index,
                    scraped_at=chunk.scraped_at,
                    vector=vector,
                )
            )
        report.embedded = len(records)
        logger.info("prepared %d of %d chunks for upload", len(records), len(chunks))

        size = self.config.batch_size
        for batch_number, start in enumerate(range(0, len(records), size), start=1):
            batch = records[start : start + size]
            if await self._upload_batch(batch, batch_number):
                report.uploaded += len(batch)
                report.chunk_ids.extend(record.chunk_id for record in batch)
                report.uploaded_chunks.extend((record.chunk_id, record.content) for record in batch)
            else:
                report.failed_batches.append(batch_number)
        return report

    async def _upload_batch(self, batch: list[ChunkRecord], batch_number: int) -> bool:
        attempts = self.config.retry_limit + 1
        for attempt in range(1, attempts + 1):
            try:
                await self._index.upsert(batch)
            except Exception as exc:  # noqa: BLE001 - retried, then reported
                if attempt == attempts:
                    logger.error(
                        "batch %d failed after %d attempts: %s", batch_number, attempts, exc
                    )
                    return False
                logger.warning(
                    "batch %d upload failed (attempt %d/%d), retrying: %s",
                    batch_number,
                    attempt,
                    attempts,
                    exc,
                )
                await asyncio.sleep(self.config.retry_backoff_seconds)
            else:
                logger.info("batch %d uploaded (%d chunks)", batch_number, len(batch))
                return True
        return False
