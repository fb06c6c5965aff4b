"""Per-chunk graph enrichment with concurrent fan-out."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from product_rag.retrieval.graph_store import GraphStore
from product_rag.types import CandidateChunk, EntityBag

logger = logging.getLogger(__name__)


class EntityEnricher:
    """Fetches the entity bag of each candidate chunk.

    A lookup that fails or exceeds `timeout` yields an empty bag; the chunk
    stays usable on vector relevance alone.
    """

    def __init__(self, graph: GraphStore, *, timeout: float = 5.0) -> None:
        self.graph = graph
        self.timeout = timeout

    async def enrich(self, chunk_id: str) -> EntityBag:
        try:
            bag = await asyncio.wait_for(self.graph.entities_for(chunk_id), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("entity lookup timed out for chunk %s", chunk_id)
            return {}
        except Exception as exc:  # noqa: BLE001 - partial enrichment failure is recoverable
            logger.warning("entity lookup failed for chunk %s: %s", chunk_id, exc)
            return {}
        return bag or {}

    async def enrich_many(self, chunks: Sequence[CandidateChunk]) -> list[EntityBag]:
        """Enrich all chunks concurrently; results align with `chunks`."""

        if not chunks:
            return []
        return list(await asyncio.gather(*(self.enrich(chunk.chunk_id) for chunk in chunks)))
