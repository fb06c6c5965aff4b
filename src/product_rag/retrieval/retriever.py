"""Vector retrieval: embed the query, then ask the index for nearest chunks."""

from __future__ import annotations

import asyncio
import logging

from product_rag.config import TimeoutConfig
from product_rag.errors import EmbeddingUnavailable, VectorSearchUnavailable
from product_rag.ingest.embedder import Embedder
from product_rag.retrieval.vector_store import VectorIndex
from product_rag.types import CandidateChunk

logger = logging.getLogger(__name__)


class VectorRetriever:
    """Returns top-K candidate chunks with their base similarity scores.

    Embedding and index failures are fatal for the request and are not
    retried. Final ordering is left to the reranker.
    """

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.timeouts = timeouts or TimeoutConfig()

    async def retrieve(self, query: str, top_k: int) -> list[CandidateChunk]:
        query_vector = await self._embed(query)
        try:
            candidates = await asyncio.wait_for(
                self.index.search(query_vector, top_k), self.timeouts.vector_search
            )
        except asyncio.TimeoutError as exc:
            raise VectorSearchUnavailable(
                f"vector search timed out after {self.timeouts.vector_search:.1f}s"
            ) from exc
        except Exception as exc:
            raise VectorSearchUnavailable(f"vector search failed: {exc}") from exc

        logger.debug("vector search returned %d candidates (top_k=%d)", len(candidates), top_k)
        return candidates

    async def _embed(self, query: str) -> list[float]:
        try:
            vector = await asyncio.wait_for(
                self.embedder.embed_query(query), self.timeouts.embedding
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingUnavailable(
                f"embedding timed out after {self.timeouts.embedding:.1f}s"
            ) from exc
        except Exception as exc:
            raise EmbeddingUnavailable(f"embedding failed: {exc}") from exc

        if not vector:
            raise EmbeddingUnavailable("embedding service returned no vector")
        return vector
