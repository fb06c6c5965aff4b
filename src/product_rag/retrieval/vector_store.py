"""Vector index interfaces and concrete adapters."""

from __future__ import annotations

import asyncio
from math import sqrt
from typing import Any, Protocol

from product_rag.types import CandidateChunk, ChunkRecord


class VectorIndex(Protocol):
    """Minimal vector index contract for retrieval and ingest."""

    async def upsert(self, records: list[ChunkRecord]) -> None:
        """Insert or update embedded chunks."""

    async def search(self, query_vector: list[float], top_k: int) -> list[CandidateChunk]:
        """Nearest chunks, best first, each carrying the engine's relevance score."""


class InMemoryVectorIndex:
    """Deterministic cosine-similarity index used for tests and local runs."""

    def __init__(self) -> None:
        self._store: dict[str, ChunkRecord] = {}

    def __len__(self) -> int:
        return len(self._store)

    async def upsert(self, records: list[ChunkRecord]) -> None:
        for record in records:
            self._store[record.chunk_id] = record

    async def search(self, query_vector: list[float], top_k: int) -> list[CandidateChunk]:
        ranked = sorted(
            (
                CandidateChunk(
                    chunk_id=record.chunk_id,
                    content=record.content,
                    source_url=record.source_url,
                    chunk_index=record.chunk_index,
                    score=_cosine_similarity(query_vector, record.vector),
                )
                for record in self._store.values()
            ),
            key=lambda item: item.score,
            reverse=True,
        )
        return ranked[:top_k]


class FaissVectorIndex:
    """FAISS index via the LangChain community integration.

    Vectors are L2-normalized and compared by inner product so that a higher
    score means a closer chunk, the same convention as `InMemoryVectorIndex`.
    """

    def __init__(self, embeddings: Any | None = None) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_community.vectorstores.utils import DistanceStrategy
            from langchain_core.embeddings import Embeddings
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        class _VectorOnlyEmbeddings(Embeddings):
            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                raise NotImplementedError("FaissVectorIndex only accepts precomputed vectors")

            def embed_query(self, text: str) -> list[float]:
                raise NotImplementedError("FaissVectorIndex only accepts precomputed vectors")

        self._faiss_cls = FAISS
        self._distance_strategy = DistanceStrategy.MAX_INNER_PRODUCT
        self._embeddings = embeddings or _VectorOnlyEmbeddings()
        self._index: Any | None = None

    @classmethod
    def load_local(cls, folder: str, embeddings: Any | None = None) -> FaissVectorIndex:
        """Open an index previously written with `save_local`."""
        index = cls(embeddings)
        index._index = index._faiss_cls.load_local(
            folder,
            index._embeddings,
            allow_dangerous_deserialization=True,
            distance_strategy=index._distance_strategy,
            normalize_L2=True,
        )
        return index

    async def save_local(self, folder: str) -> None:
        if self._index is None:
            raise ValueError("cannot save an empty index")
        await asyncio.to_thread(self._index.save_local, folder)

    async def upsert(self, records: list[ChunkRecord]) -> None:
        if not records:
            return
        text_embeddings = [(record.content, record.vector) for record in records]
        metadatas = [
            {
                "chunk_id": record.chunk_id,
                "source_url": record.source_url,
                "chunk_index": record.chunk_index,
                "scraped_at": record.scraped_at,
            }
            for record in records
        ]
        ids = [record.chunk_id for record in records]

        if self._index is None:
            self._index = await asyncio.to_thread(
                self._faiss_cls.from_embeddings,
                text_embeddings=text_embeddings,
                embedding=self._embeddings,
                metadatas=metadatas,
                ids=ids,
                distance_strategy=self._distance_strategy,
                normalize_L2=True,
            )
            return

        await asyncio.to_thread(
            self._index.add_embeddings,
            text_embeddings=text_embeddings,
            metadatas=metadatas,
            ids=ids,
        )

    async def search(self, query_vector: list[float], top_k: int) -> list[CandidateChunk]:
        if self._index is None:
            return []
        # FAISS search is CPU-bound and synchronous.
        docs_and_scores = await asyncio.to_thread(
            self._index.similarity_search_with_score_by_vector,
            embedding=query_vector,
            k=top_k,
        )
        results: list[CandidateChunk] = []
        for rank, (doc, score) in enumerate(docs_and_scores, start=1):
            results.append(
                CandidateChunk(
                    chunk_id=str(doc.metadata.get("chunk_id", f"faiss-{rank}")),
                    content=doc.page_content,
                    source_url=str(doc.metadata.get("source_url", "")),
                    chunk_index=int(doc.metadata.get("chunk_index", 0)),
                    score=float(score),
                )
            )
        return results


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
