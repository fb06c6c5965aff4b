"""Paragraph packing for crawled page text."""

from __future__ import annotations

from collections.abc import Iterable

from product_rag.config import IngestConfig
from product_rag.types import ChunkInput


class ParagraphChunker:
    """Packs page paragraphs into chunks of at most `max_chunk_chars` characters.

    Design notes:
    1. Paragraphs are de-duplicated case-insensitively before packing. Product
       pages repeat navigation and disclaimer blocks, and duplicates would
       otherwise crowd out the useful text in the index.
    2. Packing is greedy and order-preserving: paragraphs are appended to the
       current chunk until the next one would overflow it.
    3. A single paragraph longer than the limit becomes a chunk of its own
       rather than being cut mid-sentence.
    """

    def __init__(self, config: IngestConfig | None = None) -> None:
        self.config = config or IngestConfig()

    def chunk(self, paragraphs: Iterable[str]) -> list[str]:
        max_chars = self.config.max_chunk_chars
        chunks: list[str] = []
        current: list[str] = []
        current_len = 0

        for paragraph in _unique_paragraphs(paragraphs):
            added = len(paragraph) + (1 if current else 0)
            if current and current_len + added > max_chars:
                chunks.append(" ".join(current))
                current, current_len = [], 0
                added = len(paragraph)
            current.append(paragraph)
            current_len += added

        if current:
            chunks.append(" ".join(current))
        return chunks

    def to_inputs(
        self,
        source_url: str,
        paragraphs: Iterable[str],
        scraped_at: str,
    ) -> list[ChunkInput]:
        """Chunk one page and tag each chunk with its source and position."""

        return [
            ChunkInput(
                content=content,
                source_url=source_url,
                chunk_index=index,
                scraped_at=scraped_at,
            )
            for index, content in enumerate(self.chunk(paragraphs))
        ]


def _unique_paragraphs(paragraphs: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for paragraph in paragraphs:
        text = " ".join(paragraph.split())
        key = text.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(text)
    return unique
