"""LLM entity extraction for indexed chunks and linking into the graph store."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from typing import Any

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from product_rag.llm import message_text
from product_rag.retrieval.graph_store import GraphStore
from product_rag.types import EntityBag

logger = logging.getLogger(__name__)

_EXTRACTION_SYSTEM_PROMPT = """
You are an entity extraction agent.
From the given text, extract named entities relevant to a food and beverage brand website.
Return ONLY a JSON object with the keys 'products', 'categories', 'ingredients', and 'topics'.

Example output:
{{
  "products": ["BOOST Kids Essentials"],
  "categories": ["nutritional supplements"],
  "ingredients": ["protein", "fibre", "vitamins", "minerals"],
  "topics": ["nutrition", "health", "wellness"]
}}
""".strip()

EXTRACTION_PROMPT = ChatPromptTemplate.from_messages(
    [("system", _EXTRACTION_SYSTEM_PROMPT), ("human", "{text}")]
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class ExtractedEntities(BaseModel):
    model_config = ConfigDict(extra="ignore")

    products: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    ingredients: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.products or self.categories or self.ingredients or self.topics)

    def to_bag(self) -> EntityBag:
        return {
            "product": list(self.products),
            "category": list(self.categories),
            "ingredient": list(self.ingredients),
            "topic": list(self.topics),
        }


class EntityExtractor:
    """Extracts typed entities from chunk text with a chat model.

    Output that is not valid JSON for `ExtractedEntities` yields an empty
    result; extraction is best-effort enrichment.
    """

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    async def extract(self, text: str) -> ExtractedEntities:
        response = await self.llm.ainvoke(EXTRACTION_PROMPT.format_messages(text=text))
        raw = _CODE_FENCE.sub("", message_text(response).strip())
        try:
            return ExtractedEntities.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("entity extraction returned malformed JSON: %s", exc.error_count())
            return ExtractedEntities()


async def link_chunk_entities(
    extractor: EntityExtractor,
    graph: GraphStore,
    chunks: Sequence[tuple[str, str]],
    *,
    batch_size: int = 5,
) -> int:
    """Extract and link entities for `(chunk_id, content)` pairs.

    Chunks are processed `batch_size` at a time; a failed extraction is
    logged and the chunk left unlinked. Returns the number of chunks linked.
    """

    linked = 0
    for start in range(0, len(chunks), batch_size):
        batch = chunks[start : start + batch_size]
        results = await asyncio.gather(
            *(extractor.extract(content) for _, content in batch),
            return_exceptions=True,
        )
        for (chunk_id, _), result in zip(batch, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("entity extraction failed for chunk %s: %s", chunk_id, result)
                continue
            if result.is_empty():
                continue
            await graph.link_entities(chunk_id, result.to_bag())
            linked += 1
    logger.info("linked entities for %d of %d chunks", linked, len(chunks))
    return linked
