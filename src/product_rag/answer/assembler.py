"""Grounded answer synthesis from ranked matches."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.prompts import PromptTemplate

from product_rag.errors import GenerationUnavailable
from product_rag.llm import message_text
from product_rag.types import Match

logger = logging.getLogger(__name__)

NO_MATCH_ANSWER = "Sorry, I couldn't find any relevant information for your question."

SYSTEM_PROMPT = "You answer based on given context."

ANSWER_PROMPT = PromptTemplate.from_template(
    """
You are a helpful assistant that answers questions using only the provided context from the brand website.

Your response must follow this strict formatting in **Markdown**:

- Start with a clear, short introductory paragraph.
- Use **numbered or bulleted lists** where relevant.
- Each list item should have:
  - A **bolded title** (e.g., product name, recipe, or concept)
  - A new line with its short description underneath.
- For instructions, nutrition facts, or extra details, use an italic one- or two-word sub-heading like *Tips*, *Instructions*, or *Nutrition*, followed by ':' and the content.
- Add blank lines between items and sections for clarity.
- End with a summary or call-to-action if appropriate.
- Do NOT add external or unrelated content.

Context:
{context}

Question:
{question}

Respond in clean Markdown with clear paragraph spacing.
""".strip()
)

_CHUNK_BLOCK = re.compile(
    r"Chunk (?P<idx>\d+):\n(?P<body>.*?)(?=\n\nChunk \d+:|\n\nQuestion:|\Z)",
    flags=re.DOTALL,
)


class Generator(Protocol):
    """External text generation service."""

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Return generated text; raise `GenerationUnavailable` on empty output."""


class LangChainGenerator:
    """Generator backed by a LangChain chat model."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        response = await self.llm.ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        )
        text = message_text(response)
        if not text:
            raise GenerationUnavailable("generation service returned no content")
        return text


class ExtractiveGenerator:
    """Deterministic generator for offline runs.

    Quotes the leading text of each context chunk instead of calling a model,
    so every sentence of the answer is traceable to a source.
    """

    def __init__(self, max_chars: int = 220) -> None:
        self.max_chars = max_chars

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        del system_prompt
        lines = ["Here is what I found on the website:", ""]
        for match in _CHUNK_BLOCK.finditer(user_prompt):
            body = " ".join(match.group("body").split())
            if body:
                lines.append(f"{match.group('idx')}. {_truncate(body, self.max_chars)}")
        if len(lines) == 2:
            raise GenerationUnavailable("no context available for extractive answer")
        return "\n".join(lines)


@dataclass(slots=True)
class AnswerResult:
    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)


def build_context(matches: Sequence[Match]) -> str:
    """Labeled context block, one `Chunk i:` section per match."""

    contents = [match.chunk.content for match in matches if match.chunk.content]
    blocks = [f"Chunk {i}:\n{content}" for i, content in enumerate(contents, start=1)]
    return "\n\n".join(blocks)


def build_sources(matches: Sequence[Match]) -> list[dict[str, Any]]:
    """Provenance records in rank order, one per (sourceUrl, chunkIndex)."""

    seen: set[tuple[str, int]] = set()
    sources: list[dict[str, Any]] = []
    for match in matches:
        key = (match.chunk.source_url, match.chunk.chunk_index)
        if key in seen:
            continue
        seen.add(key)
        sources.append(
            {
                "sourceUrl": match.chunk.source_url,
                "chunkIndex": match.chunk.chunk_index,
                "entities": match.entities,
                "score": match.score,
            }
        )
    return sources


class AnswerAssembler:
    """Builds the prompt from top matches and delegates to the generator."""

    def __init__(self, generator: Generator, *, timeout: float = 60.0) -> None:
        self.generator = generator
        self.timeout = timeout

    async def assemble(self, query: str, matches: Sequence[Match]) -> AnswerResult:
        if not matches:
            return AnswerResult(answer=NO_MATCH_ANSWER)

        user_prompt = ANSWER_PROMPT.format(context=build_context(matches), question=query)
        try:
            answer = await asyncio.wait_for(
                self.generator.generate(SYSTEM_PROMPT, user_prompt), self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise GenerationUnavailable(
                f"generation timed out after {self.timeout:.1f}s"
            ) from exc
        except GenerationUnavailable:
            raise
        except Exception as exc:
            raise GenerationUnavailable(f"generation failed: {exc}") from exc

        return AnswerResult(answer=answer.strip(), sources=build_sources(matches))


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
