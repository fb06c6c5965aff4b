"""Query intent classification: regex rules layered over a semantic classifier.

Two strategies always run for every query:

1. A small rule library detects purchase phrasing ("where can I buy") and
   count phrasing ("how many products", "how many ... under <category>").
2. A semantic classifier (usually an LLM) produces a best-effort label.

`resolve_intent` is the single decision table combining both. Any rule hit
overrides a conflicting semantic label, and a count intent always routes to
the count resolver even when the query also mentions buying.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol, Union

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from product_rag.llm import message_text
from product_rag.nlu.lexicon import fold_accents
from product_rag.types import CountIntent, Intent, MainIntent

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

STORE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"\bwhere (can|could|do|should|would) (i|we|you) (buy|get|find|purchase)\b",
        r"\bwhere to (buy|get|find|purchase)\b",
        r"\bfind (a|the|an)? ?(store|shop|retailer|grocery)s?\b",
        r"\bplaces? to (buy|get|purchase)\b",
        r"\b(stores?|shops?|retailers?) (near|nearby|close to|around)\b",
        r"\bnear(by)? me\b",
        r"\bnearest (store|shop|retailer)s?\b",
        r"\b(buy|purchase)\b.*\b(near|nearby|close to)\b",
        r"\bwho (sells|carries|stocks)\b",
    )
)

TOTAL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"^total number of (products|items)( available)?\W*$",
        r"\bhow many (nestle )?(products|items)\b",
        r"\bhow many nestle\b",
        r"\btotal (number|count|amount) of (nestle )?(products|items)\b",
        r"\b(number|count) of (all )?(nestle )?(products|items)\b",
    )
)

COUNT_WORD_PATTERN = re.compile(
    r"\b(how many|total|number of|count of|list of)\b"
)
COUNT_NOUN_PATTERN = re.compile(r"\b(nestle|products?|items?|category|categories)\b")
CATEGORY_QUALIFIER_PATTERN = re.compile(
    r"\b(category|categories|under|in the|related to|type|types|kind of)\b"
)


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """What the regex rule path detected for a query."""

    store: bool = False
    count: CountIntent | None = None

    @property
    def fired(self) -> bool:
        return self.store or self.count is not None


def _canonical(query: str) -> str:
    return _WHITESPACE.sub(" ", fold_accents(query)).strip()


def match_rules(query: str) -> RuleMatch:
    """Run the regex rule path against `query`."""

    text = _canonical(query)
    store = any(pattern.search(text) for pattern in STORE_PATTERNS)

    qualified = CATEGORY_QUALIFIER_PATTERN.search(text) is not None
    count: CountIntent | None = None
    if not qualified and any(pattern.search(text) for pattern in TOTAL_PATTERNS):
        count = CountIntent.TOTAL
    elif COUNT_WORD_PATTERN.search(text) and COUNT_NOUN_PATTERN.search(text):
        count = CountIntent.CATEGORY
    return RuleMatch(store=store, count=count)


@dataclass(frozen=True, slots=True)
class SemanticOk:
    intent: Intent


@dataclass(frozen=True, slots=True)
class SemanticFallback:
    reason: str


SemanticResult = Union[SemanticOk, SemanticFallback]


def resolve_intent(rules: RuleMatch, semantic: SemanticResult) -> Intent:
    """Combine rule hits with the semantic label.

    | rule count | rule store | main          | count          |
    |------------|------------|---------------|----------------|
    | hit        | any        | store if hit  | rule count     |
    | none       | hit        | store         | semantic count |
    | none       | none       | semantic main | semantic count |

    A fallback semantic result reads as `info`/`search`.
    """

    label = semantic.intent if isinstance(semantic, SemanticOk) else Intent.DEFAULT
    count = rules.count if rules.count is not None else label.count
    main = MainIntent.STORE if rules.store else label.main
    return Intent(main=main, count=count)


class SemanticClassifier(Protocol):
    """Best-effort classifier; implementations return a fallback instead of raising."""

    async def classify(self, query: str) -> SemanticResult:
        """Label `query` with a main and count intent."""


class NullSemanticClassifier:
    """Used when no language model is configured."""

    async def classify(self, query: str) -> SemanticResult:
        return SemanticFallback("semantic classifier not configured")


class IntentLabel(BaseModel):
    """Schema the language model must answer with."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    main_intent: MainIntent = Field(alias="mainIntent")
    count_intent: CountIntent = Field(alias="countIntent")


_CLASSIFIER_SYSTEM_PROMPT = """
You classify questions asked on a food and beverage brand website.

Return ONLY a JSON object with two keys:
- "mainIntent": "store" when the user wants to buy a product or find a store,
  otherwise "info".
- "countIntent": "total" when the user asks how many products exist overall,
  "category" when the user asks how many products exist in a category,
  otherwise "search".

Example: {{"mainIntent": "info", "countIntent": "search"}}
""".strip()

CLASSIFIER_PROMPT = ChatPromptTemplate.from_messages(
    [("system", _CLASSIFIER_SYSTEM_PROMPT), ("human", "{query}")]
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def decode_label(raw: str) -> SemanticResult:
    """Strictly decode model output into a tagged result."""

    cleaned = _CODE_FENCE.sub("", raw.strip())
    try:
        label = IntentLabel.model_validate_json(cleaned)
    except ValidationError as exc:
        return SemanticFallback(f"malformed label: {exc.error_count()} error(s)")
    return SemanticOk(Intent(main=label.main_intent, count=label.count_intent))


class LLMSemanticClassifier:
    """Semantic classifier backed by a LangChain chat model."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    async def classify(self, query: str) -> SemanticResult:
        messages = CLASSIFIER_PROMPT.format_messages(query=query)
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as exc:  # noqa: BLE001 - any client failure means "no label"
            return SemanticFallback(f"classifier call failed: {exc}")
        return decode_label(message_text(response))


class IntentClassifier:
    """Runs both strategies and resolves them into one `Intent`. Never raises."""

    def __init__(
        self,
        semantic: SemanticClassifier | None = None,
        *,
        timeout: float = 10.0,
    ) -> None:
        self.semantic = semantic or NullSemanticClassifier()
        self.timeout = timeout

    async def classify(self, query: str) -> Intent:
        rules = match_rules(query)
        semantic = await self._semantic(query)
        intent = resolve_intent(rules, semantic)
        logger.info(
            "intent resolved: %s (rules store=%s count=%s, semantic=%s)",
            json.dumps(intent.as_dict()),
            rules.store,
            rules.count.value if rules.count else None,
            semantic,
        )
        return intent

    async def _semantic(self, query: str) -> SemanticResult:
        try:
            return await asyncio.wait_for(self.semantic.classify(query), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("semantic classifier timed out after %.1fs", self.timeout)
            return SemanticFallback("timeout")
        except Exception as exc:  # noqa: BLE001 - classification must always produce a value
            logger.warning("semantic classifier failed: %s", exc)
            return SemanticFallback(f"error: {exc}")
