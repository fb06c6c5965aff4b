"""Static word tables shared by keyword normalization, intent rules and counting.

Every table is immutable and built once at import time, so concurrent requests
can read them without locking.
"""

from __future__ import annotations

import unicodedata
from types import MappingProxyType

STOPWORDS: frozenset[str] = frozenset(
    {
        "the", "and", "for", "with", "this", "that", "are", "was", "were",
        "but", "about", "from", "into", "when", "what", "which", "while",
        "where", "how", "have", "has", "had", "been", "will", "would",
        "should", "can", "could", "a", "an", "of", "in", "on", "to", "as",
        "is", "it", "by", "or", "at", "be", "not", "no", "so", "if", "do",
        "does", "did",
    }
)

# Words that describe the shape of a count question rather than a category.
CATEGORY_STOPWORDS: frozenset[str] = frozenset(
    {
        "product", "products", "item", "items", "category", "categories",
        "food", "support", "tools", "prepared", "other", "total", "many",
        "under", "over", "less", "more", "around", "with",
    }
)

SYNONYMS: MappingProxyType[str, tuple[str, ...]] = MappingProxyType(
    {
        "boost": (
            "boost®",
            "boost® kids",
            "boost® kids essentials",
            "boost® kids essentials chocolate",
            "boost® kids essentials vanilla",
        ),
        "aero": (
            "aero",
            "aero brownies",
            "aero bubbly hot chocolate",
            "aero chocolate - feel the bubbles melt",
            "aero duo",
        ),
        "nutritional": (
            "nutritional benefits of milk",
            "nutritional beverages",
            "nutritional drinks",
            "nutritional enrichment",
            "nutritional information (1 serving = 35 calories or less)",
        ),
        "cocoa": (
            "cocoa",
            "cocoa butter",
            "cocoa farming",
            "cocoa farming support",
            "cocoa powder",
        ),
        "sustainable": (
            "sustainable agriculture",
            "sustainable cocoa farming practices",
            "sustainable coffee farming",
            "sustainable cuisine",
            "sustainable cultivation",
        ),
        "global": ("global", "global connectivity", "global recipes"),
        "food": (
            "food banks canada partnership",
            "food communications",
            "food factory",
            "food network canada",
            "food preservation",
        ),
        "nestle": (
            "nestlé",
            "nestlé aero novelty bunny 94g",
            "nestlé aero truffle brownie 105 g bar",
            "nestlé baby & me",
            "nestlé brands",
        ),
        "hot": (
            "hot and iced chocolate",
            "hot chocolate",
            "hot chocolate recipe",
            "hot chocolate recipes",
        ),
        "vanilla": (
            "vanilla",
            "vanilla bean",
            "vanilla bean ice cream",
            "vanilla beans",
            "vanilla caramel half dipped frozen dessert bars",
        ),
    }
)

# Brand names recognised when a purchase query names what to buy.
PRODUCT_KEYWORDS: tuple[str, ...] = (
    "kitkat",
    "smarties",
    "coffee crisp",
    "aero",
    "nescafe",
    "boost",
    "haagen-dazs",
    "turtles",
    "nesquik",
    "delissio",
    "purina",
    "gerber",
)


def fold_accents(text: str) -> str:
    """Lowercase `text` and strip combining marks ("Nestlé" -> "nestle")."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))
