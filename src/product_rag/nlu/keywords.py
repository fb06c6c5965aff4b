"""Query keyword normalization and synonym expansion."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from product_rag.nlu.lexicon import STOPWORDS, SYNONYMS, fold_accents

_SPLIT_PATTERN = re.compile(r"\W+", flags=re.UNICODE)
_MIN_TOKEN_LENGTH = 3


def tokenize(query: str, stopwords: frozenset[str] = STOPWORDS) -> list[str]:
    """Lowercase, split on non-word runs, drop short tokens and stopwords."""

    tokens = _SPLIT_PATTERN.split(fold_accents(query))
    return [
        token
        for token in tokens
        if len(token) >= _MIN_TOKEN_LENGTH and token not in stopwords
    ]


def expand(
    tokens: Iterable[str],
    synonyms: Mapping[str, Iterable[str]] = SYNONYMS,
) -> frozenset[str]:
    """Union `tokens` with every synonym listed for them."""

    expanded = set(tokens)
    for token in list(expanded):
        expanded.update(synonyms.get(token, ()))
    return frozenset(expanded)


def normalize_keywords(query: str) -> frozenset[str]:
    """Canonical keyword set for `query`.

    Pure function of the input and the static tables. A blank or all-stopword
    query yields an empty set.
    """

    return expand(tokenize(query))
