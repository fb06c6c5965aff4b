import pytest

from product_rag.nlu.keywords import expand, normalize_keywords, tokenize


def test_tokenize_drops_short_tokens_and_stopwords() -> None:
    assert tokenize("Is Boost good for the kids?") == ["boost", "good", "kids"]


def test_tokenize_folds_accents() -> None:
    assert tokenize("Nestlé Häagen-Dazs") == ["nestle", "haagen", "dazs"]


def test_expand_adds_synonyms_for_known_tokens() -> None:
    expanded = expand(["boost", "kids"])

    assert {"boost", "kids", "boost® kids essentials"} <= expanded
    assert expand(["unknownword"]) == frozenset({"unknownword"})


@pytest.mark.parametrize(
    "query",
    ["Is Boost good for kids?", "How many Nestlé products are listed?", "", "   ", "a an of"],
)
def test_normalization_is_deterministic(query: str) -> None:
    assert normalize_keywords(query) == normalize_keywords(query)


@pytest.mark.parametrize("query", ["", "   ", "is it on at", "?!"])
def test_blank_or_stopword_queries_yield_empty_set(query: str) -> None:
    assert normalize_keywords(query) == frozenset()
