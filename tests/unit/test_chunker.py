from product_rag.config import IngestConfig
from product_rag.ingest.chunker import ParagraphChunker


def test_chunker_packs_paragraphs_within_limit() -> None:
    chunker = ParagraphChunker(IngestConfig(max_chunk_chars=60))
    paragraphs = [
        "KitKat is a chocolate covered wafer bar.",
        "It has fingers.",
        "Have a break, have a KitKat.",
        "Made in York.",
    ]

    chunks = chunker.chunk(paragraphs)

    assert chunks == [
        "KitKat is a chocolate covered wafer bar. It has fingers.",
        "Have a break, have a KitKat. Made in York.",
    ]
    assert all(len(chunk) <= 60 for chunk in chunks)


def test_chunker_drops_repeated_and_blank_paragraphs() -> None:
    chunker = ParagraphChunker(IngestConfig(max_chunk_chars=200))

    chunks = chunker.chunk(["Cookie   settings", "", "COOKIE SETTINGS", "  Boost  Kids  ", "cookie settings"])

    assert chunks == ["Cookie settings Boost Kids"]


def test_oversized_paragraph_stands_alone() -> None:
    chunker = ParagraphChunker(IngestConfig(max_chunk_chars=50))
    long_paragraph = "Nutrition " * 10

    chunks = chunker.chunk(["Intro.", long_paragraph, "Outro."])

    assert chunks == ["Intro.", long_paragraph.strip(), "Outro."]


def test_to_inputs_tags_source_and_position() -> None:
    chunker = ParagraphChunker(IngestConfig(max_chunk_chars=50))

    inputs = chunker.to_inputs(
        "https://example.com/kitkat",
        ["A" * 40, "B" * 40],
        scraped_at="2024-05-01T00:00:00Z",
    )

    assert [(item.chunk_index, item.content) for item in inputs] == [(0, "A" * 40), (1, "B" * 40)]
    assert {item.source_url for item in inputs} == {"https://example.com/kitkat"}
