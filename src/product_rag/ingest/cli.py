"""Command-line ingest of a crawl export into the search index and entity graph.

    product-rag-ingest crawl.json
    FAISS_INDEX_PATH=./faiss product-rag-ingest crawl.json

Components are wired exactly as the API wires them, so with
`FAISS_INDEX_PATH` set the resulting index is saved where the API loads it.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

from pydantic import ValidationError

from product_rag.assistant import ProductAssistant, build_assistant
from product_rag.ingest.service import CrawlExport, CrawledPage, IngestReport

logger = logging.getLogger(__name__)


async def _run(assistant: ProductAssistant, pages: list[CrawledPage]) -> IngestReport:
    try:
        outcome = await assistant.ingest(pages)
    finally:
        await assistant.close()
    return outcome.report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Index a crawl export for product search")
    parser.add_argument("export", type=Path, help="crawl export JSON (crawledPages/textChunks)")
    parser.add_argument("--site-url", help="source URL for loose textChunks")
    parser.add_argument("-v", "--verbose", action="store_true", help="log at DEBUG level")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        export = CrawlExport.model_validate_json(args.export.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        logger.error("cannot read crawl export %s: %s", args.export, exc)
        return 1
    if not export.success:
        logger.error("crawl export %s reports success=false", args.export)
        return 1

    assistant = build_assistant()
    pages = export.pages(args.site_url or assistant.config.ingest.site_url)
    logger.info("ingesting %d pages from %s", len(pages), args.export)
    report = asyncio.run(_run(assistant, pages))

    print(json.dumps(asdict(report), indent=2))
    return 1 if report.failed_batches else 0


if __name__ == "__main__":
    raise SystemExit(main())
