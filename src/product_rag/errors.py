"""Exception taxonomy for request handling.

Only downstream failures with no safe degraded result are raised. Recoverable
conditions (classifier ambiguity, a single chunk's enrichment failing, a count
query matching no category) are resolved in place and never surface here.
"""

from __future__ import annotations


class ProductRagError(Exception):
    """Base class for all service errors."""


class ServiceUnavailable(ProductRagError):
    """An external service failed, timed out, or returned nothing usable."""

    service = "upstream"

    def __init__(self, message: str, *, service: str | None = None) -> None:
        super().__init__(message)
        if service is not None:
            self.service = service


class EmbeddingUnavailable(ServiceUnavailable):
    service = "embedding"


class VectorSearchUnavailable(ServiceUnavailable):
    service = "vector_search"


class GenerationUnavailable(ServiceUnavailable):
    service = "generation"


class GraphUnavailable(ServiceUnavailable):
    service = "graph"


class StoreDataUnavailable(ServiceUnavailable):
    service = "store_data"
