"""Configuration models for the product Q&A service."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ScoringConfig(BaseModel):
    """Configures the graph-entity overlap score and its blend with vector scores."""

    entity_weight: float = Field(default=0.1, ge=0.0)
    exact_match_multiplier: float = Field(default=2.0, ge=0.0)
    substring_match_multiplier: float = Field(default=1.0, ge=0.0)
    type_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "product": 3.0,
            "category": 2.0,
            "ingredient": 1.0,
            "topic": 1.0,
        }
    )
    default_type_weight: float = Field(default=1.0, ge=0.0)

    def weight_for(self, entity_type: str) -> float:
        return self.type_weights.get(entity_type, self.default_type_weight)


class RetrievalConfig(BaseModel):
    """Configures candidate counts for search and answer requests."""

    search_top_k: int = Field(default=5, ge=1)
    answer_top_k: int = Field(default=3, ge=1)
    max_top_k: int = Field(default=50, ge=1)


class TimeoutConfig(BaseModel):
    """Upper bounds (seconds) for every awaited external call."""

    embedding: float = Field(default=15.0, gt=0.0)
    vector_search: float = Field(default=15.0, gt=0.0)
    enrichment: float = Field(default=5.0, gt=0.0)
    aggregate_counts: float = Field(default=10.0, gt=0.0)
    generation: float = Field(default=60.0, gt=0.0)
    classification: float = Field(default=10.0, gt=0.0)
    store_data: float = Field(default=5.0, gt=0.0)


class StoreLocatorConfig(BaseModel):
    """Configures nearest-store lookups."""

    default_radius_km: float = Field(default=20.0, gt=0.0)
    max_radius_km: float = Field(default=500.0, gt=0.0)


class IngestConfig(BaseModel):
    """Configures chunk packing and batched index uploads."""

    max_chunk_chars: int = Field(default=700, ge=50)
    batch_size: int = Field(default=500, ge=1)
    retry_limit: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0)
    entity_batch_size: int = Field(default=5, ge=1)
    site_url: str = "https://www.madewithnestle.ca"


class AppConfig(BaseModel):
    """Aggregates every tunable used when wiring the assistant."""

    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    stores: StoreLocatorConfig = Field(default_factory=StoreLocatorConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
