"""Nearest-store lookup for purchase queries."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from math import atan2, cos, radians, sin, sqrt
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from product_rag.config import StoreLocatorConfig
from product_rag.errors import StoreDataUnavailable
from product_rag.nlu.lexicon import PRODUCT_KEYWORDS, fold_accents

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

_WORD_PATTERN = re.compile(r"[a-z0-9]+")


class StoreProduct(BaseModel):
    name: str
    price: float | None = None


class Store(BaseModel):
    name: str
    address: str = ""
    city: str = ""
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)
    products: list[StoreProduct] = Field(default_factory=list)


class StoreHit(BaseModel):
    """A store within range that sells the requested product."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    address: str
    city: str
    lat: float
    lng: float
    distance_km: float = Field(serialization_alias="distanceKm")
    products: list[StoreProduct]


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates in kilometers."""

    d_lat = radians(lat2 - lat1)
    d_lng = radians(lng2 - lng1)
    a = sin(d_lat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(d_lng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(a), sqrt(1 - a))


def resolve_product(query: str) -> str | None:
    """First known brand named in `query`, if any."""

    words = _WORD_PATTERN.findall(fold_accents(query))
    text = " ".join(words)
    joined_pairs = {first + second for first, second in zip(words, words[1:])}
    for keyword in PRODUCT_KEYWORDS:
        spaced = " ".join(_WORD_PATTERN.findall(keyword))
        if re.search(rf"\b{re.escape(spaced)}\b", text) or spaced.replace(" ", "") in joined_pairs:
            return keyword
    return None


def _compact(name: str) -> str:
    return "".join(_WORD_PATTERN.findall(fold_accents(name)))


class StoreDataset(Protocol):
    async def load(self) -> list[Store]:
        """Return every known store."""


class InMemoryStoreDataset:
    def __init__(self, stores: list[Store]) -> None:
        self._stores = list(stores)

    async def load(self) -> list[Store]:
        return list(self._stores)


class JsonStoreDataset:
    """Store list read from a JSON array file on every lookup."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> list[Store]:
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            payload = json.loads(raw)
            return [Store.model_validate(item) for item in payload]
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as exc:
            raise StoreDataUnavailable(f"store data unreadable at {self.path}: {exc}") from exc


class StoreLocator:
    """Filters stores by distance and product name; nearest first."""

    def __init__(
        self,
        dataset: StoreDataset,
        config: StoreLocatorConfig | None = None,
        *,
        timeout: float = 5.0,
    ) -> None:
        self.dataset = dataset
        self.config = config or StoreLocatorConfig()
        self.timeout = timeout

    async def find(
        self,
        lat: float,
        lng: float,
        product: str,
        radius_km: float | None = None,
    ) -> list[StoreHit]:
        if radius_km is None:
            radius_km = self.config.default_radius_km
        radius = min(radius_km, self.config.max_radius_km)
        needle = _compact(product)
        stores = await self._load()

        hits: list[StoreHit] = []
        for store in stores:
            distance = haversine_km(lat, lng, store.lat, store.lng)
            if distance > radius:
                continue
            matched = [
                item for item in store.products if needle and needle in _compact(item.name)
            ]
            if not matched:
                continue
            hits.append(
                StoreHit(
                    name=store.name,
                    address=store.address,
                    city=store.city,
                    lat=store.lat,
                    lng=store.lng,
                    distance_km=distance,
                    products=matched,
                )
            )

        hits.sort(key=lambda hit: hit.distance_km)
        logger.info(
            "store lookup for %r within %.1fkm: %d of %d stores",
            product,
            radius,
            len(hits),
            len(stores),
        )
        return hits

    async def _load(self) -> list[Store]:
        try:
            return await asyncio.wait_for(self.dataset.load(), self.timeout)
        except asyncio.TimeoutError as exc:
            raise StoreDataUnavailable(
                f"store data read timed out after {self.timeout:.1f}s"
            ) from exc
        except StoreDataUnavailable:
            raise
        except Exception as exc:
            raise StoreDataUnavailable(f"store data read failed: {exc}") from exc
