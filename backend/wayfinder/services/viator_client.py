"""Viator partner API client: tour and activity search."""

import logging
import time

import httpx

from wayfinder.config import settings
from wayfinder.services.cost_ledger import CostLedger

logger = logging.getLogger(__name__)


class ViatorClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = settings.viator_api_key if api_key is None else api_key
        self._base_url = base_url or settings.viator_base_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=30.0,
                transport=self._transport,
                headers={
                    "Accept": "application/json",
                    "exp-api-key": self._api_key,
                },
            )
        return self._client

    async def search_tours(
        self,
        destination: str,
        ledger: CostLedger,
        *,
        tags: list[str] | None = None,
        limit: int = 3,
    ) -> list[dict]:
        """Products for a destination, normalized to {city, name, duration, cost_usd, rating, url}."""
        body: dict = {
            "filtering": {"destination": destination},
            "currency": "USD",
            "pagination": {"offset": 0, "limit": max(limit, 1) * 3},
        }
        if tags:
            body["filtering"]["tags"] = tags

        started = time.monotonic()
        client = await self._get_client()
        resp = await client.post("/products/search", json=body)
        resp.raise_for_status()
        products = resp.json().get("products", [])
        await ledger.track_api(
            "viator", "product_search",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"destination": destination, "results": len(products)},
        )

        tours = [self._parse_product(p, destination) for p in products]
        tours.sort(key=lambda t: t["rating"] or 0, reverse=True)
        return tours[:limit]

    @staticmethod
    def _parse_product(product: dict, city: str) -> dict:
        duration = product.get("duration") or {}
        minutes = duration.get("fixedDurationInMinutes") or duration.get("variableDurationFromMinutes")
        if minutes:
            duration_text = f"{minutes // 60}h" if minutes >= 60 else f"{minutes}m"
        else:
            duration_text = None
        pricing = (product.get("pricing") or {}).get("summary") or {}
        rating = (
            (product.get("reviews") or {}).get("combinedAverageRating")
            or (product.get("rating") or {}).get("average")
        )
        return {
            "city": city,
            "name": product.get("title", ""),
            "duration": duration_text,
            "cost_usd": float(pricing.get("fromPrice") or 0),
            "rating": rating,
            "url": product.get("productUrl"),
        }

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
