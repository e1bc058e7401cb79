"""Firecrawl client: page scraping and booking-URL discovery for hotels and tours."""

import logging
import re
import time
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from wayfinder.config import settings
from wayfinder.services.bounded_pipeline import run_bounded
from wayfinder.services.cost_ledger import CostLedger

logger = logging.getLogger(__name__)

HOTEL_DOMAINS = (
    # Official chains first
    "marriott.com", "hilton.com", "ihg.com", "hyatt.com", "accor.com",
    "fourseasons.com", "ritzcarlton.com", "wyndhamhotels.com",
    "choicehotels.com", "bestwestern.com", "radissonhotels.com",
    # Aggregators
    "booking.com", "hotels.com", "expedia.com",
)
TOUR_DOMAINS = ("viator.com", "getyourguide.com", "tripadvisor.com", "klook.com")

SUMMARY_MAX_CHARS = 2000


@dataclass
class ScrapedPage:
    url: str
    title: str
    markdown: str

    @property
    def summary(self) -> str:
        return extract_summary(self.markdown)


def extract_summary(markdown: str, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    """Markdown → plain text, truncated at a word boundary."""
    if not markdown:
        return ""
    text = re.sub(r"!\[.*?\]\(.*?\)", "", markdown)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"#{1,6}\s*", "", text)
    text = re.sub(r"\*\*([^*]+)\*\*", r"\1", text)
    text = re.sub(r"\*([^*]+)\*", r"\1", text)
    text = re.sub(r"`([^`]+)`", r"\1", text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()

    if len(text) > max_chars:
        text = text[:max_chars]
        last_space = text.rfind(" ")
        if last_space > max_chars * 0.8:
            text = text[:last_space]
        text += "..."
    return text


def pick_booking_url(results: list[dict], kind: str) -> str | None:
    """Prefer known booking domains in order; otherwise the first result."""
    urls = [r["url"] for r in results if r.get("url")]
    if not urls:
        return None
    preferred = HOTEL_DOMAINS if kind == "hotel" else TOUR_DOMAINS
    for domain in preferred:
        for url in urls:
            host = (urlparse(url).hostname or "").removeprefix("www.")
            if domain in host:
                return url
    return urls[0]


class ContentEnrichmentClient:
    """Adapter for the Firecrawl v1 API. Unconfigured → every call is a no-op."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = settings.firecrawl_api_key if api_key is None else api_key
        self._base_url = base_url or settings.firecrawl_base_url
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
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        return self._client

    async def scrape(self, url: str, ledger: CostLedger, *, only_main_content: bool = True) -> ScrapedPage | None:
        """Scrape one page as markdown. Failures are logged and not charged."""
        if not self.is_available():
            return None

        started = time.monotonic()
        try:
            client = await self._get_client()
            resp = await client.post(
                "/scrape",
                json={"url": url, "formats": ["markdown"], "onlyMainContent": only_main_content},
            )
            resp.raise_for_status()
            payload = resp.json()
            if not isinstance(payload, dict):
                raise ValueError(f"unexpected response body: {type(payload).__name__}")
            if not payload.get("success", True):
                raise ValueError(payload.get("error") or "scrape unsuccessful")
            data = payload.get("data") or {}
            if not isinstance(data, dict):
                raise ValueError(f"unexpected scrape data: {type(data).__name__}")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Firecrawl scrape failed for {url}: {e}")
            await ledger.log(
                "enrichment_failed",
                provider="firecrawl",
                duration_ms=int((time.monotonic() - started) * 1000),
                details={"operation": "scrape", "url": url, "error": str(e)},
            )
            return None

        metadata = data.get("metadata")
        page = ScrapedPage(
            url=url,
            title=str(metadata.get("title") or "") if isinstance(metadata, dict) else "",
            markdown=str(data.get("markdown") or ""),
        )
        await ledger.track_api(
            "firecrawl",
            "scrape",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"url": url, "chars": len(page.markdown)},
        )
        return page

    async def search(self, query: str, ledger: CostLedger, limit: int = 3) -> list[dict]:
        if not self.is_available():
            return []

        started = time.monotonic()
        try:
            client = await self._get_client()
            resp = await client.post("/search", json={"query": query, "limit": limit})
            resp.raise_for_status()
            payload = resp.json()
            data = (payload.get("data") or []) if isinstance(payload, dict) else None
            if not isinstance(data, list):
                raise ValueError(f"unexpected search data: {type(data).__name__}")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Firecrawl search failed for {query!r}: {e}")
            await ledger.log(
                "enrichment_failed",
                provider="firecrawl",
                duration_ms=int((time.monotonic() - started) * 1000),
                details={"operation": "search", "query": query, "error": str(e)},
            )
            return []

        results = [
            {"url": str(r.get("url") or ""), "title": r.get("title", ""), "description": r.get("description", "")}
            for r in data
            if isinstance(r, dict)
        ]
        await ledger.track_api(
            "firecrawl",
            "search",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"query": query, "results": len(results)},
        )
        return results

    async def find_booking_url(self, name: str, city: str, kind: str, ledger: CostLedger) -> str | None:
        if kind == "hotel":
            query = f"{name} {city} hotel booking official site"
        else:
            query = f"{name} {city} tour booking viator tripadvisor"
        results = await self.search(query, ledger, limit=3)
        return pick_booking_url(results, kind)

    async def enrich_urls(
        self, urls: list[str], ledger: CostLedger, concurrency: int | None = None
    ) -> list[ScrapedPage | None]:
        """Scrape several URLs, at most ``concurrency`` at a time, in input order."""
        if not self.is_available() or not urls:
            return [None] * len(urls)
        return await run_bounded(
            urls,
            lambda url: self.scrape(url, ledger),
            concurrency or settings.enrichment_concurrency,
        )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
