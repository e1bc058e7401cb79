"""Amadeus API client: flight offers and hotel offers with OAuth2 and rate limiting."""

import asyncio
import logging
import time
from datetime import date, datetime, timedelta, timezone

import httpx

from wayfinder.config import settings
from wayfinder.services.cost_ledger import CostLedger

logger = logging.getLogger(__name__)

# Luxury level → Amadeus travel class / hotel star ratings
TRAVEL_CLASS = {
    "Luxury": "BUSINESS",
    "Comfort": "PREMIUM_ECONOMY",
}
HOTEL_RATINGS = {
    "Luxury": "4,5",
    "Comfort": "3,4",
}


def travel_class_for(luxury_level: str | None) -> str:
    return TRAVEL_CLASS.get(luxury_level or "", "ECONOMY")


def hotel_ratings_for(luxury_level: str | None) -> str:
    return HOTEL_RATINGS.get(luxury_level or "", "2,3")


class AmadeusClient:
    """Adapter for the Amadeus Self-Service API. Unconfigured → is_available() is False."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client_id = settings.amadeus_client_id if client_id is None else client_id
        self._client_secret = settings.amadeus_client_secret if client_secret is None else client_secret
        self._base_url = base_url or settings.amadeus_base_url
        self._transport = transport
        self._token: str | None = None
        self._token_expires: datetime | None = None
        self._semaphore = asyncio.Semaphore(10)  # 10 req/s rate limit
        self._client: httpx.AsyncClient | None = None
        self._city_codes: dict[str, str] = {}

    def is_available(self) -> bool:
        return bool(self._client_id and self._client_secret)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=30.0,
                transport=self._transport,
            )
        return self._client

    async def _ensure_token(self):
        """Get or refresh OAuth2 token."""
        if self._token and self._token_expires and datetime.now(timezone.utc) < self._token_expires:
            return

        client = await self._get_client()
        for attempt in range(3):
            try:
                resp = await client.post(
                    "/v1/security/oauth2/token",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
                resp.raise_for_status()
                data = resp.json()
                self._token = data["access_token"]
                self._token_expires = datetime.now(timezone.utc) + timedelta(
                    seconds=data.get("expires_in", 1799) - 60
                )
                logger.info("Amadeus token refreshed")
                return
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429 and attempt < 2:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise

    async def _get(self, path: str, params: dict) -> dict:
        async with self._semaphore:
            await self._ensure_token()
            client = await self._get_client()
            resp = await client.get(
                path,
                params=params,
                headers={"Authorization": f"Bearer {self._token}"},
            )
            resp.raise_for_status()
            return resp.json()

    async def resolve_city_code(self, city: str, ledger: CostLedger) -> str | None:
        """City name → IATA city code, cached per client."""
        key = city.strip().lower()
        if key in self._city_codes:
            return self._city_codes[key]
        # Already a code
        if len(city) == 3 and city.isalpha() and city.isupper():
            return city

        started = time.monotonic()
        data = await self._get(
            "/v1/reference-data/locations",
            {"keyword": city.split(",")[0].strip(), "subType": "CITY", "page[limit]": 1},
        )
        await ledger.track_api(
            "amadeus", "location_search",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"city": city},
        )
        locations = data.get("data", [])
        if not locations:
            return None
        code = locations[0].get("iataCode")
        if code:
            self._city_codes[key] = code
        return code

    async def search_flights(
        self,
        origin: str,
        destination_city: str,
        departure_date: date,
        return_date: date,
        ledger: CostLedger,
        *,
        adults: int = 1,
        children: int = 0,
        travel_class: str = "ECONOMY",
        max_results: int = 5,
    ) -> list[dict]:
        """Round-trip offers, normalized to {airline, price_usd, outbound, return}."""
        destination = await self.resolve_city_code(destination_city, ledger)
        if not destination:
            return []

        params = {
            "originLocationCode": origin,
            "destinationLocationCode": destination,
            "departureDate": departure_date.isoformat(),
            "returnDate": return_date.isoformat(),
            "adults": max(adults, 1),
            "travelClass": travel_class,
            "currencyCode": "USD",
            "max": max_results,
        }
        if children:
            params["children"] = children

        started = time.monotonic()
        data = await self._get("/v2/shopping/flight-offers", params)
        offers = [self._parse_offer(o) for o in data.get("data", [])]
        await ledger.track_api(
            "amadeus", "flight_search",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"route": f"{origin}-{destination}", "results": len(offers)},
        )
        return offers

    async def search_hotels(
        self,
        city: str,
        check_in: date,
        check_out: date,
        ledger: CostLedger,
        *,
        adults: int = 1,
        ratings: str = "3,4",
        max_results: int = 3,
    ) -> list[dict]:
        """Hotel offers in a city, normalized to {city, name, rating, price_per_night_usd}."""
        city_code = await self.resolve_city_code(city, ledger)
        if not city_code:
            return []

        started = time.monotonic()
        listing = await self._get(
            "/v1/reference-data/locations/hotels/by-city",
            {"cityCode": city_code, "ratings": ratings},
        )
        await ledger.track_api(
            "amadeus", "hotel_list",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"city": city},
        )
        hotel_ids = [h["hotelId"] for h in listing.get("data", [])[:20] if h.get("hotelId")]
        if not hotel_ids:
            return []

        started = time.monotonic()
        data = await self._get(
            "/v3/shopping/hotel-offers",
            {
                "hotelIds": ",".join(hotel_ids),
                "adults": max(adults, 1),
                "checkInDate": check_in.isoformat(),
                "checkOutDate": check_out.isoformat(),
                "currency": "USD",
            },
        )
        nights = max((check_out - check_in).days, 1)
        hotels = [
            h for h in (self._parse_hotel(item, city, nights) for item in data.get("data", []))
            if h is not None
        ]
        await ledger.track_api(
            "amadeus", "hotel_search",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"city": city, "results": len(hotels)},
        )
        hotels.sort(key=lambda h: h["price_per_night_usd"])
        return hotels[:max_results]

    @staticmethod
    def _parse_offer(offer: dict) -> dict:
        itineraries = offer.get("itineraries", [])

        def leg(itinerary: dict | None) -> dict:
            segments = (itinerary or {}).get("segments", [])
            if not segments:
                return {"route": ""}
            first, last = segments[0], segments[-1]
            return {
                "route": f"{first['departure']['iataCode']}-{last['arrival']['iataCode']}",
                "airline": first.get("carrierCode"),
                "departure": first["departure"].get("at"),
                "arrival": last["arrival"].get("at"),
            }

        return {
            "airline": (offer.get("validatingAirlineCodes") or [None])[0],
            "price_usd": float(offer.get("price", {}).get("grandTotal") or offer.get("price", {}).get("total", 0)),
            "outbound": leg(itineraries[0] if itineraries else None),
            "return": leg(itineraries[1] if len(itineraries) > 1 else None),
        }

    @staticmethod
    def _parse_hotel(item: dict, city: str, nights: int) -> dict | None:
        offers = item.get("offers") or []
        if not offers:
            return None
        hotel = item.get("hotel", {})
        total = float(offers[0].get("price", {}).get("total", 0) or 0)
        rating = hotel.get("rating")
        return {
            "city": city,
            "name": hotel.get("name", "Unknown hotel"),
            "rating": float(rating) if rating else None,
            "price_per_night_usd": round(total / nights, 2),
        }

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
