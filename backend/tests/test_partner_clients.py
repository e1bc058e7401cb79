"""
Tests for the Amadeus, Viator and Firecrawl adapters against mocked HTTP.
"""

import json
from datetime import date

import httpx
import pytest

from wayfinder.services.amadeus_client import AmadeusClient, hotel_ratings_for, travel_class_for
from wayfinder.services.firecrawl_client import ContentEnrichmentClient, extract_summary, pick_booking_url
from wayfinder.services.viator_client import ViatorClient


FLIGHT_OFFER = {
    "validatingAirlineCodes": ["EI"],
    "price": {"grandTotal": "812.40", "total": "800.00"},
    "itineraries": [
        {"segments": [
            {"departure": {"iataCode": "JFK", "at": "2026-06-01T18:00"},
             "arrival": {"iataCode": "DUB", "at": "2026-06-02T06:00"}, "carrierCode": "EI"},
        ]},
        {"segments": [
            {"departure": {"iataCode": "DUB", "at": "2026-06-11T11:00"},
             "arrival": {"iataCode": "LHR", "at": "2026-06-11T12:20"}, "carrierCode": "EI"},
            {"departure": {"iataCode": "LHR", "at": "2026-06-11T14:00"},
             "arrival": {"iataCode": "JFK", "at": "2026-06-11T17:00"}, "carrierCode": "BA"},
        ]},
    ],
}


def amadeus_handler(seen: list[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/v1/security/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 1799})
        assert request.headers["Authorization"] == "Bearer tok"
        if request.url.path == "/v1/reference-data/locations":
            return httpx.Response(200, json={"data": [{"iataCode": "DUB"}]})
        if request.url.path == "/v2/shopping/flight-offers":
            assert request.url.params["destinationLocationCode"] == "DUB"
            return httpx.Response(200, json={"data": [FLIGHT_OFFER]})
        return httpx.Response(404)
    return handler


class TestAmadeusClient:
    async def test_flight_search(self, ledger):
        seen: list[str] = []
        client = AmadeusClient("id", "secret", "https://amadeus.test", transport=httpx.MockTransport(amadeus_handler(seen)))

        offers = await client.search_flights("JFK", "Dublin", date(2026, 6, 1), date(2026, 6, 11), ledger)
        await client.close()

        assert offers == [{
            "airline": "EI",
            "price_usd": 812.40,
            "outbound": {"route": "JFK-DUB", "airline": "EI", "departure": "2026-06-01T18:00", "arrival": "2026-06-02T06:00"},
            "return": {"route": "DUB-JFK", "airline": "EI", "departure": "2026-06-11T11:00", "arrival": "2026-06-11T17:00"},
        }]
        assert ledger.api_cost_usd == pytest.approx(0.002)
        assert seen[0] == "/v1/security/oauth2/token"

    async def test_token_and_city_code_are_reused(self, ledger):
        seen: list[str] = []
        client = AmadeusClient("id", "secret", "https://amadeus.test", transport=httpx.MockTransport(amadeus_handler(seen)))

        await client.resolve_city_code("Dublin", ledger)
        await client.resolve_city_code("dublin ", ledger)
        await client.close()

        assert seen == ["/v1/security/oauth2/token", "/v1/reference-data/locations"]

    async def test_iata_code_passes_through(self, ledger):
        client = AmadeusClient("id", "secret", "https://amadeus.test")
        assert await client.resolve_city_code("DUB", ledger) == "DUB"
        assert ledger.entries == []

    def test_unconfigured(self):
        assert not AmadeusClient(client_id="", client_secret="").is_available()

    def test_luxury_mappings(self):
        assert travel_class_for("Luxury") == "BUSINESS"
        assert travel_class_for(None) == "ECONOMY"
        assert hotel_ratings_for("Comfort") == "3,4"
        assert hotel_ratings_for("Budget") == "2,3"


class TestViatorClient:
    async def test_search_tours(self, ledger):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"products": [
                {
                    "title": "Cliffs of Moher Day Trip",
                    "duration": {"fixedDurationInMinutes": 600},
                    "pricing": {"summary": {"fromPrice": 79.0}},
                    "reviews": {"combinedAverageRating": 4.6},
                    "productUrl": "https://www.viator.com/moher",
                },
                {
                    "title": "Galway Food Walk",
                    "duration": {"variableDurationFromMinutes": 45},
                    "pricing": {"summary": {"fromPrice": 55}},
                    "reviews": {"combinedAverageRating": 4.9},
                },
            ]})

        client = ViatorClient("key", "https://viator.test/partner", transport=httpx.MockTransport(handler))
        tours = await client.search_tours("Galway", ledger, limit=2)
        await client.close()

        assert [t["name"] for t in tours] == ["Galway Food Walk", "Cliffs of Moher Day Trip"]
        assert tours[0]["duration"] == "45m"
        assert tours[1] == {
            "city": "Galway",
            "name": "Cliffs of Moher Day Trip",
            "duration": "10h",
            "cost_usd": 79.0,
            "rating": 4.6,
            "url": "https://www.viator.com/moher",
        }
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/partner/products/search"
        assert request.headers["exp-api-key"] == "key"
        assert json.loads(request.content)["filtering"]["destination"] == "Galway"
        assert ledger.api_cost_usd == pytest.approx(0.0005)


class TestContentEnrichmentClient:
    async def test_scrape(self, ledger):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/scrape"
            assert request.headers["Authorization"] == "Bearer fc-key"
            return httpx.Response(200, json={
                "success": True,
                "data": {"markdown": "# Cork\nThe **rebel** county.", "metadata": {"title": "Cork guide"}},
            })

        client = ContentEnrichmentClient("fc-key", "https://firecrawl.test/v1", transport=httpx.MockTransport(handler))
        page = await client.scrape("https://example.com/cork", ledger)
        await client.close()

        assert page.title == "Cork guide"
        assert page.summary == "Cork\nThe rebel county."
        assert ledger.api_cost_usd == pytest.approx(0.01)

    async def test_scrape_failure_is_not_charged(self, store, ledger, trip_id):
        client = ContentEnrichmentClient(
            "fc-key", "https://firecrawl.test/v1",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        assert await client.scrape("https://example.com/cork", ledger) is None
        await client.close()

        assert ledger.api_cost_usd == 0
        assert store.events(trip_id) == ["enrichment_failed"]

    @pytest.mark.parametrize("body", [
        {"success": True, "data": ["not", "an", "object"]},
        {"success": True, "data": "markdown"},
        ["unexpected"],
    ])
    async def test_malformed_scrape_body_is_a_failure(self, store, ledger, trip_id, body):
        client = ContentEnrichmentClient(
            "fc-key", "https://firecrawl.test/v1",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
        )
        assert await client.scrape("https://example.com/cork", ledger) is None
        await client.close()

        assert ledger.api_cost_usd == 0
        assert store.events(trip_id) == ["enrichment_failed"]

    @pytest.mark.parametrize("body", [
        {"success": True, "data": {"web": []}},
        {"success": True, "data": "none"},
        "unexpected",
    ])
    async def test_malformed_search_body_is_a_failure(self, store, ledger, trip_id, body):
        client = ContentEnrichmentClient(
            "fc-key", "https://firecrawl.test/v1",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
        )
        assert await client.find_booking_url("Hayfield Manor", "Cork", "hotel", ledger) is None
        await client.close()

        assert ledger.api_cost_usd == 0
        assert store.events(trip_id) == ["enrichment_failed"]

    async def test_non_object_search_results_skipped(self, ledger):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": ["junk", None, {"url": "https://www.viator.com/gaol"}]})

        client = ContentEnrichmentClient("fc-key", "https://firecrawl.test/v1", transport=httpx.MockTransport(handler))
        results = await client.search("Cork Gaol tour", ledger)
        await client.close()

        assert [r["url"] for r in results] == ["https://www.viator.com/gaol"]
        assert ledger.api_cost_usd == pytest.approx(0.01)

    async def test_find_booking_url_prefers_booking_domains(self, ledger):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["query"].startswith("Hayfield Manor Cork hotel")
            return httpx.Response(200, json={"data": [
                {"url": "https://blog.example.com/hayfield-review"},
                {"url": "https://www.booking.com/hotel/ie/hayfield-manor.html"},
            ]})

        client = ContentEnrichmentClient("fc-key", "https://firecrawl.test/v1", transport=httpx.MockTransport(handler))
        url = await client.find_booking_url("Hayfield Manor", "Cork", "hotel", ledger)
        await client.close()

        assert url == "https://www.booking.com/hotel/ie/hayfield-manor.html"

    async def test_unconfigured_is_a_no_op(self, ledger):
        client = ContentEnrichmentClient(api_key="")
        assert await client.scrape("https://example.com", ledger) is None
        assert await client.enrich_urls(["a", "b"], ledger) == [None, None]
        assert ledger.entries == []


class TestHelpers:
    def test_pick_booking_url_falls_back_to_first(self):
        results = [{"url": "https://a.example/x"}, {"url": "https://b.example/y"}]
        assert pick_booking_url(results, "tour") == "https://a.example/x"
        assert pick_booking_url([], "tour") is None

    def test_pick_booking_url_tour_domains(self):
        results = [{"url": "https://www.hotels.com/x"}, {"url": "https://www.getyourguide.com/y"}]
        assert pick_booking_url(results, "tour") == "https://www.getyourguide.com/y"

    def test_extract_summary_strips_markdown(self):
        text = extract_summary("![map](m.png)\n## Sights\nSee [the castle](https://x) and `Blarney`.")
        assert text == "Sights\nSee the castle and Blarney."

    def test_extract_summary_truncates_on_word_boundary(self):
        text = extract_summary("word " * 100, max_chars=50)
        assert text.endswith("...")
        assert len(text) <= 53
        assert not text[:-3].endswith(" ")
