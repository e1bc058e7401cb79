"""Prompt text shared by the research and build pipelines."""

import re

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

INTERPRET_SYSTEM_PROMPT = """You plan web research for a travel assistant. Given a traveller's request
and a trip theme, write 2-4 targeted web search queries that will surface candidate destinations,
and extract the constraints the destinations must satisfy.

Respond ONLY with valid JSON, no markdown, no preamble:
{
    "queries": ["search query 1", "search query 2"],
    "constraints": {
        "topic": "short phrase for what the traveller is after",
        "region": "country or region if stated, else null",
        "duration": "trip length if stated, else null",
        "interests": "comma separated interests, else null"
    }
}"""

SYNTHESIS_FORMAT = """Respond ONLY with a valid JSON object, no additional text:
{
    "summary": "2-3 sentence narrative of what the research found",
    "destinations": [
        {
            "name": "City/Town Name",
            "geographic_context": "Region, Country",
            "key_sites": ["Site 1", "Site 2", "Site 3"],
            "travel_logistics_note": "Nearest airport, travel tips",
            "rationale": "Why this destination fits the request",
            "estimated_days": 3
        }
    ]
}
Generate 2-4 destinations that match the request."""

OPTIONS_FORMAT = """Respond ONLY with a valid JSON array, no additional text:
[
    {
        "option_index": 1,
        "flights": {
            "outbound": {"route": "JFK-DUB", "airline": "Aer Lingus", "departure": "2025-06-01T18:00"},
            "return": {"route": "DUB-JFK", "airline": "Aer Lingus", "departure": "2025-06-08T11:00"},
            "price_usd": 850
        },
        "hotels": [{"city": "Dublin", "name": "Hotel Name", "rating": 4, "nights": 3, "cost_per_night_usd": 180}],
        "tours": [{"city": "Dublin", "name": "Tour Name", "duration": "3h", "cost_usd": 60}],
        "itinerary_highlights": "One paragraph describing this option"
    }
]"""

ITINERARY_FORMAT = """Respond ONLY with a valid JSON array, one element per day, no additional text:
[
    {
        "day": 1,
        "city": "City",
        "title": "Short title for the day",
        "activities": [{"time": "09:00", "activity": "What to do", "notes": "Optional tip"}]
    }
]"""

CHAT_SYSTEM_PROMPT = """You are a friendly, concise travel planning assistant. Answer the traveller's
question using the trip context provided. Keep replies under 150 words."""

REFINE_SYSTEM_PROMPT = """You help a traveller refine a list of candidate destinations. Apply their
request to the current list: remove, add or replace destinations as asked, keeping the same theme.

Respond ONLY with valid JSON, no markdown:
{
    "action": "remove" | "add" | "replace" | "none",
    "destinations": [ ...the full updated list, same fields as the current list... ],
    "message": "one or two sentences telling the traveller what changed"
}"""


def interpolate(template: str | None, context: dict) -> str:
    """Fill {placeholder} fields from context; unknown placeholders become empty."""
    if not template:
        return ""

    def _sub(match: re.Match) -> str:
        value = context.get(match.group(1))
        return "" if value is None else str(value)

    return re.sub(r"[ \t]{2,}", " ", _PLACEHOLDER_RE.sub(_sub, template)).strip()
