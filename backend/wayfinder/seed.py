"""Seed trip templates and the model directory. Idempotent: existing rows are left alone."""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wayfinder.database import async_session_factory, create_tables, engine
from wayfinder.models.template import AIModel, TripTemplate
from wayfinder.services.provider_config import DEFAULT_MODEL_CATALOG

logger = logging.getLogger(__name__)

# ── Templates ──────────────────────────────────────────────────────────────────

TEMPLATES = [
    {
        "id": "heritage",
        "name": "Heritage & Ancestry",
        "description": "Visit the places your family came from.",
        "icon": "🏰",
        "search_placeholder": "My family name is O'Brien and my grandmother was from County Clare...",
        "query_template": "{topic} ancestral homeland {region}, {surname} family history heritage sites, "
                          "{region} heritage towns to visit",
        "destination_criteria": "Pick towns and regions with a documented link to the traveller's family "
                                "history, surname or stated ancestry.",
        "research_synthesis_prompt": "Explain for each destination how it connects to the traveller's heritage "
                                     "and which archives, churches or museums are worth visiting.",
        "options_prompt": "Create {number_of_options} heritage trip options for travellers flying from "
                          "{departure_airport} at a {luxury_level} comfort level.",
        "daily_activity_prompt": "Plan each day around heritage sites, local archives and time to explore, "
                                 "at a {activity_level} pace.",
        "number_of_options": 3,
        "display_order": 1,
    },
    {
        "id": "food",
        "name": "Culinary Journeys",
        "description": "Eat your way through a region.",
        "icon": "🍝",
        "search_placeholder": "Two weeks of pasta, wine and markets in Italy...",
        "query_template": "best food destinations {topic} {region}, {region} culinary towns markets cooking classes",
        "destination_criteria": "Pick places known for their food culture: markets, regional dishes, "
                                "producers and cooking schools.",
        "research_synthesis_prompt": "For each destination name the signature dishes and food experiences.",
        "options_prompt": "Create {number_of_options} food-focused trip options at a {luxury_level} comfort level.",
        "daily_activity_prompt": "Plan each day around meals, markets and food tours at a {activity_level} pace.",
        "number_of_options": 3,
        "display_order": 2,
    },
    {
        "id": "adventure",
        "name": "Outdoor Adventure",
        "description": "Hiking, coastlines and national parks.",
        "icon": "🥾",
        "search_placeholder": "A week of hiking in Patagonia...",
        "query_template": "best {topic} destinations {region}, {region} hiking national parks adventure towns",
        "destination_criteria": "Pick bases close to trails, parks and outdoor activities.",
        "research_synthesis_prompt": "For each destination list the headline outdoor activities and best season.",
        "options_prompt": "Create {number_of_options} adventure trip options at a {luxury_level} comfort level.",
        "daily_activity_prompt": "Plan active days with rest where needed, at a {activity_level} pace.",
        "number_of_options": 2,
        "display_order": 3,
    },
]


async def seed(session_factory: async_sessionmaker[AsyncSession] = async_session_factory):
    async with session_factory() as db:
        added = 0
        for data in TEMPLATES:
            if await db.get(TripTemplate, data["id"]) is None:
                db.add(TripTemplate(**data))
                added += 1

        for model in DEFAULT_MODEL_CATALOG.models:
            if await db.get(AIModel, model.id) is None:
                db.add(AIModel(
                    id=model.id,
                    provider=model.provider,
                    model_id=model.model_id,
                    display_name=model.display_name,
                    input_cost_per_1m=model.input_cost_per_1m,
                    output_cost_per_1m=model.output_cost_per_1m,
                    priority=model.priority,
                    is_default=model.id == DEFAULT_MODEL_CATALOG.default_id,
                ))
                added += 1

        await db.commit()
        if added:
            logger.info(f"Seeded {added} templates/models")


async def main():
    await create_tables(engine)
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
