# Categorization assistant: proposes category/priority and writes resolution summaries

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

import openai as openai_mod
from openai import AsyncOpenAI

from complaint_portal.config import AI_API_KEY, AI_API_URL, AI_MODEL
from complaint_portal.db import run_db
from complaint_portal.models import Category, Priority

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = Category.OTHER
DEFAULT_PRIORITY = Priority.MEDIUM


@dataclass
class Categorization:
    category: Category = DEFAULT_CATEGORY
    priority: Priority = DEFAULT_PRIORITY
    # True when the values are the fixed defaults rather than a real proposal
    fallback: bool = True


def truncate_text(text: str, max_chars: int = 3000) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class DefaultAssistant:
    """Used when no assistant key is configured. Always returns the defaults."""

    async def categorize(self, title: str, description: str) -> Categorization:
        return Categorization()

    async def summarize_resolution(self, title: str, description: str, details: str) -> str:
        return details or "Complaint resolved successfully."


class OpenAIAssistant(DefaultAssistant):
    def __init__(self, client: AsyncOpenAI, model: str = AI_MODEL):
        self.client = client
        self.model = model

    async def chat(self, messages: list, json_mode: bool = False, max_retries: int = 3) -> Optional[str]:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        for attempt in range(max_retries):
            try:
                resp = await self.client.chat.completions.create(
                    model=self.model, messages=messages, **kwargs)
                return resp.choices[0].message.content.strip()
            except (openai_mod.RateLimitError, openai_mod.APIConnectionError) as e:
                logger.warning("Assistant retry %d: %s", attempt + 1, e)
                if attempt == max_retries - 1:
                    raise
                await asyncio.sleep(2 ** attempt)
        return None

    async def categorize(self, title: str, description: str) -> Categorization:
        prompt = (
            "Categorize this municipal complaint and assign a priority.\n\n"
            f'Title: "{truncate_text(title, 200)}"\n'
            f'Description: "{truncate_text(description, 2800)}"\n\n'
            "Return a JSON object with exactly these keys:\n"
            '- "category": one of [infrastructure, sanitation, water_supply, electricity, '
            "traffic, waste_management, parks, security, other]\n"
            '- "priority": one of [low, medium, high]\n\n'
            "Category guide: infrastructure=roads/bridges/buildings, sanitation=public toilets/cleanliness, "
            "water_supply=water quality/supply, electricity=power outages/electrical faults, "
            "traffic=signals/signs/congestion, waste_management=garbage collection/recycling, "
            "parks=parks/playgrounds/green spaces, security=safety issues, other=anything else.\n"
            "Priority guide: high=urgent/safety/critical infrastructure, medium=important but not urgent, "
            "low=minor or non-critical."
        )
        try:
            result = await self.chat([
                {"role": "system", "content": "You are a complaint categorization assistant."},
                {"role": "user", "content": prompt}], json_mode=True)
            if result:
                data = json.loads(result)
                category = data.get("category")
                priority = data.get("priority")
                category_ok = category in [c.value for c in Category]
                priority_ok = priority in [p.value for p in Priority]
                return Categorization(
                    category=Category(category) if category_ok else DEFAULT_CATEGORY,
                    priority=Priority(priority) if priority_ok else DEFAULT_PRIORITY,
                    fallback=not category_ok)
        except Exception as e:
            logger.error("Categorization error: %s", e)
        return Categorization()

    async def summarize_resolution(self, title: str, description: str, details: str) -> str:
        prompt = (
            "Generate a professional resolution summary for this complaint.\n\n"
            f"Title: {truncate_text(title, 200)}\n"
            f"Description: {truncate_text(description, 2000)}\n"
            f"Resolution details: {truncate_text(details, 2000)}\n\n"
            "Write 2-3 sentences a citizen can understand."
        )
        try:
            result = await self.chat([
                {"role": "system", "content": "You write short complaint resolution summaries."},
                {"role": "user", "content": prompt}])
            if result:
                return result
        except Exception as e:
            logger.error("Resolution summary error: %s", e)
        return await super().summarize_resolution(title, description, details)


def build_assistant():
    if not AI_API_KEY:
        logger.warning("AI_API_KEY not configured, using default categorization")
        return DefaultAssistant()
    client = AsyncOpenAI(api_key=AI_API_KEY, base_url=AI_API_URL) if AI_API_URL \
        else AsyncOpenAI(api_key=AI_API_KEY)
    logger.info("Categorization assistant: %s", AI_MODEL)
    return OpenAIAssistant(client)


_assistant = None

def get_assistant():
    global _assistant
    if _assistant is None:
        _assistant = build_assistant()
    return _assistant


async def route_to_department(db, category: str) -> Optional[str]:
    """First active department handling ``category``, if any."""
    try:
        dept = await run_db(db.departments.find_one, {"category": category, "is_active": True})
    except Exception as e:
        logger.error("Department routing error: %s", e)
        return None
    return dept["_id"] if dept else None
