# itinerary_engine/llm.py
import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAI

from itinerary_engine.agents.scheduler import ASSISTED_SLOT_CEILINGS, FULL_DAY_HOURS, serialize_pool
from itinerary_engine.config import Settings, get_logger, load_settings
from itinerary_engine.errors import PlanningAssistError
from itinerary_engine.schemas import CandidatePOI

logger = get_logger(__name__)

PLANNER_SYSTEM = "You are a travel itinerary expert who creates realistic, executable travel plans."

PLANNER_TEMPLATE = """Create a realistic {days}-day itinerary for {destination}.

User preferences: {preferences}

Available POIs with estimated visit durations (hours):
{pois}

HARD RULES:
1. Maximum 8 hours of activities per day, excluding meals.
2. A POI lasting {full_day:.0f}h or more is a full-day anchor: schedule it alone on its day.
3. Morning up to {morning:.0f}h, afternoon up to {afternoon:.0f}h, evening up to {evening:.0f}h.
4. Leave about 30 minutes of travel between consecutive POIs.
5. Use each placeId at most once across all days.
6. Spread the user's preferences across ALL days, not just day 1.
7. Only use placeIds from the list above.

Respond ONLY in JSON with the schema:
{{"days": [{{"day": 1, "title": "Day 1: <theme>", "description": "<focus of the day>",
  "morningIds": ["placeId"], "afternoonIds": ["placeId"], "eveningIds": ["placeId"],
  "feasibilityScore": 0.9}}]}}
feasibilityScore (0-1) says how realistic the day is.
"""

DURATION_SYSTEM = """You estimate how long tourists typically spend at a place.
Respond ONLY in JSON: {"hours": <number between 0.25 and 12>}.
Include typical queueing time. Do not explain."""

DURATION_TEMPLATE = """Place: {name}
Category: {category}
Types: {types}
Description: {description}"""


def _make_client(settings: Settings) -> Optional[OpenAI]:
    if not settings.openai_api_key:
        return None
    return OpenAI(api_key=settings.openai_api_key)


def _complete_json(client: OpenAI, model: str, system: str, user: str, temperature: float) -> Dict[str, Any]:
    resp = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        temperature=temperature,
        response_format={"type": "json_object"},
    )
    raw = resp.choices[0].message.content
    try:
        parsed = json.loads(raw or "")
    except (TypeError, ValueError) as exc:
        raise PlanningAssistError("LLM response was not valid JSON") from exc
    if not isinstance(parsed, (dict, list)):
        raise PlanningAssistError(f"LLM returned a JSON {type(parsed).__name__}, expected an object")
    return parsed if isinstance(parsed, dict) else {"days": parsed}


class OpenAIPlanningAssistant:
    """Asks the hosted model to assign pool POIs to day buckets."""

    def __init__(self, settings: Optional[Settings] = None, *, client: Optional[OpenAI] = None, temperature: float = 0.7):
        self.settings = settings or load_settings()
        self.client = client if client is not None else _make_client(self.settings)
        self.temperature = temperature

    def build_prompt(
        self,
        pois: Sequence[CandidatePOI],
        day_count: int,
        destination: str,
        preferences: Sequence[str],
    ) -> str:
        return PLANNER_TEMPLATE.format(
            days=day_count,
            destination=destination,
            preferences=", ".join(preferences) if preferences else "none stated",
            pois=json.dumps(serialize_pool(pois), indent=2, ensure_ascii=False),
            full_day=FULL_DAY_HOURS,
            morning=ASSISTED_SLOT_CEILINGS["morning"],
            afternoon=ASSISTED_SLOT_CEILINGS["afternoon"],
            evening=ASSISTED_SLOT_CEILINGS["evening"],
        )

    async def plan(
        self,
        pois: Sequence[CandidatePOI],
        day_count: int,
        destination: str,
        preferences: Sequence[str],
    ) -> List[Dict[str, Any]]:
        if self.client is None:
            raise PlanningAssistError("OPENAI_API_KEY not configured")

        prompt = self.build_prompt(pois, day_count, destination, preferences)
        logger.info("Invoking LLM model %s to plan %d day(s) from %d POIs", self.settings.model, day_count, len(pois))
        payload = await asyncio.to_thread(
            _complete_json, self.client, self.settings.model, PLANNER_SYSTEM, prompt, self.temperature
        )

        days = payload.get("days")
        if not isinstance(days, list):
            raise PlanningAssistError("LLM plan has no 'days' array")
        logger.info("LLM plan parsed with %d day entr%s", len(days), "y" if len(days) == 1 else "ies")
        return days


class OpenAIDurationAdvisor:
    """Duration second opinion for POIs the lookup tables can only guess at."""

    def __init__(self, settings: Optional[Settings] = None, *, client: Optional[OpenAI] = None):
        self.settings = settings or load_settings()
        self.client = client if client is not None else _make_client(self.settings)

    async def estimate_hours(self, poi: Any) -> float:
        if self.client is None:
            raise PlanningAssistError("OPENAI_API_KEY not configured")
        category = getattr(poi, "category", None)
        prompt = DURATION_TEMPLATE.format(
            name=getattr(poi, "name", ""),
            category=getattr(category, "value", category) or "unknown",
            types=", ".join(getattr(poi, "types", None) or []) or "unknown",
            description=getattr(poi, "description", None) or "n/a",
        )
        payload = await asyncio.to_thread(
            _complete_json, self.client, self.settings.model, DURATION_SYSTEM, prompt, 0.2
        )
        try:
            return float(payload["hours"])
        except (KeyError, TypeError, ValueError) as exc:
            raise PlanningAssistError("LLM duration estimate missing a numeric 'hours'") from exc
