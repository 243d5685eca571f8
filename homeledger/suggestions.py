# homeledger/suggestions.py
import logging
import uuid
from datetime import date
from typing import Dict, List

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import inventory
from homeledger.config import settings
from homeledger.errors import SuggestionError
from homeledger.llm import LLMClient, LLMError
from homeledger.maintenance import MaintenanceScheduler
from homeledger.models import Event, EventType, Item
from homeledger.schemas import MaintenanceSuggestion

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5
RECENT_EVENTS = 10

SYSTEM_PROMPT = """You are a home maintenance expert. Given a household item and its recent history, suggest recurring maintenance tasks the owner should schedule.

Only suggest tasks that genuinely apply to this kind of item. Suggest at most 5.

Return JSON only (no markdown):
{
  "suggestions": [
    {"name": "short task name", "description": "what to do", "intervalMonths": 1-120}
  ]
}"""


def describe_item(item: Item, recent_events: List[Event]) -> str:
    lines = [f"Item: {item.name}", f"Category: {item.category}"]
    if item.manufacturer:
        lines.append(f"Manufacturer: {item.manufacturer}")
    if item.model:
        lines.append(f"Model: {item.model}")
    if item.acquired_date:
        lines.append(f"Acquired: {item.acquired_date.isoformat()}")
    if recent_events:
        lines.append("Recent events:")
        for ev in recent_events:
            lines.append(f"- {ev.date.date().isoformat()} {ev.type}: {ev.description or ''}".rstrip())
    return "\n".join(lines)


class MaintenanceAdvisor:
    def __init__(self, llm: LLMClient, model: str = None):
        self.llm = llm
        self.model = model or settings.reasoning_model

    async def suggest(self, item: Item, recent_events: List[Event]) -> List[MaintenanceSuggestion]:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": describe_item(item, recent_events)},
        ]
        try:
            payload = await self.llm.chat_json(messages, model=self.model)
        except LLMError as e:
            logger.exception("Maintenance suggestion call failed for item %s", item.id)
            raise SuggestionError(f"Maintenance advisor call failed: {e}")
        suggestions = []
        for raw in payload.get("suggestions") or []:
            try:
                suggestions.append(MaintenanceSuggestion.model_validate(raw))
            except ValidationError as e:
                # one bad entry should not sink the rest
                logger.warning("Dropping malformed suggestion %r: %s", raw, e)
        return suggestions[:MAX_SUGGESTIONS]


async def generate_for_item(session: AsyncSession, advisor: MaintenanceAdvisor, item: Item, user_id: uuid.UUID):
    """Ask the advisor for a plan and store it as ai_suggested tasks."""
    events = await inventory.list_events(session, item.id, limit=RECENT_EVENTS)
    suggestions = await advisor.suggest(item, events)
    last_done: Dict[str, date] = {}
    for ev in events:
        if ev.type == EventType.MAINTENANCE and ev.description:
            last_done.setdefault(ev.description.strip().lower(), ev.date.date())
    scheduler = MaintenanceScheduler(session)
    return await scheduler.create_from_suggestions(item.property_id, user_id, item.id, suggestions, last_done)
