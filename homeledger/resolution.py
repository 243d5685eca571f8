# homeledger/resolution.py
import json
import logging
from typing import List

from pydantic import ValidationError

from homeledger.config import settings
from homeledger.errors import ResolutionError
from homeledger.llm import LLMClient, LLMError
from homeledger.schemas import ExtractionResult, InventoryEntry, NewItemResolution, resolution_adapter

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are helping organize a home inventory. Given extraction data from a document and the user's existing inventory, determine how to handle this document.

Actions:
1. NEW_ITEM - This document is for equipment not currently in the inventory. Create a new item.
2. ATTACH_TO_ITEM - This document relates to an existing item (e.g., receipt, manual, warranty photo for something already tracked).
3. CHILD_OF_ITEM - This document is for a component of an existing item (e.g., a filter for a furnace, a bulb for a fixture).

Consider manufacturer, model, serial number, and product name matches. Be conservative - only match to existing items when confident.

Return JSON only (no markdown):
{
  "action": "NEW_ITEM|ATTACH_TO_ITEM|CHILD_OF_ITEM",
  "matchedItemId": "uuid or null",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation of your decision",
  "suggestedEventType": "installation|maintenance|repair|inspection|replacement|observation or null"
}"""


class InventoryResolver:
    def __init__(self, llm: LLMClient, model: str = None):
        self.llm = llm
        self.model = model or settings.reasoning_model

    async def resolve(self, extracted: ExtractionResult, inventory: List[InventoryEntry]):
        inventory_json = json.dumps([e.model_dump(mode="json", by_alias=True) for e in inventory], indent=2)
        user_prompt = (
            f"EXISTING INVENTORY:\n{inventory_json}\n\n"
            f"EXTRACTED FROM NEW DOCUMENT:\n{json.dumps(extracted.to_payload(), indent=2)}\n\n"
            "Determine how to handle this document."
        )
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]
        logger.info("Calling resolver %s with %d inventory items", self.model, len(inventory))
        try:
            payload = await self.llm.chat_json(messages, model=self.model)
        except LLMError as e:
            raise ResolutionError(f"Resolver call failed: {e}")
        return validate_resolution(payload, inventory)


def validate_resolution(payload, inventory: List[InventoryEntry]):
    """
    Validate a raw resolver reply. ATTACH/CHILD must name an item that was
    actually offered; anything else is malformed.
    """
    if isinstance(payload, dict) and isinstance(payload.get("action"), str):
        payload = dict(payload, action=payload["action"].strip().upper())
    try:
        result = resolution_adapter.validate_python(payload)
    except ValidationError as e:
        raise ResolutionError(f"Malformed resolution payload: {e}")
    if not isinstance(result, NewItemResolution):
        known = {e.id for e in inventory}
        if result.matched_item_id not in known:
            raise ResolutionError(f"Resolver matched unknown item {result.matched_item_id}")
    logger.info("Resolution: action=%s confidence=%s matched=%s",
                result.action, result.confidence, result.matched_item_id)
    return result
