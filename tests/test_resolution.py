import asyncio
import uuid

import pytest

from homeledger.errors import ResolutionError
from homeledger.llm import LLMError, parse_json_reply
from homeledger.resolution import InventoryResolver, validate_resolution
from homeledger.schemas import (
    AttachResolution,
    ChildResolution,
    ExtractionResult,
    InventoryEntry,
    NewItemResolution,
)
from tests.fakes import FURNACE_EXTRACTION, FakeLLM

FURNACE_ID = uuid.uuid4()
INVENTORY = [
    InventoryEntry(id=FURNACE_ID, name="Furnace", category="hvac", manufacturer="Carrier"),
]


def test_attach_to_known_item():
    result = validate_resolution(
        {"action": "ATTACH_TO_ITEM", "matchedItemId": str(FURNACE_ID), "confidence": 0.9}, INVENTORY
    )
    assert isinstance(result, AttachResolution)
    assert result.matched_item_id == FURNACE_ID


def test_action_is_case_insensitive():
    result = validate_resolution({"action": "child_of_item", "matchedItemId": str(FURNACE_ID)}, INVENTORY)
    assert isinstance(result, ChildResolution)


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "ATTACH_TO_ITEM"},
        {"action": "ATTACH_TO_ITEM", "matchedItemId": None},
        {"action": "CHILD_OF_ITEM", "matchedItemId": "not-a-uuid"},
        {"action": "MERGE", "matchedItemId": str(FURNACE_ID)},
        {"matchedItemId": str(FURNACE_ID)},
        ["NEW_ITEM"],
    ],
)
def test_malformed_payloads_are_rejected(payload):
    with pytest.raises(ResolutionError):
        validate_resolution(payload, INVENTORY)


def test_match_outside_inventory_is_rejected():
    with pytest.raises(ResolutionError):
        validate_resolution({"action": "ATTACH_TO_ITEM", "matchedItemId": str(uuid.uuid4())}, INVENTORY)


def test_new_item_ignores_matched_id_and_unknown_event_type():
    result = validate_resolution(
        {"action": "NEW_ITEM", "matchedItemId": "garbage", "suggestedEventType": "Teleportation"}, INVENTORY
    )
    assert isinstance(result, NewItemResolution)
    assert result.matched_item_id is None
    assert result.suggested_event_type is None


def test_event_type_is_normalised():
    result = validate_resolution({"action": "NEW_ITEM", "suggestedEventType": " Installation "}, [])
    assert result.suggested_event_type == "installation"


def test_resolver_sends_inventory_and_validates_reply():
    llm = FakeLLM({"action": "ATTACH_TO_ITEM", "matchedItemId": str(FURNACE_ID), "reasoning": "same serial"})
    resolver = InventoryResolver(llm, model="reasoner")

    result = asyncio.run(resolver.resolve(ExtractionResult.model_validate(FURNACE_EXTRACTION), INVENTORY))

    assert result.reasoning == "same serial"
    model, messages = llm.calls[0]
    assert model == "reasoner"
    assert str(FURNACE_ID) in messages[1]["content"]
    assert "2319A12345" in messages[1]["content"]


def test_resolver_wraps_transport_failure():
    resolver = InventoryResolver(FakeLLM(None), model="reasoner")
    with pytest.raises(ResolutionError):
        asyncio.run(resolver.resolve(ExtractionResult(), INVENTORY))


# ---------- extraction payload parsing ----------

def test_extraction_result_is_lenient():
    result = ExtractionResult.model_validate({
        "documentType": "receipt",
        "confidence": "1.7",
        "date": "2024-03-05T10:00:00",
        "equipment": None,
        "financial": {"vendor": "N/A", "amount": "$1,299.99"},
        "warranty": {"endDate": "two years"},
        "suggestedItemName": "null",
    })
    assert result.confidence == 1.0
    assert result.document_date.isoformat() == "2024-03-05"
    assert result.equipment.manufacturer is None
    assert result.financial.vendor is None
    assert result.financial.amount == 1299.99
    assert result.warranty.end_date is None
    assert result.suggested_item_name is None


@pytest.mark.parametrize(
    "amount,expected",
    [
        ("9999999999.99", 9999999999.99),
        (1e10, None),
        ("12000000000", None),
        (-1e12, None),
        (float("inf"), None),
    ],
)
def test_extracted_amount_out_of_money_range_is_dropped(amount, expected):
    result = ExtractionResult.model_validate({"financial": {"amount": amount}})
    assert result.financial.amount == expected


def test_extraction_payload_round_trips_in_camel_case():
    payload = ExtractionResult.model_validate(FURNACE_EXTRACTION).to_payload()
    assert payload["suggestedItemName"] == "Carrier Furnace"
    assert payload["date"] == "2023-05-10"
    assert payload["warranty"]["endDate"] == "2033-05-10"


# ---------- model reply parsing ----------

@pytest.mark.parametrize(
    "text",
    [
        '{"action": "NEW_ITEM"}',
        '```json\n{"action": "NEW_ITEM"}\n```',
        'Sure! Here is the result:\n{"action": "NEW_ITEM"}\nLet me know.',
    ],
)
def test_parse_json_reply(text):
    assert parse_json_reply(text) == {"action": "NEW_ITEM"}


@pytest.mark.parametrize("text", ["", "no json here", "[1, 2]", '{"action": '])
def test_parse_json_reply_rejects_non_objects(text):
    with pytest.raises(LLMError):
        parse_json_reply(text)
