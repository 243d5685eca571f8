"""Hand-written stand-ins for the pipeline's collaborators."""
import uuid

from homeledger.errors import ExtractionError, NotFound, ResolutionError, StorageError
from homeledger.llm import LLMError
from homeledger.models import Property
from homeledger.schemas import ExtractionResult, NewItemResolution, resolution_adapter


class FakeBlobStore:
    def __init__(self, fail_put=False, fail_get=False):
        self.objects = {}
        self.puts = []
        self.deleted = []
        self.fail_put = fail_put
        self.fail_get = fail_get

    async def put(self, path, data, content_type):
        self.puts.append((path, content_type))
        if self.fail_put:
            raise StorageError("bucket unavailable")
        self.objects[path] = data

    async def get(self, path):
        if self.fail_get:
            raise StorageError("bucket unavailable")
        if path not in self.objects:
            raise NotFound("File not found")
        return self.objects[path]

    async def delete(self, path):
        self.deleted.append(path)
        self.objects.pop(path, None)

    async def signed_url(self, path, ttl_seconds):
        return f"https://blobs.test/{path}?ttl={ttl_seconds}"


class FakeLLM:
    """Canned reply: a dict for chat_json, a str for chat_completion. None raises LLMError."""

    def __init__(self, reply=None):
        self.reply = reply
        self.calls = []

    async def chat_json(self, messages, model, max_tokens=1024):
        self.calls.append((model, messages))
        if self.reply is None:
            raise LLMError("upstream returned 503")
        return self.reply

    async def chat_completion(self, messages, model, max_tokens=1024):
        self.calls.append((model, messages))
        if self.reply is None:
            raise LLMError("upstream returned 503")
        return self.reply


class FakeExtractor:
    def __init__(self, payload=None, error=None):
        self.payload = payload or {}
        self.error = error
        self.calls = []
        self.categories = []

    async def extract(self, data, content_type, categories=None):
        self.calls.append((len(data), content_type))
        self.categories.append(categories)
        if self.error is not None:
            raise self.error
        return ExtractionResult.model_validate(self.payload)


class FakeResolver:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.inventories = []

    async def resolve(self, extracted, inventory):
        self.inventories.append(inventory)
        if self.error is not None:
            raise self.error
        if self.payload is None:
            return NewItemResolution()
        return resolution_adapter.validate_python(self.payload)


def failing_extractor():
    return FakeExtractor(error=ExtractionError("vision model returned garbage"))


def failing_resolver():
    return FakeResolver(error=ResolutionError("reasoning model timed out"))


FURNACE_EXTRACTION = {
    "documentType": "equipment_plate",
    "confidence": 0.92,
    "rawText": "CARRIER 59SC5A080E17 SN 2319A12345",
    "date": "2023-05-10",
    "productName": "Gas Furnace",
    "equipment": {"manufacturer": "Carrier", "model": "59SC5A080E17", "serialNumber": "2319A12345"},
    "financial": {"vendor": "Acme HVAC", "amount": 2450.0, "currency": "USD"},
    "warranty": {"startDate": "2023-05-10", "endDate": "2033-05-10", "terms": "10 year parts"},
    "suggestedItemName": "Carrier Furnace",
    "suggestedCategory": "hvac",
}


async def seed_property(session, user_id=None, name="Maple House"):
    prop = Property(user_id=user_id or uuid.uuid4(), name=name)
    session.add(prop)
    await session.commit()
    return prop
