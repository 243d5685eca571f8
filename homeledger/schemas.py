# homeledger/schemas.py
"""
Pydantic types for everything that crosses a boundary: AI collaborator
payloads (validated here instead of trusted downstream) and the JSON bodies of
the HTTP API. Wire format is camelCase; Python attributes stay snake_case.
"""
import re
import uuid
from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from homeledger.models import EventType

# Money columns are NUMERIC(12, 2)
MAX_MONEY = 10 ** 10


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _lenient_date(v):
    # models answer "YYYY-MM-DD", "null", or prose; anything unparseable is dropped
    if v is None or isinstance(v, date):
        return v
    try:
        return date.fromisoformat(str(v).strip()[:10])
    except ValueError:
        return None


def _lenient_float(v):
    if v is None or isinstance(v, (int, float)):
        return v
    cleaned = re.sub(r"[^0-9.\-]", "", str(v))
    try:
        return float(cleaned)
    except ValueError:
        return None


def _blank_to_none(v):
    if isinstance(v, str) and v.strip().lower() in ("", "null", "none", "n/a", "unknown"):
        return None
    return v


# ---------- vision extraction ----------

class EquipmentInfo(CamelModel):
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None

    @field_validator("manufacturer", "model", "serial_number", mode="before")
    @classmethod
    def _blanks(cls, v):
        return _blank_to_none(v)


class FinancialInfo(CamelModel):
    vendor: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None

    @field_validator("vendor", "currency", mode="before")
    @classmethod
    def _blanks(cls, v):
        return _blank_to_none(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        v = _lenient_float(v)
        # a misread total would overflow the money column at confirm time
        if v is not None and not abs(v) < MAX_MONEY:
            return None
        return v


class WarrantyInfo(CamelModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    terms: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _lenient_date(v)


class ExtractionResult(CamelModel):
    """Best-effort guess at a document's contents. Every field may be absent."""
    document_type: Optional[str] = None
    confidence: Optional[float] = None
    raw_text: Optional[str] = None
    document_date: Optional[date] = Field(None, alias="date")
    product_name: Optional[str] = None
    equipment: EquipmentInfo = Field(default_factory=EquipmentInfo)
    financial: FinancialInfo = Field(default_factory=FinancialInfo)
    warranty: WarrantyInfo = Field(default_factory=WarrantyInfo)
    suggested_item_name: Optional[str] = None
    suggested_category: Optional[str] = None

    @field_validator("document_type", "product_name", "suggested_item_name", "suggested_category", mode="before")
    @classmethod
    def _blanks(cls, v):
        return _blank_to_none(v)

    @field_validator("document_date", mode="before")
    @classmethod
    def _date(cls, v):
        return _lenient_date(v)

    @field_validator("equipment", "financial", "warranty", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        v = _lenient_float(v)
        if v is None:
            return None
        return min(max(v, 0.0), 1.0)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------- inventory resolution ----------

class InventoryEntry(CamelModel):
    id: uuid.UUID
    name: str
    category: str
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None


class _ResolutionBase(CamelModel):
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    suggested_event_type: Optional[str] = None

    @field_validator("suggested_event_type", mode="before")
    def _known_event_type(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        v = str(v).strip().lower()
        return v if v in EventType.ALL else None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class NewItemResolution(_ResolutionBase):
    action: Literal["NEW_ITEM"] = "NEW_ITEM"
    matched_item_id: Optional[uuid.UUID] = None

    @field_validator("matched_item_id", mode="before")
    def _ignore_garbage_id(cls, v):
        # irrelevant for a new item, so a malformed value is not worth failing over
        try:
            return uuid.UUID(str(v)) if v else None
        except ValueError:
            return None


class AttachResolution(_ResolutionBase):
    action: Literal["ATTACH_TO_ITEM"]
    matched_item_id: uuid.UUID


class ChildResolution(_ResolutionBase):
    action: Literal["CHILD_OF_ITEM"]
    matched_item_id: uuid.UUID


ResolutionResult = Annotated[
    Union[NewItemResolution, AttachResolution, ChildResolution],
    Field(discriminator="action"),
]
resolution_adapter: TypeAdapter = TypeAdapter(ResolutionResult)


class MaintenanceSuggestion(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    interval_months: int = Field(..., ge=1, le=120)


# ---------- API bodies ----------

class PropertyBase(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    year_built: Optional[int] = Field(None, ge=1800, le=2100)
    square_feet: Optional[int] = Field(None, gt=0)
    property_type: Optional[str] = None
    purchase_date: Optional[date] = None
    purchase_price: Optional[float] = Field(None, gt=0, lt=MAX_MONEY)


class PropertyCreate(PropertyBase):
    name: str = Field(..., min_length=1)


class PropertyUpdate(PropertyBase):
    pass


class PropertyOut(PropertyBase):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class SpaceCreate(CamelModel):
    name: str = Field(..., min_length=1)


class SpaceUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)


class SpaceOut(CamelModel):
    id: uuid.UUID
    property_id: uuid.UUID
    name: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class ItemBase(CamelModel):
    space_id: Optional[uuid.UUID] = None
    parent_id: Optional[uuid.UUID] = None
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    acquired_date: Optional[date] = None
    warranty_expires: Optional[date] = None
    purchase_price: Optional[float] = Field(None, gt=0, lt=MAX_MONEY)
    notes: Optional[str] = None


class ItemCreate(ItemBase):
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)


class ItemUpdate(ItemBase):
    pass


class ItemOut(ItemBase):
    id: uuid.UUID
    property_id: uuid.UUID
    name: str
    category: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class EventBase(CamelModel):
    type: Optional[str] = None
    date: Optional[datetime] = None
    description: Optional[str] = None
    cost: Optional[float] = Field(None, gt=0, lt=MAX_MONEY)
    performed_by: Optional[str] = None

    @field_validator("type")
    def _known_type(cls, v):
        if v is not None and v not in EventType.ALL:
            raise ValueError(f"type must be one of {', '.join(EventType.ALL)}")
        return v


class EventCreate(EventBase):
    type: str
    date: datetime


class EventUpdate(EventBase):
    pass


class EventOut(EventBase):
    id: uuid.UUID
    item_id: uuid.UUID
    type: str
    date: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None


class DocumentOut(CamelModel):
    id: uuid.UUID
    property_id: uuid.UUID
    item_id: Optional[uuid.UUID] = None
    event_id: Optional[uuid.UUID] = None
    type: str
    file_name: str
    storage_path: str
    content_type: str
    size_bytes: int
    status: str
    extracted_text: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    resolve_data: Optional[Dict[str, Any]] = None
    document_date: Optional[date] = None
    source: str
    source_email: Optional[str] = None
    created_at: datetime


class UploadOut(CamelModel):
    id: uuid.UUID
    status: str
    file_name: str
    message: str


class SignedUrlOut(CamelModel):
    signed_url: str
    expires_in: int


class ConfirmOverrides(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    space_id: Optional[uuid.UUID] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    notes: Optional[str] = None


class ConfirmOut(CamelModel):
    action: str
    item_id: Optional[uuid.UUID] = None
    event_id: Optional[uuid.UUID] = None


class MaintenanceTaskBase(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    interval_months: Optional[int] = Field(None, ge=1, le=120)
    next_due_date: Optional[date] = None


class MaintenanceTaskCreate(MaintenanceTaskBase):
    item_id: Optional[uuid.UUID] = None
    name: str = Field(..., min_length=1, max_length=255)
    interval_months: int = Field(..., ge=1, le=120)
    next_due_date: date


class MaintenanceTaskUpdate(MaintenanceTaskBase):
    pass


class MaintenanceTaskOut(MaintenanceTaskBase):
    id: uuid.UUID
    property_id: uuid.UUID
    item_id: Optional[uuid.UUID] = None
    name: str
    interval_months: int
    next_due_date: date
    last_completed_at: Optional[date] = None
    source: str
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def overdue(self) -> bool:
        return self.next_due_date < date.today()


class CompleteTaskIn(CamelModel):
    completed_on: date = Field(..., alias="date")
    cost: Optional[float] = Field(None, gt=0, lt=MAX_MONEY)
    performed_by: Optional[str] = None
    description: Optional[str] = None


class GenerateOut(CamelModel):
    success: bool
    method: Literal["queued", "inline"]
    count: Optional[int] = None


class EmailIngestIn(CamelModel):
    body: str = Field(..., min_length=1)
    source_email: str = Field(..., max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    subject: Optional[str] = Field(None, max_length=998)


class CategoryCreate(CamelModel):
    slug: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9-]+$")
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(None, max_length=50)


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    icon: Optional[str] = Field(None, max_length=50)


class CategoryOut(CamelModel):
    id: uuid.UUID
    slug: str
    name: str
    icon: Optional[str] = None
    is_system: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


# ---------- chat ----------

class ConversationCreate(CamelModel):
    title: Optional[str] = Field(None, max_length=200)
    item_id: Optional[uuid.UUID] = None


class ConversationUpdate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)


class MessageCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=4000)


class MessageOut(CamelModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    role: str
    content: str
    created_at: datetime


class ConversationOut(CamelModel):
    id: uuid.UUID
    property_id: uuid.UUID
    item_id: Optional[uuid.UUID] = None
    title: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ConversationSummaryOut(ConversationOut):
    last_message: Optional[MessageOut] = None
    message_count: int = 0


class ConversationDetailOut(ConversationOut):
    messages: List[MessageOut] = []


class ChatReplyOut(CamelModel):
    user_message: MessageOut
    assistant_message: MessageOut


class ApiKeyCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)


class ApiKeyOut(CamelModel):
    id: uuid.UUID
    name: str
    last_used_at: Optional[datetime] = None
    created_at: datetime


class ApiKeyWithSecret(ApiKeyOut):
    secret: str


class DueTasksByUser(CamelModel):
    user_id: uuid.UUID
    task_ids: List[uuid.UUID]
