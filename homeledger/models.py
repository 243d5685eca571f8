# homeledger/models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

# JSONB on postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")
Money = Numeric(12, 2, asdecimal=False)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    READY_FOR_REVIEW = "ready_for_review"
    CONFIRMED = "confirmed"
    DISCARDED = "discarded"

    ALL = (PENDING, PROCESSING, READY_FOR_REVIEW, CONFIRMED, DISCARDED)
    TERMINAL = (CONFIRMED, DISCARDED)


class DocumentType:
    PHOTO = "photo"
    RECEIPT = "receipt"
    MANUAL = "manual"
    WARRANTY = "warranty"
    INVOICE = "invoice"
    OTHER = "other"

    ALL = (PHOTO, RECEIPT, MANUAL, WARRANTY, INVOICE, OTHER)


class DocumentSource:
    UPLOAD = "upload"
    EMAIL = "email"


class EventType:
    INSTALLATION = "installation"
    MAINTENANCE = "maintenance"
    REPAIR = "repair"
    INSPECTION = "inspection"
    REPLACEMENT = "replacement"
    OBSERVATION = "observation"

    ALL = (INSTALLATION, MAINTENANCE, REPAIR, INSPECTION, REPLACEMENT, OBSERVATION)


class TaskStatus:
    ACTIVE = "active"
    PAUSED = "paused"
    DISMISSED = "dismissed"


class TaskSource:
    USER_CREATED = "user_created"
    AI_SUGGESTED = "ai_suggested"


class MessageRole:
    USER = "user"
    ASSISTANT = "assistant"


class Category(Base):
    """System rows have user_id NULL and is_system set; custom rows belong to one user."""
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("slug", "user_id", name="uq_categories_slug_user"),)
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    icon = Column(String(50), nullable=True)
    is_system = Column(Boolean, nullable=False, default=False, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Property(Base):
    __tablename__ = "properties"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)   # owner
    name = Column(String, nullable=False)
    street_address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    country = Column(String, nullable=True)
    year_built = Column(Integer, nullable=True)
    square_feet = Column(Integer, nullable=True)
    property_type = Column(String, nullable=True)
    purchase_date = Column(Date, nullable=True)
    purchase_price = Column(Money, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Space(Base):
    __tablename__ = "spaces"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(Uuid(as_uuid=True), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Item(Base):
    __tablename__ = "items"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(Uuid(as_uuid=True), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    space_id = Column(Uuid(as_uuid=True), ForeignKey("spaces.id", ondelete="SET NULL"), nullable=True)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, default="other")
    manufacturer = Column(String, nullable=True)
    model = Column(String, nullable=True)
    serial_number = Column(String, nullable=True)
    acquired_date = Column(Date, nullable=True)
    warranty_expires = Column(Date, nullable=True)
    purchase_price = Column(Money, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Event(Base):
    __tablename__ = "events"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    description = Column(Text, nullable=True)
    cost = Column(Money, nullable=True)
    performed_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Document(Base):
    __tablename__ = "documents"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(Uuid(as_uuid=True), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("items.id", ondelete="SET NULL"), nullable=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    type = Column(String, nullable=False, default=DocumentType.OTHER)
    file_name = Column(String, nullable=False)
    storage_path = Column(String, nullable=False, unique=True)   # <property>/<user>/<uuid>/<file>
    content_type = Column(String, nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    status = Column(String, nullable=False, default=DocumentStatus.PENDING, index=True)
    extracted_text = Column(Text, nullable=True)
    extracted_data = Column(JSONType, nullable=True)
    resolve_data = Column(JSONType, nullable=True)
    document_date = Column(Date, nullable=True)
    source = Column(String, nullable=False, default=DocumentSource.UPLOAD)
    source_email = Column(String, nullable=True)
    created_by_id = Column(Uuid(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class MaintenanceTask(Base):
    __tablename__ = "maintenance_tasks"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(Uuid(as_uuid=True), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("items.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    interval_months = Column(Integer, nullable=False)
    next_due_date = Column(Date, nullable=False, index=True)
    last_completed_at = Column(Date, nullable=True)
    source = Column(String, nullable=False, default=TaskSource.USER_CREATED)
    status = Column(String, nullable=False, default=TaskStatus.ACTIVE)
    created_by_id = Column(Uuid(as_uuid=True), nullable=False)
    updated_by_id = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ApiKey(Base):
    __tablename__ = "api_keys"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String, nullable=False)
    key_hash = Column(String(64), nullable=False, unique=True)   # sha256 hex of the secret
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class Conversation(Base):
    __tablename__ = "conversations"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(Uuid(as_uuid=True), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("items.id", ondelete="SET NULL"), nullable=True)   # item-focused chat
    title = Column(String, nullable=True)
    created_by_id = Column(Uuid(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Message(Base):
    __tablename__ = "messages"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
