# homeledger/pipeline.py
"""
Document intake pipeline: ingest -> extract -> resolve -> confirm.

Each stage is an independent unit of work (an HTTP request or a Celery task),
so all intermediate state lives on the Document row. Status changes go
through documents.conditional_update, which turns concurrent transitions into
StatusConflict instead of double-processing.

Nothing here retries. A failed stage leaves the document recoverable and the
stored blob untouched; "retry" is always an explicit reprocess.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import categories, documents, inventory, metrics
from homeledger.config import settings
from homeledger.errors import (
    InvalidUpload,
    NotFound,
    PipelineStageError,
    PreconditionFailed,
    StatusConflict,
)
from homeledger.extraction import VisionExtractor
from homeledger.llm import LLMClient
from homeledger.models import Document, DocumentSource, DocumentStatus, DocumentType, Item, utcnow
from homeledger.resolution import InventoryResolver
from homeledger.schemas import (
    AttachResolution,
    ChildResolution,
    ConfirmOverrides,
    ExtractionResult,
    NewItemResolution,
    resolution_adapter,
)
from homeledger.storage import (
    BlobStore,
    build_storage_path,
    ensure_path_belongs_to,
    get_blob_store,
    resolve_content_type,
    sanitize_filename,
)

logger = logging.getLogger(__name__)

Trigger = Callable[[str], None]

CONFIRMABLE = (DocumentStatus.PENDING, DocumentStatus.READY_FOR_REVIEW)

EMAIL_CONTENT_TYPE = "text/plain"


@dataclass
class ConfirmResult:
    action: str
    item_id: Optional[uuid.UUID]
    event_id: Optional[uuid.UUID]


def infer_document_type(content_type: str, file_name: str) -> str:
    lower = file_name.lower()
    if content_type == "application/pdf":
        for keyword in (DocumentType.MANUAL, DocumentType.WARRANTY, DocumentType.RECEIPT, DocumentType.INVOICE):
            if keyword in lower:
                return keyword
        return DocumentType.OTHER
    if content_type.startswith("image/"):
        if DocumentType.RECEIPT in lower:
            return DocumentType.RECEIPT
        return DocumentType.PHOTO
    return DocumentType.OTHER


def email_extraction(body: str) -> ExtractionResult:
    """Stand-in for vision output: the email text with nothing structured pulled out."""
    return ExtractionResult(
        document_type="email",
        raw_text=body,
        confidence=0.8,
        suggested_item_name="Email Document",
        suggested_category=categories.FALLBACK_SLUG,
    )


def validate_upload(content_type: str, size: int) -> None:
    """Raise InvalidUpload before anything is written."""
    if content_type not in settings.allowed_content_types:
        metrics.uploads_rejected.labels(reason="content_type").inc()
        raise InvalidUpload(
            f"Invalid file type: {content_type}. Allowed: {', '.join(settings.allowed_content_types)}"
        )
    if size > settings.max_upload_size:
        metrics.uploads_rejected.labels(reason="size").inc()
        raise InvalidUpload(f"File too large. Maximum size: {settings.max_upload_size // (1024 * 1024)}MB")
    if size == 0:
        metrics.uploads_rejected.labels(reason="empty").inc()
        raise InvalidUpload("File is empty")


class DocumentPipeline:
    def __init__(
        self,
        session: AsyncSession,
        blob_store: BlobStore,
        extractor,
        resolver,
        trigger: Optional[Trigger] = None,
        email_trigger: Optional[Trigger] = None,
    ):
        self.session = session
        self.blob_store = blob_store
        self.extractor = extractor
        self.resolver = resolver
        self.trigger = trigger
        self.email_trigger = email_trigger

    def _notify(self, document_id: uuid.UUID, source: str = DocumentSource.UPLOAD) -> None:
        # best-effort: the document is already durable, reprocess is the recovery path
        trigger = self.email_trigger if source == DocumentSource.EMAIL else self.trigger
        if trigger is None:
            return
        try:
            trigger(str(document_id))
        except Exception:
            metrics.trigger_failures.inc()
            logger.exception("Failed to trigger processing for document %s", document_id)

    # ---------- ingest ----------

    async def ingest(
        self,
        property_id: uuid.UUID,
        user_id: uuid.UUID,
        file_name: Optional[str],
        data: bytes,
        content_type: Optional[str],
        item_id: Optional[uuid.UUID] = None,
        doc_type: Optional[str] = None,
    ) -> Document:
        file_name = sanitize_filename(file_name)
        content_type = resolve_content_type(content_type, file_name)
        validate_upload(content_type, len(data))
        if doc_type is not None and doc_type not in DocumentType.ALL:
            raise InvalidUpload(f"Invalid document type: {doc_type}")

        await inventory.get_owned_property(self.session, property_id, user_id)
        if item_id is not None:
            item = await self.session.get(Item, item_id)
            if item is None or item.property_id != property_id:
                raise NotFound("Item not found")

        storage_path = build_storage_path(property_id, user_id, file_name)
        # blob first: a storage failure must never leave a row behind
        await self.blob_store.put(storage_path, data, content_type)

        doc = await documents.insert_document(
            self.session,
            property_id=property_id,
            item_id=item_id,
            type=doc_type or infer_document_type(content_type, file_name),
            file_name=file_name,
            storage_path=storage_path,
            content_type=content_type,
            size_bytes=len(data),
            status=DocumentStatus.PENDING,
            source=DocumentSource.UPLOAD,
            created_by_id=user_id,
        )
        await self.session.commit()
        metrics.uploads_total.inc()
        logger.info("Ingested document %s (%s, %d bytes) at %s", doc.id, content_type, len(data), storage_path)

        self._notify(doc.id)
        return doc

    async def ingest_email(
        self,
        property_id: uuid.UUID,
        user_id: uuid.UUID,
        body: str,
        source_email: str,
        subject: Optional[str] = None,
    ) -> Document:
        """
        Intake for a forwarded email. The body is kept as a text/plain blob and
        doubles as the extracted text, so the document skips vision extraction
        and goes straight to resolution.
        """
        body = (body or "").strip()
        data = body.encode("utf-8")
        if not data:
            metrics.uploads_rejected.labels(reason="empty").inc()
            raise InvalidUpload("Email body is empty")
        if len(data) > settings.max_upload_size:
            metrics.uploads_rejected.labels(reason="size").inc()
            raise InvalidUpload(f"Email too large. Maximum size: {settings.max_upload_size // (1024 * 1024)}MB")

        await inventory.get_owned_property(self.session, property_id, user_id)

        file_name = f"email-{utcnow():%Y%m%d-%H%M%S}.txt"
        storage_path = build_storage_path(property_id, user_id, file_name)
        await self.blob_store.put(storage_path, data, EMAIL_CONTENT_TYPE)

        doc = await documents.insert_document(
            self.session,
            property_id=property_id,
            type=DocumentType.OTHER,
            file_name=file_name,
            storage_path=storage_path,
            content_type=EMAIL_CONTENT_TYPE,
            size_bytes=len(data),
            status=DocumentStatus.PENDING,
            extracted_text=body,
            source=DocumentSource.EMAIL,
            source_email=source_email,
            created_by_id=user_id,
        )
        await self.session.commit()
        metrics.uploads_total.inc()
        logger.info("Ingested email document %s from %s (subject=%r)", doc.id, source_email, subject)

        self._notify(doc.id, DocumentSource.EMAIL)
        return doc

    # ---------- extract ----------

    async def extract(self, document_id: uuid.UUID) -> Document:
        current = await documents.get_document(self.session, document_id)
        if current.source == DocumentSource.EMAIL:
            raise PreconditionFailed("Email documents are resolved from their text, not extracted")
        doc = await documents.conditional_update(
            self.session, document_id, [DocumentStatus.PENDING], status=DocumentStatus.PROCESSING
        )
        await self.session.commit()
        try:
            known = await categories.slugs_for_property(self.session, doc.property_id)
            data = await self.blob_store.get(doc.storage_path)
            result: ExtractionResult = await self.extractor.extract(data, doc.content_type, categories=known)
            doc = await documents.conditional_update(
                self.session,
                document_id,
                [DocumentStatus.PROCESSING],
                status=DocumentStatus.READY_FOR_REVIEW,
                extracted_text=result.raw_text,
                extracted_data=result.to_payload(),
                document_date=result.document_date,
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            metrics.extractions_failed.inc()
            logger.exception("Extraction failed for document %s", document_id)
            await self._revert_to_pending(document_id)
            raise PipelineStageError("extract", e, str(document_id)) from e
        metrics.extractions_total.inc()
        logger.info("Document %s ready for review", document_id)
        return doc

    async def _revert_to_pending(self, document_id: uuid.UUID) -> None:
        try:
            await documents.conditional_update(
                self.session, document_id, [DocumentStatus.PROCESSING], status=DocumentStatus.PENDING
            )
            await self.session.commit()
        except StatusConflict:
            await self.session.rollback()
            logger.warning("Document %s left processing by another writer; not reverting", document_id)

    # ---------- resolve ----------

    async def resolve(self, document_id: uuid.UUID):
        doc = await documents.get_document(self.session, document_id)
        if doc.status in DocumentStatus.TERMINAL:
            raise StatusConflict(f"Document is already {doc.status}")
        if not doc.extracted_data:
            raise PreconditionFailed("Document has not been extracted yet")

        try:
            extracted = ExtractionResult.model_validate(doc.extracted_data)
            summary = await inventory.inventory_summary(self.session, doc.property_id)
            result = await self.resolver.resolve(extracted, summary)
        except Exception as e:
            metrics.resolutions_failed.inc()
            logger.exception("Resolution failed for document %s", document_id)
            raise PipelineStageError("resolve", e, str(document_id)) from e

        await documents.conditional_update(
            self.session, document_id, [DocumentStatus.READY_FOR_REVIEW], resolve_data=result.to_payload()
        )
        await self.session.commit()
        return result

    async def resolve_email(self, document_id: uuid.UUID):
        """
        Resolve-only path for email documents: build a stand-in extraction
        from the body, ask the resolver, and land in ready_for_review. A
        failure puts the document back to pending like a failed extract.
        """
        current = await documents.get_document(self.session, document_id)
        if current.source != DocumentSource.EMAIL:
            raise PreconditionFailed("Only email documents skip extraction")
        doc = await documents.conditional_update(
            self.session, document_id, [DocumentStatus.PENDING], status=DocumentStatus.PROCESSING
        )
        await self.session.commit()
        try:
            if not doc.extracted_text:
                raise PreconditionFailed("Email document has no text")
            extracted = email_extraction(doc.extracted_text)
            summary = await inventory.inventory_summary(self.session, doc.property_id)
            result = await self.resolver.resolve(extracted, summary)
            await documents.conditional_update(
                self.session,
                document_id,
                [DocumentStatus.PROCESSING],
                status=DocumentStatus.READY_FOR_REVIEW,
                extracted_data=extracted.to_payload(),
                resolve_data=result.to_payload(),
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            metrics.resolutions_failed.inc()
            logger.exception("Resolution failed for email document %s", document_id)
            await self._revert_to_pending(document_id)
            raise PipelineStageError("resolve", e, str(document_id)) from e
        logger.info("Email document %s ready for review: %s", document_id, result.action)
        return result

    async def process_full(self, document_id: uuid.UUID):
        doc = await documents.get_document(self.session, document_id)
        if doc.source == DocumentSource.EMAIL:
            return await self.resolve_email(document_id)
        await self.extract(document_id)
        return await self.resolve(document_id)

    # ---------- confirm ----------

    async def confirm(self, document_id: uuid.UUID, overrides: Optional[ConfirmOverrides] = None) -> ConfirmResult:
        overrides = overrides or ConfirmOverrides()
        try:
            doc = await documents.conditional_update(
                self.session, document_id, CONFIRMABLE, status=DocumentStatus.CONFIRMED
            )
            extracted = ExtractionResult.model_validate(doc.extracted_data or {})
            if doc.resolve_data:
                resolution = resolution_adapter.validate_python(doc.resolve_data)
            else:
                resolution = NewItemResolution()

            item_id = await self._apply_resolution(doc, resolution, extracted, overrides)
            event_id = None
            if item_id is not None and resolution.suggested_event_type:
                event_id = await self._record_event(doc, resolution, extracted, item_id)

            await self.session.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(item_id=item_id, event_id=event_id)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        metrics.confirmations_total.labels(action=resolution.action).inc()
        logger.info("Confirmed document %s: %s item=%s event=%s", document_id, resolution.action, item_id, event_id)
        return ConfirmResult(action=resolution.action, item_id=item_id, event_id=event_id)

    async def _matched_item(self, doc: Document, item_id: uuid.UUID) -> Item:
        item = await self.session.get(Item, item_id)
        if item is None or item.property_id != doc.property_id:
            raise NotFound("Matched item not found")
        return item

    async def _apply_resolution(self, doc, resolution, extracted: ExtractionResult, overrides: ConfirmOverrides):
        if isinstance(resolution, AttachResolution):
            item = await self._matched_item(doc, resolution.matched_item_id)
            return item.id

        parent_id = None
        if isinstance(resolution, ChildResolution):
            parent_id = (await self._matched_item(doc, resolution.matched_item_id)).id

        known = await categories.slugs_for_property(self.session, doc.property_id)
        amount = extracted.financial.amount
        data = {
            "name": overrides.name or extracted.suggested_item_name or extracted.product_name
            or f"Item from {doc.file_name}",
            "category": categories.pick_category(known, overrides.category, extracted.suggested_category),
            "space_id": overrides.space_id,
            "parent_id": parent_id,
            "manufacturer": overrides.manufacturer or extracted.equipment.manufacturer,
            "model": overrides.model or extracted.equipment.model,
            "serial_number": overrides.serial_number or extracted.equipment.serial_number,
            "purchase_price": amount if amount and amount > 0 else None,
            "acquired_date": extracted.document_date,
            "warranty_expires": extracted.warranty.end_date,
            "notes": overrides.notes,
        }
        item = await inventory.create_item(self.session, doc.property_id, data)
        return item.id

    async def _record_event(self, doc, resolution, extracted: ExtractionResult, item_id: uuid.UUID) -> uuid.UUID:
        vendor = extracted.financial.vendor
        amount = extracted.financial.amount
        cost = None
        if isinstance(resolution, AttachResolution) and amount and amount > 0:
            cost = amount
        event = await inventory.create_event(self.session, item_id, {
            "type": resolution.suggested_event_type,
            "date": inventory.event_timestamp(extracted.document_date),
            "description": f"{doc.file_name} - {vendor}" if vendor else doc.file_name,
            "cost": cost,
        })
        return event.id

    # ---------- recovery / removal ----------

    async def reprocess(self, document_id: uuid.UUID) -> Document:
        source = (await documents.get_document(self.session, document_id)).source
        cleared = {"extracted_data": None, "resolve_data": None, "document_date": None}
        # an email's text is its content, not a derived result
        if source != DocumentSource.EMAIL:
            cleared["extracted_text"] = None
        doc = await documents.conditional_update(
            self.session, document_id, CONFIRMABLE, status=DocumentStatus.PENDING, **cleared
        )
        await self.session.commit()
        logger.info("Document %s reset to pending for reprocessing", document_id)
        self._notify(document_id, source)
        return doc

    async def discard(self, document_id: uuid.UUID) -> Document:
        doc = await documents.conditional_update(
            self.session, document_id, CONFIRMABLE, status=DocumentStatus.DISCARDED
        )
        await self.session.commit()
        logger.info("Document %s discarded", document_id)
        return doc

    async def signed_url(self, property_id: uuid.UUID, storage_path: str, ttl: Optional[int] = None) -> str:
        ensure_path_belongs_to(storage_path, property_id)
        return await self.blob_store.signed_url(storage_path, ttl or settings.signed_url_ttl)

    async def delete_file(self, property_id: uuid.UUID, storage_path: str) -> None:
        ensure_path_belongs_to(storage_path, property_id)
        await self.blob_store.delete(storage_path)

    async def delete(self, document_id: uuid.UUID) -> None:
        doc = await documents.get_document(self.session, document_id)
        await self.delete_file(doc.property_id, doc.storage_path)
        await documents.delete_document_row(self.session, document_id)
        await self.session.commit()
        logger.info("Deleted document %s", document_id)


def build_pipeline(
    session: AsyncSession,
    http: Optional[httpx.AsyncClient] = None,
    trigger: Optional[Trigger] = None,
    email_trigger: Optional[Trigger] = None,
    blob_store: Optional[BlobStore] = None,
) -> DocumentPipeline:
    llm = LLMClient(http=http)
    return DocumentPipeline(
        session=session,
        blob_store=blob_store or get_blob_store(),
        extractor=VisionExtractor(llm),
        resolver=InventoryResolver(llm),
        trigger=trigger,
        email_trigger=email_trigger,
    )
