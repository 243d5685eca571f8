# homeledger/document_routes.py
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import documents, inventory
from homeledger.config import settings
from homeledger.db import get_async_session
from homeledger.dependencies import get_current_user, get_pipeline
from homeledger.errors import InvalidUpload
from homeledger.models import DocumentStatus
from homeledger.pipeline import DocumentPipeline
from homeledger.schemas import ConfirmOut, ConfirmOverrides, DocumentOut, EmailIngestIn, SignedUrlOut, UploadOut
from homeledger.storage import LocalBlobStore, get_blob_store, resolve_content_type, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])


@router.get("/properties/{property_id}/documents", response_model=List[DocumentOut])
async def list_property_documents(
    property_id: uuid.UUID,
    status: Optional[str] = None,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_property(session, property_id, user_id)
    if status is not None and status not in DocumentStatus.ALL:
        raise InvalidUpload(f"Unknown status filter: {status}")
    return await documents.list_documents(session, property_id, status)


@router.post("/properties/{property_id}/documents/upload", response_model=UploadOut, status_code=201)
async def upload_document(
    property_id: uuid.UUID,
    file: UploadFile = File(...),
    doc_type: Optional[str] = Form(None, alias="type"),
    item_id: Optional[uuid.UUID] = Query(None, alias="itemId"),
    user_id: uuid.UUID = Depends(get_current_user),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    # read at most one byte past the limit; the pipeline rejects anything that long
    data = await file.read(settings.max_upload_size + 1)
    doc = await pipeline.ingest(
        property_id=property_id,
        user_id=user_id,
        file_name=file.filename,
        data=data,
        content_type=file.content_type,
        item_id=item_id,
        doc_type=doc_type,
    )
    return UploadOut(
        id=doc.id,
        status=doc.status,
        file_name=doc.file_name,
        message="Document uploaded. Processing will start shortly." if settings.auto_process
        else "Document uploaded. Call /process to extract it.",
    )


@router.post("/properties/{property_id}/documents/email", response_model=UploadOut, status_code=201)
async def ingest_email(
    property_id: uuid.UUID,
    body: EmailIngestIn,
    user_id: uuid.UUID = Depends(get_current_user),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    doc = await pipeline.ingest_email(
        property_id=property_id,
        user_id=user_id,
        body=body.body,
        source_email=body.source_email,
        subject=body.subject,
    )
    return UploadOut(
        id=doc.id,
        status=doc.status,
        file_name=doc.file_name,
        message="Email received. Matching will start shortly." if settings.auto_process
        else "Email received. Call /process to match it.",
    )


@router.get("/documents/{document_id}", response_model=DocumentOut)
async def get_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await inventory.get_owned_document(session, document_id, user_id)


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    await inventory.get_owned_document(session, document_id, user_id)
    await pipeline.delete(document_id)
    return Response(status_code=204)


@router.get("/documents/{document_id}/url", response_model=SignedUrlOut)
async def get_document_url(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    doc = await inventory.get_owned_document(session, document_id, user_id)
    url = await pipeline.signed_url(doc.property_id, doc.storage_path, settings.signed_url_ttl)
    return SignedUrlOut(signed_url=url, expires_in=settings.signed_url_ttl)


@router.post("/documents/{document_id}/extract", response_model=DocumentOut)
async def extract_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    await inventory.get_owned_document(session, document_id, user_id)
    return await pipeline.extract(document_id)


@router.post("/documents/{document_id}/resolve")
async def resolve_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    await inventory.get_owned_document(session, document_id, user_id)
    result = await pipeline.resolve(document_id)
    return result.to_payload()


@router.post("/documents/{document_id}/resolve-email")
async def resolve_email_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    await inventory.get_owned_document(session, document_id, user_id)
    result = await pipeline.resolve_email(document_id)
    return result.to_payload()


@router.post("/documents/{document_id}/process", response_model=DocumentOut)
async def process_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    await inventory.get_owned_document(session, document_id, user_id)
    await pipeline.process_full(document_id)
    return await documents.get_document(session, document_id)


@router.post("/documents/{document_id}/confirm", response_model=ConfirmOut)
async def confirm_document(
    document_id: uuid.UUID,
    overrides: Optional[ConfirmOverrides] = Body(None),
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    await inventory.get_owned_document(session, document_id, user_id)
    result = await pipeline.confirm(document_id, overrides)
    return ConfirmOut(action=result.action, item_id=result.item_id, event_id=result.event_id)


@router.post("/documents/{document_id}/reprocess", response_model=DocumentOut)
async def reprocess_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    await inventory.get_owned_document(session, document_id, user_id)
    return await pipeline.reprocess(document_id)


@router.post("/documents/{document_id}/discard", response_model=DocumentOut)
async def discard_document(
    document_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    await inventory.get_owned_document(session, document_id, user_id)
    return await pipeline.discard(document_id)


@router.get("/blobs/{path:path}")
async def download_blob(path: str, expires: int, signature: str):
    """Serves local-backend signed URLs. MinIO URLs point straight at the bucket."""
    store = get_blob_store()
    if not isinstance(store, LocalBlobStore):
        raise HTTPException(status_code=404, detail="Not found")
    if not verify_signature(path, expires, signature, store.secret):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    data = await store.get(path)
    return Response(content=data, media_type=resolve_content_type(None, path))
