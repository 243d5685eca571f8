# homeledger/documents.py
"""
Document record store.

Every status change is a conditional UPDATE ... WHERE status IN (...): if a
concurrent writer moved the row first, rowcount is 0 and StatusConflict is
raised instead of silently overwriting. Callers own the transaction.
"""
import logging
import uuid
from typing import Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger.errors import NotFound, StatusConflict
from homeledger.models import Document

logger = logging.getLogger(__name__)


async def insert_document(session: AsyncSession, **fields) -> Document:
    doc = Document(**fields)
    session.add(doc)
    await session.flush()
    return doc


async def get_document(session: AsyncSession, document_id: uuid.UUID) -> Document:
    doc = await session.get(Document, document_id, populate_existing=True)
    if doc is None:
        raise NotFound("Document not found")
    return doc


async def list_documents(session: AsyncSession, property_id: uuid.UUID, status: Optional[str] = None) -> List[Document]:
    stmt = select(Document).where(Document.property_id == property_id)
    if status:
        stmt = stmt.where(Document.status == status)
    res = await session.execute(stmt.order_by(Document.created_at.desc()))
    return list(res.scalars().all())


async def conditional_update(
    session: AsyncSession,
    document_id: uuid.UUID,
    from_statuses: Iterable[str],
    **values,
) -> Document:
    """
    Apply `values` only while the row's status is one of `from_statuses`.
    Pass status=... in `values` to transition; omit it to update in place.
    """
    from_statuses = tuple(from_statuses)
    stmt = (
        update(Document)
        .where(Document.id == document_id, Document.status.in_(from_statuses))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount == 0:
        current = await session.get(Document, document_id, populate_existing=True)
        if current is None:
            raise NotFound("Document not found")
        logger.info("Conditional write on document %s refused: status is %s, expected one of %s",
                    document_id, current.status, from_statuses)
        raise StatusConflict(
            f"Document is {current.status}; expected {' or '.join(from_statuses)}"
        )
    return await get_document(session, document_id)


async def delete_document_row(session: AsyncSession, document_id: uuid.UUID) -> None:
    await session.execute(delete(Document).where(Document.id == document_id))


async def unlink_item(session: AsyncSession, item_ids: Iterable[uuid.UUID]) -> None:
    ids = list(item_ids)
    if ids:
        await session.execute(
            update(Document).where(Document.item_id.in_(ids)).values(item_id=None)
            .execution_options(synchronize_session=False)
        )


async def unlink_events(session: AsyncSession, event_ids: Iterable[uuid.UUID]) -> None:
    ids = list(event_ids)
    if ids:
        await session.execute(
            update(Document).where(Document.event_id.in_(ids)).values(event_id=None)
            .execution_options(synchronize_session=False)
        )
