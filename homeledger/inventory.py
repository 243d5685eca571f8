# homeledger/inventory.py
"""
Property / space / item / event services.

Ownership is checked by walking up to the property and comparing user_id;
every broken link raises the same NotFound so callers cannot tell whether an
id they do not own exists. Cascades are done here rather than relying on the database,
since sqlite (tests) does not enforce foreign keys by default.
"""
import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import documents
from homeledger.errors import NotFound, PreconditionFailed
from homeledger.models import Conversation, Document, Event, Item, MaintenanceTask, Message, Property, Space, utcnow
from homeledger.schemas import InventoryEntry

logger = logging.getLogger(__name__)


def apply_changes(row, changes: Dict[str, Any]) -> None:
    for key, value in changes.items():
        setattr(row, key, value)


# ---------- ownership ----------

async def get_owned_property(session: AsyncSession, property_id: uuid.UUID, user_id: uuid.UUID) -> Property:
    prop = await session.get(Property, property_id)
    if prop is None or prop.user_id != user_id:
        raise NotFound("Property not found")
    return prop


async def get_owned_space(session: AsyncSession, space_id: uuid.UUID, user_id: uuid.UUID) -> Space:
    space = await session.get(Space, space_id)
    if space is None:
        raise NotFound("Space not found")
    try:
        await get_owned_property(session, space.property_id, user_id)
    except NotFound:
        raise NotFound("Space not found")
    return space


async def get_owned_item(session: AsyncSession, item_id: uuid.UUID, user_id: uuid.UUID) -> Item:
    item = await session.get(Item, item_id)
    if item is None:
        raise NotFound("Item not found")
    try:
        await get_owned_property(session, item.property_id, user_id)
    except NotFound:
        raise NotFound("Item not found")
    return item


async def get_owned_event(session: AsyncSession, event_id: uuid.UUID, user_id: uuid.UUID) -> Event:
    event = await session.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    try:
        await get_owned_item(session, event.item_id, user_id)
    except NotFound:
        raise NotFound("Event not found")
    return event


async def get_owned_document(session: AsyncSession, document_id: uuid.UUID, user_id: uuid.UUID) -> Document:
    doc = await session.get(Document, document_id, populate_existing=True)
    if doc is None:
        raise NotFound("Document not found")
    try:
        await get_owned_property(session, doc.property_id, user_id)
    except NotFound:
        raise NotFound("Document not found")
    return doc


async def get_owned_task(session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID) -> MaintenanceTask:
    task = await session.get(MaintenanceTask, task_id)
    if task is None:
        raise NotFound("Maintenance task not found")
    try:
        await get_owned_property(session, task.property_id, user_id)
    except NotFound:
        raise NotFound("Maintenance task not found")
    return task


# ---------- properties ----------

async def list_properties(session: AsyncSession, user_id: uuid.UUID) -> List[Property]:
    res = await session.execute(select(Property).where(Property.user_id == user_id).order_by(Property.created_at))
    return list(res.scalars().all())


async def property_ids_for_user(session: AsyncSession, user_id: uuid.UUID) -> List[uuid.UUID]:
    res = await session.execute(select(Property.id).where(Property.user_id == user_id))
    return list(res.scalars().all())


async def create_property(session: AsyncSession, user_id: uuid.UUID, data: Dict[str, Any]) -> Property:
    prop = Property(user_id=user_id, **data)
    session.add(prop)
    await session.flush()
    logger.info("Created property %s for user %s", prop.id, user_id)
    return prop


async def delete_property(session: AsyncSession, prop: Property) -> None:
    """Removes the property and everything under it. Stored blobs are left in place."""
    item_ids = (await session.execute(select(Item.id).where(Item.property_id == prop.id))).scalars().all()
    if item_ids:
        await session.execute(delete(Event).where(Event.item_id.in_(item_ids)))
    await session.execute(delete(Document).where(Document.property_id == prop.id))
    await session.execute(delete(MaintenanceTask).where(MaintenanceTask.property_id == prop.id))
    conversation_ids = select(Conversation.id).where(Conversation.property_id == prop.id)
    await session.execute(delete(Message).where(Message.conversation_id.in_(conversation_ids)))
    await session.execute(delete(Conversation).where(Conversation.property_id == prop.id))
    await session.execute(delete(Item).where(Item.property_id == prop.id))
    await session.execute(delete(Space).where(Space.property_id == prop.id))
    await session.delete(prop)
    logger.info("Deleted property %s (%d items)", prop.id, len(item_ids))


# ---------- spaces ----------

async def list_spaces(session: AsyncSession, property_id: uuid.UUID) -> List[Space]:
    res = await session.execute(select(Space).where(Space.property_id == property_id).order_by(Space.name))
    return list(res.scalars().all())


async def create_space(session: AsyncSession, property_id: uuid.UUID, name: str) -> Space:
    space = Space(property_id=property_id, name=name)
    session.add(space)
    await session.flush()
    return space


async def delete_space(session: AsyncSession, space: Space) -> None:
    await session.execute(
        update(Item).where(Item.space_id == space.id).values(space_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.delete(space)


# ---------- items ----------

async def list_items(session: AsyncSession, property_id: uuid.UUID, space_id: Optional[uuid.UUID] = None) -> List[Item]:
    stmt = select(Item).where(Item.property_id == property_id)
    if space_id:
        stmt = stmt.where(Item.space_id == space_id)
    res = await session.execute(stmt.order_by(Item.name))
    return list(res.scalars().all())


async def list_children(session: AsyncSession, item_id: uuid.UUID) -> List[Item]:
    res = await session.execute(select(Item).where(Item.parent_id == item_id).order_by(Item.name))
    return list(res.scalars().all())


async def descendant_ids(session: AsyncSession, item_id: uuid.UUID) -> Set[uuid.UUID]:
    found: Set[uuid.UUID] = set()
    frontier = [item_id]
    while frontier:
        res = await session.execute(select(Item.id).where(Item.parent_id.in_(frontier)))
        frontier = [i for i in res.scalars().all() if i not in found]
        found.update(frontier)
    return found


async def _check_placement(session: AsyncSession, property_id: uuid.UUID, space_id, parent_id, item_id=None) -> None:
    if space_id is not None:
        space = await session.get(Space, space_id)
        if space is None or space.property_id != property_id:
            raise NotFound("Space not found")
    if parent_id is not None:
        parent = await session.get(Item, parent_id)
        if parent is None or parent.property_id != property_id:
            raise NotFound("Parent item not found")
        if item_id is not None:
            if parent_id == item_id or parent_id in await descendant_ids(session, item_id):
                raise PreconditionFailed("An item cannot be nested under itself or its components")


async def create_item(session: AsyncSession, property_id: uuid.UUID, data: Dict[str, Any]) -> Item:
    await _check_placement(session, property_id, data.get("space_id"), data.get("parent_id"))
    item = Item(property_id=property_id, **data)
    session.add(item)
    await session.flush()
    logger.info("Created item %s (%s) in property %s", item.id, item.name, property_id)
    return item


async def update_item(session: AsyncSession, item: Item, changes: Dict[str, Any]) -> Item:
    await _check_placement(
        session, item.property_id,
        changes.get("space_id"), changes.get("parent_id"),
        item_id=item.id,
    )
    apply_changes(item, changes)
    await session.flush()
    return item


async def delete_item(session: AsyncSession, item: Item) -> None:
    ids = {item.id} | await descendant_ids(session, item.id)
    event_ids = (await session.execute(select(Event.id).where(Event.item_id.in_(ids)))).scalars().all()
    await documents.unlink_events(session, event_ids)
    await documents.unlink_item(session, ids)
    await session.execute(
        update(MaintenanceTask).where(MaintenanceTask.item_id.in_(ids)).values(item_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(Conversation).where(Conversation.item_id.in_(ids)).values(item_id=None)
        .execution_options(synchronize_session=False)
    )
    if event_ids:
        await session.execute(delete(Event).where(Event.id.in_(event_ids)))
    await session.execute(delete(Item).where(Item.id.in_(ids)))
    logger.info("Deleted item %s with %d components", item.id, len(ids) - 1)


async def inventory_summary(session: AsyncSession, property_id: uuid.UUID) -> List[InventoryEntry]:
    items = await list_items(session, property_id)
    return [InventoryEntry.model_validate(i) for i in items]


# ---------- events ----------

async def list_events(session: AsyncSession, item_id: uuid.UUID, limit: Optional[int] = None) -> List[Event]:
    stmt = select(Event).where(Event.item_id == item_id).order_by(Event.date.desc())
    if limit:
        stmt = stmt.limit(limit)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def create_event(session: AsyncSession, item_id: uuid.UUID, data: Dict[str, Any]) -> Event:
    event = Event(item_id=item_id, **data)
    session.add(event)
    await session.flush()
    return event


async def delete_event(session: AsyncSession, event: Event) -> None:
    await documents.unlink_events(session, [event.id])
    await session.delete(event)


def event_timestamp(day: Optional[date]) -> datetime:
    """Events carry a timestamp; calendar dates land at midnight UTC."""
    if day is None:
        return utcnow()
    return datetime.combine(day, time.min, tzinfo=timezone.utc)
