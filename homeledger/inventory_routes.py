# homeledger/inventory_routes.py
import uuid
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import categories, inventory
from homeledger.db import get_async_session
from homeledger.dependencies import get_current_user
from homeledger.schemas import (
    EventCreate,
    EventOut,
    EventUpdate,
    ItemCreate,
    ItemOut,
    ItemUpdate,
    PropertyCreate,
    PropertyOut,
    PropertyUpdate,
    SpaceCreate,
    SpaceOut,
    SpaceUpdate,
)

router = APIRouter()


def changes_of(body: BaseModel, required: Iterable[str] = ()) -> Dict[str, Any]:
    """PATCH semantics: only fields the client sent; explicit nulls on NOT NULL columns are dropped."""
    changes = body.model_dump(exclude_unset=True)
    for key in required:
        if changes.get(key, "") is None:
            changes.pop(key)
    return changes


# ---------- properties ----------

@router.get("/properties", response_model=List[PropertyOut], tags=["properties"])
async def list_properties(
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await inventory.list_properties(session, user_id)


@router.post("/properties", response_model=PropertyOut, status_code=201, tags=["properties"])
async def create_property(
    body: PropertyCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    prop = await inventory.create_property(session, user_id, body.model_dump())
    await session.commit()
    return prop


@router.get("/properties/{property_id}", response_model=PropertyOut, tags=["properties"])
async def get_property(
    property_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await inventory.get_owned_property(session, property_id, user_id)


@router.patch("/properties/{property_id}", response_model=PropertyOut, tags=["properties"])
async def update_property(
    property_id: uuid.UUID,
    body: PropertyUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    prop = await inventory.get_owned_property(session, property_id, user_id)
    inventory.apply_changes(prop, changes_of(body, required=("name",)))
    await session.commit()
    return prop


@router.delete("/properties/{property_id}", status_code=204, tags=["properties"])
async def delete_property(
    property_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    prop = await inventory.get_owned_property(session, property_id, user_id)
    await inventory.delete_property(session, prop)
    await session.commit()
    return Response(status_code=204)


# ---------- spaces ----------

@router.get("/properties/{property_id}/spaces", response_model=List[SpaceOut], tags=["spaces"])
async def list_spaces(
    property_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_property(session, property_id, user_id)
    return await inventory.list_spaces(session, property_id)


@router.post("/properties/{property_id}/spaces", response_model=SpaceOut, status_code=201, tags=["spaces"])
async def create_space(
    property_id: uuid.UUID,
    body: SpaceCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_property(session, property_id, user_id)
    space = await inventory.create_space(session, property_id, body.name)
    await session.commit()
    return space


@router.get("/spaces/{space_id}", response_model=SpaceOut, tags=["spaces"])
async def get_space(
    space_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await inventory.get_owned_space(session, space_id, user_id)


@router.patch("/spaces/{space_id}", response_model=SpaceOut, tags=["spaces"])
async def update_space(
    space_id: uuid.UUID,
    body: SpaceUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    space = await inventory.get_owned_space(session, space_id, user_id)
    inventory.apply_changes(space, changes_of(body, required=("name",)))
    await session.commit()
    return space


@router.delete("/spaces/{space_id}", status_code=204, tags=["spaces"])
async def delete_space(
    space_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    space = await inventory.get_owned_space(session, space_id, user_id)
    await inventory.delete_space(session, space)
    await session.commit()
    return Response(status_code=204)


# ---------- items ----------

@router.get("/properties/{property_id}/items", response_model=List[ItemOut], tags=["items"])
async def list_items(
    property_id: uuid.UUID,
    space_id: Optional[uuid.UUID] = None,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_property(session, property_id, user_id)
    return await inventory.list_items(session, property_id, space_id)


@router.post("/properties/{property_id}/items", response_model=ItemOut, status_code=201, tags=["items"])
async def create_item(
    property_id: uuid.UUID,
    body: ItemCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_property(session, property_id, user_id)
    await categories.ensure_known(session, user_id, body.category)
    item = await inventory.create_item(session, property_id, body.model_dump())
    await session.commit()
    return item


@router.get("/items/{item_id}", response_model=ItemOut, tags=["items"])
async def get_item(
    item_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await inventory.get_owned_item(session, item_id, user_id)


@router.get("/items/{item_id}/children", response_model=List[ItemOut], tags=["items"])
async def list_item_children(
    item_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_item(session, item_id, user_id)
    return await inventory.list_children(session, item_id)


@router.patch("/items/{item_id}", response_model=ItemOut, tags=["items"])
async def update_item(
    item_id: uuid.UUID,
    body: ItemUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    item = await inventory.get_owned_item(session, item_id, user_id)
    changes = changes_of(body, required=("name", "category"))
    if "category" in changes:
        await categories.ensure_known(session, user_id, changes["category"])
    await inventory.update_item(session, item, changes)
    await session.commit()
    return item


@router.delete("/items/{item_id}", status_code=204, tags=["items"])
async def delete_item(
    item_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    item = await inventory.get_owned_item(session, item_id, user_id)
    await inventory.delete_item(session, item)
    await session.commit()
    return Response(status_code=204)


# ---------- events ----------

@router.get("/items/{item_id}/events", response_model=List[EventOut], tags=["events"])
async def list_events(
    item_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_item(session, item_id, user_id)
    return await inventory.list_events(session, item_id)


@router.post("/items/{item_id}/events", response_model=EventOut, status_code=201, tags=["events"])
async def create_event(
    item_id: uuid.UUID,
    body: EventCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await inventory.get_owned_item(session, item_id, user_id)
    event = await inventory.create_event(session, item_id, body.model_dump())
    await session.commit()
    return event


@router.get("/events/{event_id}", response_model=EventOut, tags=["events"])
async def get_event(
    event_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await inventory.get_owned_event(session, event_id, user_id)


@router.patch("/events/{event_id}", response_model=EventOut, tags=["events"])
async def update_event(
    event_id: uuid.UUID,
    body: EventUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    event = await inventory.get_owned_event(session, event_id, user_id)
    inventory.apply_changes(event, changes_of(body, required=("type", "date")))
    await session.commit()
    return event


@router.delete("/events/{event_id}", status_code=204, tags=["events"])
async def delete_event(
    event_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    event = await inventory.get_owned_event(session, event_id, user_id)
    await inventory.delete_event(session, event)
    await session.commit()
    return Response(status_code=204)
