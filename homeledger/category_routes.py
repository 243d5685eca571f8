# homeledger/category_routes.py
import uuid
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import categories, inventory
from homeledger.db import get_async_session
from homeledger.dependencies import get_current_user
from homeledger.schemas import CategoryCreate, CategoryOut, CategoryUpdate

router = APIRouter(tags=["categories"])


@router.get("/categories", response_model=List[CategoryOut])
async def list_categories(
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await categories.list_for_user(session, user_id)


@router.post("/categories", response_model=CategoryOut, status_code=201)
async def create_category(
    body: CategoryCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    cat = await categories.create_category(session, user_id, body.model_dump())
    await session.commit()
    return cat


@router.get("/categories/{category_id}", response_model=CategoryOut)
async def get_category(
    category_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await categories.get_category(session, category_id, user_id)


@router.patch("/categories/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: uuid.UUID,
    body: CategoryUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    cat = await categories.get_editable_category(session, category_id, user_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("name", "") is None:
        changes.pop("name")
    inventory.apply_changes(cat, changes)
    await session.commit()
    return cat


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    cat = await categories.get_editable_category(session, category_id, user_id)
    await categories.delete_category(session, cat)
    await session.commit()
    return Response(status_code=204)
