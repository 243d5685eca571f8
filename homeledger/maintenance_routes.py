# homeledger/maintenance_routes.py
import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Response
from kombu.exceptions import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import inventory
from homeledger.config import settings
from homeledger.db import get_async_session
from homeledger.dependencies import get_advisor, get_current_user, get_scheduler
from homeledger.errors import NotFound
from homeledger.inventory_routes import changes_of
from homeledger.maintenance import DEFAULT_UPCOMING_LIMIT, MaintenanceScheduler
from homeledger.schemas import (
    CompleteTaskIn,
    GenerateOut,
    MaintenanceTaskCreate,
    MaintenanceTaskOut,
    MaintenanceTaskUpdate,
)
from homeledger.suggestions import MaintenanceAdvisor, generate_for_item
from homeledger.tasks import suggest_maintenance_task

logger = logging.getLogger(__name__)

router = APIRouter(tags=["maintenance"])


@router.get("/properties/{property_id}/maintenance", response_model=List[MaintenanceTaskOut])
async def list_property_tasks(
    property_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    await inventory.get_owned_property(session, property_id, user_id)
    return await scheduler.list_for_property(property_id)


@router.post("/properties/{property_id}/maintenance", response_model=MaintenanceTaskOut, status_code=201)
async def create_property_task(
    property_id: uuid.UUID,
    body: MaintenanceTaskCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    await inventory.get_owned_property(session, property_id, user_id)
    if body.item_id is not None:
        item = await inventory.get_owned_item(session, body.item_id, user_id)
        if item.property_id != property_id:
            raise NotFound("Item not found")
    task = await scheduler.create(
        property_id, user_id, body.name, body.interval_months, body.next_due_date,
        item_id=body.item_id, description=body.description,
    )
    await session.commit()
    return task


@router.get("/items/{item_id}/maintenance", response_model=List[MaintenanceTaskOut])
async def list_item_tasks(
    item_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    await inventory.get_owned_item(session, item_id, user_id)
    return await scheduler.list_for_item(item_id)


@router.post("/items/{item_id}/maintenance", response_model=MaintenanceTaskOut, status_code=201)
async def create_item_task(
    item_id: uuid.UUID,
    body: MaintenanceTaskCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    item = await inventory.get_owned_item(session, item_id, user_id)
    task = await scheduler.create(
        item.property_id, user_id, body.name, body.interval_months, body.next_due_date,
        item_id=item.id, description=body.description,
    )
    await session.commit()
    return task


@router.post("/items/{item_id}/maintenance/generate", response_model=GenerateOut)
async def generate_item_tasks(
    item_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    advisor: MaintenanceAdvisor = Depends(get_advisor),
):
    item = await inventory.get_owned_item(session, item_id, user_id)
    if settings.auto_process:
        try:
            suggest_maintenance_task.apply_async(args=[str(item.id), str(user_id)], queue=settings.celery_queue)
            return GenerateOut(success=True, method="queued")
        except OperationalError:
            logger.warning("Broker unavailable; generating maintenance plan for item %s inline", item.id)
    created = await generate_for_item(session, advisor, item, user_id)
    return GenerateOut(success=True, method="inline", count=len(created))


# declared before /maintenance/{task_id} so "upcoming" is not parsed as an id
@router.get("/maintenance/upcoming", response_model=List[MaintenanceTaskOut])
async def upcoming_tasks(
    limit: int = Query(DEFAULT_UPCOMING_LIMIT, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    property_ids = await inventory.property_ids_for_user(session, user_id)
    return await scheduler.upcoming(property_ids, limit)


@router.get("/maintenance/{task_id}", response_model=MaintenanceTaskOut)
async def get_task(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await inventory.get_owned_task(session, task_id, user_id)


@router.patch("/maintenance/{task_id}", response_model=MaintenanceTaskOut)
async def update_task(
    task_id: uuid.UUID,
    body: MaintenanceTaskUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    task = await inventory.get_owned_task(session, task_id, user_id)
    changes = changes_of(body, required=("name", "interval_months", "next_due_date"))
    return await scheduler.update(task, user_id, changes)


@router.delete("/maintenance/{task_id}", status_code=204)
async def delete_task(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    task = await inventory.get_owned_task(session, task_id, user_id)
    await scheduler.delete(task)
    return Response(status_code=204)


@router.post("/maintenance/{task_id}/complete", response_model=MaintenanceTaskOut)
async def complete_task(
    task_id: uuid.UUID,
    body: CompleteTaskIn,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    task = await inventory.get_owned_task(session, task_id, user_id)
    return await scheduler.complete(
        task, user_id, body.completed_on,
        cost=body.cost, performed_by=body.performed_by, description=body.description,
    )


@router.post("/maintenance/{task_id}/snooze", response_model=MaintenanceTaskOut)
async def snooze_task(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    task = await inventory.get_owned_task(session, task_id, user_id)
    return await scheduler.snooze(task, user_id)


@router.post("/maintenance/{task_id}/pause", response_model=MaintenanceTaskOut)
async def pause_task(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    task = await inventory.get_owned_task(session, task_id, user_id)
    return await scheduler.pause(task, user_id)


@router.post("/maintenance/{task_id}/resume", response_model=MaintenanceTaskOut)
async def resume_task(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    task = await inventory.get_owned_task(session, task_id, user_id)
    return await scheduler.resume(task, user_id)


@router.post("/maintenance/{task_id}/dismiss", response_model=MaintenanceTaskOut)
async def dismiss_task(
    task_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    scheduler: MaintenanceScheduler = Depends(get_scheduler),
):
    task = await inventory.get_owned_task(session, task_id, user_id)
    return await scheduler.dismiss(task, user_id)
