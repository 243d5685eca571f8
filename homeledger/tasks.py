# homeledger/tasks.py
import asyncio
import logging
import uuid
from datetime import date

import httpx

from homeledger.celery_app import celery_app
from homeledger.config import settings
from homeledger.db import task_session
from homeledger.errors import NotFound
from homeledger.llm import LLMClient
from homeledger.maintenance import MaintenanceScheduler
from homeledger.models import Item
from homeledger.pipeline import build_pipeline
from homeledger.suggestions import MaintenanceAdvisor, generate_for_item

logger = logging.getLogger(__name__)


def enqueue_document_processing(document_id: str) -> None:
    """Trigger used by ingest and reprocess. Raises if the broker is unreachable."""
    if not settings.auto_process:
        logger.info("auto_process disabled; document %s waits for a manual /process", document_id)
        return
    process_document_task.apply_async(args=[document_id], queue=settings.celery_queue)


async def _process_document(document_id: str) -> dict:
    async with task_session() as session, httpx.AsyncClient(timeout=settings.llm_timeout) as http:
        pipeline = build_pipeline(session, http=http)
        resolution = await pipeline.process_full(uuid.UUID(document_id))
    return {"status": "ready_for_review", "document_id": document_id, "action": resolution.action}


@celery_app.task(bind=True, name="homeledger.tasks.process_document_task")
def process_document_task(self, document_id: str):
    # no autoretry: a failed stage is recovered by an explicit reprocess
    try:
        return asyncio.run(_process_document(document_id))
    except Exception:
        logger.exception("process_document failed for %s", document_id)
        raise


def enqueue_email_resolution(document_id: str) -> None:
    """Trigger for email intake: resolve straight from the body, no extraction."""
    if not settings.auto_process:
        logger.info("auto_process disabled; email document %s waits for a manual /process", document_id)
        return
    resolve_email_document_task.apply_async(args=[document_id], queue=settings.celery_queue)


async def _resolve_email_document(document_id: str) -> dict:
    async with task_session() as session, httpx.AsyncClient(timeout=settings.llm_timeout) as http:
        pipeline = build_pipeline(session, http=http)
        resolution = await pipeline.resolve_email(uuid.UUID(document_id))
    return {"status": "ready_for_review", "document_id": document_id, "action": resolution.action}


@celery_app.task(bind=True, name="homeledger.tasks.resolve_email_document_task")
def resolve_email_document_task(self, document_id: str):
    try:
        return asyncio.run(_resolve_email_document(document_id))
    except Exception:
        logger.exception("resolve_email_document failed for %s", document_id)
        raise


async def _suggest_maintenance(item_id: str, user_id: str) -> dict:
    async with task_session() as session, httpx.AsyncClient(timeout=settings.llm_timeout) as http:
        item = await session.get(Item, uuid.UUID(item_id))
        if item is None:
            raise NotFound(f"Item {item_id} not found")
        advisor = MaintenanceAdvisor(LLMClient(http=http))
        created = await generate_for_item(session, advisor, item, uuid.UUID(user_id))
    return {"item_id": item_id, "count": len(created)}


@celery_app.task(bind=True, name="homeledger.tasks.suggest_maintenance_task")
def suggest_maintenance_task(self, item_id: str, user_id: str):
    try:
        return asyncio.run(_suggest_maintenance(item_id, user_id))
    except Exception:
        logger.exception("suggest_maintenance failed for item %s", item_id)
        raise


async def _check_reminders(on: date) -> dict:
    async with task_session() as session:
        due = await MaintenanceScheduler(session).due(on)
    for user_id, tasks in due.items():
        # no push delivery yet; log only
        logger.info("User %s has %d maintenance task(s) due: %s",
                    user_id, len(tasks), ", ".join(t.name for t in tasks))
    return {"users": len(due), "tasks": sum(len(t) for t in due.values())}


@celery_app.task(name="homeledger.tasks.check_maintenance_reminders")
def check_maintenance_reminders():
    return asyncio.run(_check_reminders(date.today()))
