# homeledger/dependencies.py
import uuid
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger.auth import authenticate
from homeledger.chat import ChatService
from homeledger.db import get_async_session
from homeledger.llm import LLMClient, get_http_client
from homeledger.maintenance import MaintenanceScheduler
from homeledger.pipeline import DocumentPipeline, build_pipeline
from homeledger.suggestions import MaintenanceAdvisor
from homeledger.tasks import enqueue_document_processing, enqueue_email_resolution

bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    session: AsyncSession = Depends(get_async_session),
) -> uuid.UUID:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing API key", headers={"WWW-Authenticate": "Bearer"})
    key = await authenticate(session, credentials.credentials)
    if key is None:
        raise HTTPException(status_code=401, detail="Invalid API key", headers={"WWW-Authenticate": "Bearer"})
    return key.user_id


def get_pipeline(session: AsyncSession = Depends(get_async_session)) -> DocumentPipeline:
    return build_pipeline(
        session,
        http=get_http_client(),
        trigger=enqueue_document_processing,
        email_trigger=enqueue_email_resolution,
    )


def get_scheduler(session: AsyncSession = Depends(get_async_session)) -> MaintenanceScheduler:
    return MaintenanceScheduler(session)


def get_advisor() -> MaintenanceAdvisor:
    return MaintenanceAdvisor(LLMClient(http=get_http_client()))


def get_chat_service(session: AsyncSession = Depends(get_async_session)) -> ChatService:
    return ChatService(session, LLMClient(http=get_http_client()))
