# homeledger/chat_routes.py
import uuid
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import inventory
from homeledger.chat import ChatService
from homeledger.db import get_async_session
from homeledger.dependencies import get_chat_service, get_current_user
from homeledger.schemas import (
    ChatReplyOut,
    ConversationCreate,
    ConversationDetailOut,
    ConversationOut,
    ConversationSummaryOut,
    ConversationUpdate,
    MessageCreate,
    MessageOut,
)

router = APIRouter(tags=["chat"])


@router.get("/properties/{property_id}/conversations", response_model=List[ConversationSummaryOut])
async def list_conversations(
    property_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    chat: ChatService = Depends(get_chat_service),
):
    await inventory.get_owned_property(session, property_id, user_id)
    return await chat.list_conversations(property_id)


@router.post("/properties/{property_id}/conversations", response_model=ConversationOut, status_code=201)
async def create_conversation(
    property_id: uuid.UUID,
    body: ConversationCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    chat: ChatService = Depends(get_chat_service),
):
    await inventory.get_owned_property(session, property_id, user_id)
    return await chat.create_conversation(property_id, user_id, title=body.title, item_id=body.item_id)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetailOut)
async def get_conversation(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    conv = await chat.get_owned_conversation(conversation_id, user_id)
    return await chat.detail(conv)


@router.patch("/conversations/{conversation_id}", response_model=ConversationOut)
async def rename_conversation(
    conversation_id: uuid.UUID,
    body: ConversationUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    conv = await chat.get_owned_conversation(conversation_id, user_id)
    return await chat.rename(conv, body.title)


@router.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    conv = await chat.get_owned_conversation(conversation_id, user_id)
    await chat.delete_conversation(conv)
    return Response(status_code=204)


@router.post("/conversations/{conversation_id}/messages", response_model=ChatReplyOut)
async def send_message(
    conversation_id: uuid.UUID,
    body: MessageCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    conv = await chat.get_owned_conversation(conversation_id, user_id)
    user_message, assistant_message = await chat.send_message(conv, body.content)
    return ChatReplyOut(
        user_message=MessageOut.model_validate(user_message),
        assistant_message=MessageOut.model_validate(assistant_message),
    )
