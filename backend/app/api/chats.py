"""
Chat endpoints: create, list, read history and delete.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from backend.app.api.deps import get_services
from backend.app.conversation.store import require_chat_owner
from backend.app.core.auth.jwt_auth import get_current_user
from backend.app.core.errors import InvalidInput
from backend.app.orchestrator.factory import AppServices


router = APIRouter(prefix="/api/chat", tags=["chat"])


class CreateChatRequest(BaseModel):
    title: str


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_chat(
    payload: CreateChatRequest,
    user: dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    title = payload.title.strip()
    if not title:
        raise InvalidInput("title must not be empty")
    chat = await asyncio.to_thread(services.conversation_store.create_chat, user["id"], title)
    return {"message": "Chat created successfully", "chat": chat.to_dict()}


@router.get("")
async def get_chats(user: dict = Depends(get_current_user), services: AppServices = Depends(get_services)):
    chats = await asyncio.to_thread(services.conversation_store.list_chats, user["id"])
    return {"message": "Chats retrieved successfully", "chats": [c.to_dict() for c in chats]}


@router.get("/messages/{chat_id}")
async def get_messages(
    chat_id: str,
    user: dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    store = services.conversation_store
    await asyncio.to_thread(require_chat_owner, store, chat_id, user["id"])
    messages = await asyncio.to_thread(store.list_messages, chat_id)
    return {"message": "Messages retrieved successfully", "messages": [m.to_dict() for m in messages]}


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    user: dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    result = await services.orchestrator.delete_chat(chat_id, user["id"])
    return {
        "message": "Chat deleted successfully",
        "chat": result.chat_id,
        "messagesDeleted": result.messages_deleted,
        "vectorsDeleted": result.vectors_deleted,
    }
