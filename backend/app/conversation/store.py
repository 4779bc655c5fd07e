"""
Conversation store: the durable, append-only message log per chat.

Two backends share one contract:
- SqlConversationStore (SQLAlchemy; SQLite or any DATABASE_URL)
- MongoConversationStore (pymongo; `chats` and `messages` collections)

Store failures surface as StoreUnavailable so callers never see driver exceptions.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from backend.app.conversation.models import Chat, Message, Role, utc_now
from backend.app.core.db.relational import DBChat, DBMessage, get_relational_session
from backend.app.core.errors import Forbidden, NotFound, StoreUnavailable
from backend.app.observability.logging import log_event


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConversationStore:
    def create_chat(self, owner_id: str, title: str) -> Chat:
        raise NotImplementedError

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        raise NotImplementedError

    def list_chats(self, owner_id: str) -> list[Chat]:
        raise NotImplementedError

    def delete_chat(self, chat_id: str) -> bool:
        raise NotImplementedError

    def append_message(self, chat_id: str, author_id: str, role: Role, content: str) -> Message:
        raise NotImplementedError

    def recent_messages(self, chat_id: str, limit: int) -> list[Message]:
        """Latest `limit` messages of a chat, newest first."""
        raise NotImplementedError

    def list_messages(self, chat_id: str) -> list[Message]:
        """All messages of a chat, oldest first."""
        raise NotImplementedError

    def delete_messages(self, chat_id: str) -> int:
        raise NotImplementedError


class SqlConversationStore(ConversationStore):
    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory

    @staticmethod
    def _to_chat(row: DBChat) -> Chat:
        return Chat(
            id=row.id,
            owner_id=str(row.user_id),
            title=row.title or "New Chat",
            last_activity=_aware(row.last_activity),
            created_at=_aware(row.created_at),
        )

    @staticmethod
    def _to_message(row: DBMessage) -> Message:
        return Message(
            id=row.id,
            chat_id=row.chat_id,
            author_id=str(row.user_id),
            role=Role(row.role),
            content=row.content,
            created_at=_aware(row.created_at),
        )

    def _fail(self, operation: str, exc: Exception):
        log_event("conversation_store_failed", backend="sql", operation=operation, error=str(exc))
        raise StoreUnavailable(f"Conversation store unavailable during {operation}") from exc

    def create_chat(self, owner_id: str, title: str) -> Chat:
        now = utc_now()
        row = DBChat(id=str(uuid.uuid4()), user_id=owner_id, title=title, last_activity=now, created_at=now)
        try:
            with get_relational_session(self.session_factory) as db:
                db.add(row)
        except SQLAlchemyError as exc:
            self._fail("create_chat", exc)
        return self._to_chat(row)

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        try:
            with get_relational_session(self.session_factory) as db:
                row = db.get(DBChat, chat_id)
                return self._to_chat(row) if row else None
        except SQLAlchemyError as exc:
            self._fail("get_chat", exc)

    def list_chats(self, owner_id: str) -> list[Chat]:
        try:
            with get_relational_session(self.session_factory) as db:
                rows = (
                    db.query(DBChat)
                    .filter(DBChat.user_id == owner_id)
                    .order_by(DBChat.last_activity.desc())
                    .all()
                )
                return [self._to_chat(r) for r in rows]
        except SQLAlchemyError as exc:
            self._fail("list_chats", exc)

    def delete_chat(self, chat_id: str) -> bool:
        try:
            with get_relational_session(self.session_factory) as db:
                deleted = db.query(DBChat).filter(DBChat.id == chat_id).delete(synchronize_session=False)
            return bool(deleted)
        except SQLAlchemyError as exc:
            self._fail("delete_chat", exc)

    def append_message(self, chat_id: str, author_id: str, role: Role, content: str) -> Message:
        row = DBMessage(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            user_id=author_id,
            role=Role(role).value,
            content=content,
            created_at=utc_now(),
        )
        try:
            with get_relational_session(self.session_factory) as db:
                db.add(row)
        except SQLAlchemyError as exc:
            self._fail("append_message", exc)
        return self._to_message(row)

    def recent_messages(self, chat_id: str, limit: int) -> list[Message]:
        try:
            with get_relational_session(self.session_factory) as db:
                rows = (
                    db.query(DBMessage)
                    .filter(DBMessage.chat_id == chat_id)
                    .order_by(DBMessage.created_at.desc())
                    .limit(limit)
                    .all()
                )
                return [self._to_message(r) for r in rows]
        except SQLAlchemyError as exc:
            self._fail("recent_messages", exc)

    def list_messages(self, chat_id: str) -> list[Message]:
        try:
            with get_relational_session(self.session_factory) as db:
                rows = (
                    db.query(DBMessage)
                    .filter(DBMessage.chat_id == chat_id)
                    .order_by(DBMessage.created_at.asc())
                    .all()
                )
                return [self._to_message(r) for r in rows]
        except SQLAlchemyError as exc:
            self._fail("list_messages", exc)

    def delete_messages(self, chat_id: str) -> int:
        try:
            with get_relational_session(self.session_factory) as db:
                return db.query(DBMessage).filter(DBMessage.chat_id == chat_id).delete(synchronize_session=False)
        except SQLAlchemyError as exc:
            self._fail("delete_messages", exc)


class MongoConversationStore(ConversationStore):
    def __init__(self, db: Any):
        self.chats = db["chats"]
        self.messages = db["messages"]

    @staticmethod
    def _to_chat(doc: dict[str, Any]) -> Chat:
        return Chat(
            id=str(doc["_id"]),
            owner_id=str(doc.get("user") or ""),
            title=str(doc.get("title") or "New Chat"),
            last_activity=_aware(doc.get("lastActivity")),
            created_at=_aware(doc.get("createdAt")),
        )

    @staticmethod
    def _to_message(doc: dict[str, Any]) -> Message:
        return Message(
            id=str(doc["_id"]),
            chat_id=str(doc.get("chat") or ""),
            author_id=str(doc.get("user") or ""),
            role=Role(doc.get("role") or Role.USER.value),
            content=str(doc.get("content") or ""),
            created_at=_aware(doc.get("createdAt")),
        )

    def _fail(self, operation: str, exc: Exception):
        log_event("conversation_store_failed", backend="mongo", operation=operation, error=str(exc))
        raise StoreUnavailable(f"Conversation store unavailable during {operation}") from exc

    def create_chat(self, owner_id: str, title: str) -> Chat:
        now = utc_now()
        doc = {"_id": str(uuid.uuid4()), "user": owner_id, "title": title, "lastActivity": now, "createdAt": now}
        try:
            self.chats.insert_one(doc)
        except PyMongoError as exc:
            self._fail("create_chat", exc)
        return self._to_chat(doc)

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        try:
            doc = self.chats.find_one({"_id": chat_id})
        except PyMongoError as exc:
            self._fail("get_chat", exc)
        return self._to_chat(doc) if doc else None

    def list_chats(self, owner_id: str) -> list[Chat]:
        try:
            docs = list(self.chats.find({"user": owner_id}).sort("lastActivity", DESCENDING))
        except PyMongoError as exc:
            self._fail("list_chats", exc)
        return [self._to_chat(d) for d in docs]

    def delete_chat(self, chat_id: str) -> bool:
        try:
            result = self.chats.delete_one({"_id": chat_id})
        except PyMongoError as exc:
            self._fail("delete_chat", exc)
        return result.deleted_count > 0

    def append_message(self, chat_id: str, author_id: str, role: Role, content: str) -> Message:
        # Message ids double as vector point ids, so they are UUID strings, not ObjectIds.
        doc = {
            "_id": str(uuid.uuid4()),
            "chat": chat_id,
            "user": author_id,
            "role": Role(role).value,
            "content": content,
            "createdAt": utc_now(),
        }
        try:
            self.messages.insert_one(doc)
        except PyMongoError as exc:
            self._fail("append_message", exc)
        return self._to_message(doc)

    def recent_messages(self, chat_id: str, limit: int) -> list[Message]:
        try:
            docs = list(self.messages.find({"chat": chat_id}).sort("createdAt", DESCENDING).limit(limit))
        except PyMongoError as exc:
            self._fail("recent_messages", exc)
        return [self._to_message(d) for d in docs]

    def list_messages(self, chat_id: str) -> list[Message]:
        try:
            docs = list(self.messages.find({"chat": chat_id}).sort("createdAt", ASCENDING))
        except PyMongoError as exc:
            self._fail("list_messages", exc)
        return [self._to_message(d) for d in docs]

    def delete_messages(self, chat_id: str) -> int:
        try:
            result = self.messages.delete_many({"chat": chat_id})
        except PyMongoError as exc:
            self._fail("delete_messages", exc)
        return int(result.deleted_count)


def require_chat_owner(store: ConversationStore, chat_id: str, user_id: str) -> Chat:
    chat = store.get_chat(chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    if str(chat.owner_id) != str(user_id):
        raise Forbidden("Unauthorized")
    return chat
