"""
Conversation entities: chats, messages and the role-tagged text units sent to providers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class TextUnit:
    role: Role
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "text": self.text}


@dataclass
class Chat:
    id: str
    owner_id: str
    title: str
    last_activity: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user": self.owner_id,
            "title": self.title,
            "lastActivity": self.last_activity.isoformat(),
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class Message:
    id: str
    chat_id: str
    author_id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=utc_now)

    def to_unit(self) -> TextUnit:
        return TextUnit(role=self.role, text=self.content)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chat": self.chat_id,
            "user": self.author_id,
            "role": self.role.value,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }
