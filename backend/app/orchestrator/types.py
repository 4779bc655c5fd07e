"""
Data structures for the memory orchestrator pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence

from backend.app.conversation.models import Message, TextUnit
from backend.app.vector_store.repository import VectorHit


class Embedder(Protocol):
    def embed(self, unit: TextUnit) -> list[float]: ...


class Generator(Protocol):
    def generate(self, units: Sequence[TextUnit]) -> str: ...


@dataclass
class ContextBundle:
    long_term: list[TextUnit] = field(default_factory=list)
    short_term: list[TextUnit] = field(default_factory=list)
    recalled: list[VectorHit] = field(default_factory=list)
    history: list[Message] = field(default_factory=list)

    @property
    def provider_input(self) -> list[TextUnit]:
        return [*self.long_term, *self.short_term]


@dataclass
class TurnResult:
    content: str
    chat_id: str
    user_message_id: str
    model_message_id: str

    def to_event_payload(self) -> dict[str, str]:
        return {"content": self.content, "chat": self.chat_id}


@dataclass
class DeleteResult:
    chat_id: str
    messages_deleted: int
    vectors_deleted: int


@dataclass
class PartialWrite:
    """A turn stopped after some writes landed; the stores may disagree."""

    stage: str
    chat_id: str
    user_id: str
    error: str
    message_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


PartialWriteHook = Callable[[PartialWrite], None]
