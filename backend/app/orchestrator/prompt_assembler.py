"""
Context assembly layer.

Long-term memory is folded into one synthetic user unit placed ahead of the
short-term history, so the model sees recalled excerpts before the live thread.
"""

from __future__ import annotations

from typing import Iterable

from backend.app.conversation.models import Message, Role, TextUnit
from backend.app.orchestrator.types import ContextBundle
from backend.app.vector_store.repository import VectorHit

LONG_TERM_PREFIX = "These are some previous messages from the chat, use them to generate a response"


class PromptAssembler:
    def __init__(self, long_term_prefix: str = LONG_TERM_PREFIX):
        self.long_term_prefix = long_term_prefix

    def long_term_unit(self, recalled: Iterable[VectorHit]) -> TextUnit:
        excerpts = "\n".join(str(hit.metadata.get("text") or "") for hit in recalled)
        return TextUnit(role=Role.USER, text=f"{self.long_term_prefix}\n{excerpts}")

    @staticmethod
    def short_term_units(history: Iterable[Message]) -> list[TextUnit]:
        return [message.to_unit() for message in history]

    def build(self, recalled: list[VectorHit], history: list[Message]) -> ContextBundle:
        """`history` must already be oldest-first."""
        return ContextBundle(
            long_term=[self.long_term_unit(recalled)],
            short_term=self.short_term_units(history),
            recalled=list(recalled),
            history=list(history),
        )
