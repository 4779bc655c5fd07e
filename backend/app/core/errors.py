"""
Error taxonomy shared by the orchestrator, its collaborators and the API layer.
"""

from __future__ import annotations


class ChatMemoryError(Exception):
    code = "ChatMemoryError"
    status_code = 500

    def __init__(self, message: str = "", *, stage: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.stage = stage

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class InvalidInput(ChatMemoryError):
    code = "InvalidInput"
    status_code = 400


class EmbeddingFailed(ChatMemoryError):
    code = "EmbeddingFailed"
    status_code = 502


class GenerationFailed(ChatMemoryError):
    code = "GenerationFailed"
    status_code = 502


class StoreUnavailable(ChatMemoryError):
    code = "StoreUnavailable"
    status_code = 503


class NotFound(ChatMemoryError):
    code = "NotFound"
    status_code = 404


class Forbidden(ChatMemoryError):
    code = "Forbidden"
    status_code = 403
