"""
Shared FastAPI dependencies.
"""

from __future__ import annotations

from fastapi import Request

from backend.app.orchestrator.factory import AppServices


def get_services(request: Request) -> AppServices:
    return request.app.state.services
