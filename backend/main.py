"""
FastAPI Backend

API and realtime server for the chat application.
Groq generates replies; conversation memory is kept in the conversation store
(short-term) and the vector memory store (long-term).
"""

# CRITICAL: Load .env FIRST, before any other imports that read env vars.
from pathlib import Path
from dotenv import load_dotenv

# Load from project root by path (works regardless of current working directory)
_project_root = Path(__file__).resolve().parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(dotenv_path=_env_file)
else:
    load_dotenv()  # fallback: current directory

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api.chats import router as chats_router
from backend.app.api.platform import router as platform_router
from backend.app.api.realtime import router as realtime_router
from backend.app.core.auth.local_auth import router as auth_router
from backend.app.core.config import get_settings
from backend.app.core.errors import ChatMemoryError
from backend.app.observability.logging import log_event, setup_logging
from backend.app.orchestrator.factory import AppServices, build_services


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    settings = services.settings if services is not None else get_settings()
    setup_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        log_event("app_started", app_name=settings.app_name, app_env=settings.app_env)
        yield

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(chats_router)
    app.include_router(realtime_router)
    app.include_router(platform_router)

    @app.exception_handler(ChatMemoryError)
    async def chat_memory_error_handler(request: Request, exc: ChatMemoryError):
        log_event(
            "request_failed",
            path=request.url.path,
            error_class=exc.code,
            stage=exc.stage,
            error=str(exc),
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        classification = type(exc).__name__
        log_event(
            "unhandled_exception",
            path=request.url.path,
            error_class=classification,
            error=str(exc),
        )
        return JSONResponse(status_code=500, content={"error": f"Internal error: {classification}"})

    @app.get("/health")
    async def health():
        current = app.state.services
        return {
            "status": "ok",
            "conversation_backend": current.settings.conversation_backend,
            "vector_store_backend": type(current.vector_store).__name__,
            "embedding_provider": current.settings.embedding_provider,
            "groq_key_loaded": bool(current.settings.groq_api_key),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
