"""
Central configuration for the chat memory runtime.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    app_env: str
    app_name: str
    debug: bool
    log_level: str
    log_json: bool
    data_dir: Path
    database_url: str
    conversation_backend: str
    mongo_uri: str
    mongo_db_name: str
    qdrant_url: str
    qdrant_api_key: str
    qdrant_collection: str
    require_qdrant: bool
    vector_store_path: Path | None
    embedding_provider: str
    embedding_model: str
    embedding_dims: int
    gemini_api_key: str
    groq_api_key: str
    groq_model: str
    generation_temperature: float
    generation_system_prompt: str
    recall_top_k: int
    recall_scope: str
    history_limit: int
    delete_scan_limit: int
    llm_timeout_seconds: float
    embedding_timeout_seconds: float
    serialize_chat_turns: bool
    validate_chat_ownership: bool
    jwt_secret: str
    jwt_algorithm: str
    jwt_expire_minutes: int
    auth_cookie_name: str
    cors_allow_origins: list[str]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except Exception:
        return default


def _env_choice(name: str, default: str, choices: set[str]) -> str:
    raw = os.getenv(name, default).strip().lower()
    return raw if raw in choices else default


def get_settings() -> Settings:
    base_dir = Path(__file__).resolve().parents[3]
    data_dir = Path(os.getenv("DATA_DIR", str(base_dir / "data")))

    raw_origins = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173")
    if raw_origins.strip() == "*":
        cors_allow_origins = ["*"]
    else:
        cors_allow_origins = [x.strip() for x in raw_origins.split(",") if x.strip()]

    raw_vector_path = os.getenv("VECTOR_STORE_PATH", "").strip()

    return Settings(
        app_env=os.getenv("APP_ENV", "dev").strip().lower(),
        app_name=os.getenv("APP_NAME", "Aurora Chat"),
        debug=_env_bool("DEBUG", False),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        log_json=_env_bool("LOG_JSON", True),
        data_dir=data_dir,
        database_url=os.getenv("DATABASE_URL", "").strip() or f"sqlite:///{data_dir / 'chat.db'}",
        conversation_backend=_env_choice("CONVERSATION_BACKEND", "sql", {"sql", "mongo"}),
        mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
        mongo_db_name=os.getenv("MONGO_DB_NAME", "aurora_chat").strip() or "aurora_chat",
        qdrant_url=os.getenv("QDRANT_URL", "http://localhost:6333"),
        qdrant_api_key=os.getenv("QDRANT_API_KEY", "").strip(),
        qdrant_collection=os.getenv("QDRANT_COLLECTION", "chat_memory").strip() or "chat_memory",
        require_qdrant=_env_bool("REQUIRE_QDRANT", False),
        vector_store_path=Path(raw_vector_path) if raw_vector_path else None,
        embedding_provider=_env_choice("EMBEDDING_PROVIDER", "gemini", {"gemini", "local"}),
        embedding_model=os.getenv("EMBEDDING_MODEL", "models/gemini-embedding-001").strip(),
        embedding_dims=_env_int("EMBEDDING_DIMS", 768),
        gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
        groq_api_key=os.getenv("GROQ_API_KEY", "").strip(),
        groq_model=os.getenv("GROQ_MODEL", "llama-3.1-8b-instant").strip() or "llama-3.1-8b-instant",
        generation_temperature=_env_float("GENERATION_TEMPERATURE", 0.7),
        generation_system_prompt=os.getenv("GENERATION_SYSTEM_PROMPT", "").strip(),
        recall_top_k=max(1, _env_int("RECALL_TOP_K", 3)),
        recall_scope=_env_choice("RECALL_SCOPE", "user", {"user", "global"}),
        history_limit=max(1, _env_int("HISTORY_LIMIT", 10)),
        delete_scan_limit=max(1, _env_int("DELETE_SCAN_LIMIT", 10000)),
        llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 30.0),
        embedding_timeout_seconds=_env_float("EMBEDDING_TIMEOUT_SECONDS", 15.0),
        serialize_chat_turns=_env_bool("SERIALIZE_CHAT_TURNS", False),
        validate_chat_ownership=_env_bool("VALIDATE_CHAT_OWNERSHIP", True),
        jwt_secret=os.getenv("JWT_SECRET", "CHANGE_ME_SECRET"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_expire_minutes=_env_int("JWT_EXPIRE_MINUTES", 60 * 24 * 7),
        auth_cookie_name=os.getenv("AUTH_COOKIE_NAME", "token").strip() or "token",
        cors_allow_origins=cors_allow_origins,
    )
