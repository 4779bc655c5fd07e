"""
Shared pytest fixtures.

Provides:
- Settings tuned for tests (small vectors, temp SQLite file)
- Real conversation store (SQLite) and local vector store
- Deterministic fake embedding and generative providers
- An orchestrator and a FastAPI TestClient wired to all of the above
"""

import hashlib
import time
from dataclasses import replace
from typing import Optional, Sequence

import pytest
from fastapi.testclient import TestClient

from backend.app.conversation.models import Role, TextUnit
from backend.app.conversation.store import SqlConversationStore
from backend.app.core.config import get_settings
from backend.app.core.db.relational import create_relational_engine, create_session_factory, init_relational_db
from backend.app.core.errors import EmbeddingFailed, GenerationFailed
from backend.app.orchestrator.factory import AppServices, build_memory_orchestrator
from backend.app.vector_store.repository import LocalVectorStoreRepository

TEST_DIMS = 8


class FakeEmbedder:
    """Hash-derived vectors: equal text gives equal vectors."""

    def __init__(self, dims: int = TEST_DIMS):
        self.dims = dims
        self.calls: list[TextUnit] = []
        self.fail_roles: set[Role] = set()
        self.fail_delay = 0.0

    def embed(self, unit: TextUnit) -> list[float]:
        self.calls.append(unit)
        if unit.role in self.fail_roles:
            time.sleep(self.fail_delay)
            raise EmbeddingFailed(f"embedding refused for role {unit.role.value}")
        digest = hashlib.sha256(unit.text.encode("utf-8")).digest()
        return [(b + 1) / 256.0 for b in digest[: self.dims]]


class FakeGenerator:
    def __init__(self, reply: Optional[str] = None):
        self.reply = reply
        self.calls: list[list[TextUnit]] = []
        self.fail = False
        self.delay = 0.0

    def generate(self, units: Sequence[TextUnit]) -> str:
        self.calls.append(list(units))
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise GenerationFailed("provider unavailable")
        if self.reply is not None:
            return self.reply
        return f"reply to: {units[-1].text}"


@pytest.fixture
def settings(tmp_path):
    return replace(
        get_settings(),
        app_env="test",
        data_dir=tmp_path,
        database_url=f"sqlite:///{tmp_path / 'chat.db'}",
        vector_store_path=None,
        embedding_dims=TEST_DIMS,
        recall_top_k=3,
        history_limit=10,
        recall_scope="user",
        llm_timeout_seconds=5.0,
        embedding_timeout_seconds=5.0,
        serialize_chat_turns=False,
        validate_chat_ownership=True,
        jwt_secret="test-secret",
        log_json=True,
    )


@pytest.fixture
def session_factory(settings):
    engine = create_relational_engine(settings.database_url)
    init_relational_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def conversation_store(session_factory):
    return SqlConversationStore(session_factory)


@pytest.fixture
def vector_store():
    return LocalVectorStoreRepository(dims=TEST_DIMS)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def partial_writes():
    return []


@pytest.fixture
def orchestrator(settings, conversation_store, vector_store, embedder, generator, partial_writes):
    return build_memory_orchestrator(
        settings,
        conversation_store=conversation_store,
        vector_store=vector_store,
        embedder=embedder,
        generator=generator,
        partial_write_hook=partial_writes.append,
    )


@pytest.fixture
def services(settings, session_factory, conversation_store, vector_store, orchestrator):
    return AppServices(
        settings=settings,
        session_factory=session_factory,
        conversation_store=conversation_store,
        vector_store=vector_store,
        orchestrator=orchestrator,
    )


@pytest.fixture
def client(services):
    from backend.main import create_app

    with TestClient(create_app(services)) as test_client:
        yield test_client


def register_user(client: TestClient, email: str, password: str = "s3cret-pass") -> str:
    """Register a user and return their token; the client's cookie jar is left empty."""
    response = client.post(
        "/api/auth/register",
        json={
            "email": email,
            "fullName": {"firstName": "Test", "lastName": "User"},
            "password": password,
        },
    )
    assert response.status_code == 201, response.text
    token = response.cookies.get("token")
    client.cookies.clear()
    return token


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
