"""
Vector memory storage abstraction.

Uses Qdrant when available; otherwise falls back to an in-process index that can
persist to a JSON file.

Every record id equals the id of the message it was derived from, and the
metadata carries {chat, user, text, role} so records can be filtered per chat
or per user and deleted together with their chat.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import StoreUnavailable
from backend.app.embeddings.provider import cosine_similarity
from backend.app.observability.logging import log_event
from backend.app.vector_store.qdrant_client import get_qdrant_client


@dataclass
class VectorHit:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _LocalRecord:
    id: str
    vector: list[float]
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "vector": self.vector, "metadata": self.metadata}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "_LocalRecord":
        return cls(
            id=str(data["id"]),
            vector=[float(x) for x in data.get("vector") or []],
            metadata=dict(data.get("metadata") or {}),
        )


class VectorStoreRepository:
    def __init__(self, dims: int, delete_scan_limit: int = 10000):
        self.dims = dims
        self.delete_scan_limit = delete_scan_limit

    def upsert(self, record_id: str, vector: list[float], metadata: dict[str, Any]):
        raise NotImplementedError

    def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorHit]:
        """Top `top_k` records by similarity, highest first."""
        raise NotImplementedError

    def delete_by_ids(self, ids: list[str]):
        raise NotImplementedError

    def delete_by_metadata(self, metadata_filter: dict[str, Any]) -> int:
        """
        Delete every record whose metadata matches the filter.

        Default backing for stores without a native filtered delete: a zero
        vector query makes similarity irrelevant, so the filter alone selects
        the records, which are then deleted by id. Each pass is capped at
        `delete_scan_limit`; passes repeat until no matching record is left.
        """
        deleted = 0
        seen: set[str] = set()
        while True:
            hits = self.query([0.0] * self.dims, top_k=self.delete_scan_limit, metadata_filter=metadata_filter)
            ids = [hit.id for hit in hits if hit.id not in seen]
            if not ids:
                return deleted
            self.delete_by_ids(ids)
            seen.update(ids)
            deleted += len(ids)
            if len(hits) < self.delete_scan_limit:
                return deleted


def _matches(metadata: dict[str, Any], metadata_filter: Optional[dict[str, Any]]) -> bool:
    if not metadata_filter:
        return True
    return all(str(metadata.get(key)) == str(value) for key, value in metadata_filter.items())


class LocalVectorStoreRepository(VectorStoreRepository):
    def __init__(self, dims: int, path: Path | None = None, delete_scan_limit: int = 10000):
        super().__init__(dims, delete_scan_limit)
        self.path = path
        self._lock = Lock()
        self._records: dict[str, _LocalRecord] = {}
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            log_event("vector_store_load_failed", error=str(exc), path=str(self.path))
            return
        if not isinstance(data, list):
            return
        for item in data:
            if isinstance(item, dict) and item.get("id"):
                record = _LocalRecord.from_dict(item)
                self._records[record.id] = record

    def _commit(self, records: dict[str, _LocalRecord]):
        """Persist `records`, then make them the live index; a failed write changes nothing."""
        if self.path is not None:
            self._save(records)
        self._records = records

    def _save(self, records: dict[str, _LocalRecord]):
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in records.values()], f)
        except OSError as exc:
            log_event("vector_store_save_failed", error=str(exc), path=str(self.path))
            raise StoreUnavailable("Local vector store could not be written") from exc

    def upsert(self, record_id: str, vector: list[float], metadata: dict[str, Any]):
        with self._lock:
            records = dict(self._records)
            records[record_id] = _LocalRecord(id=record_id, vector=list(vector), metadata=dict(metadata))
            self._commit(records)

    def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorHit]:
        hits: list[VectorHit] = []
        with self._lock:
            for record in self._records.values():
                if not _matches(record.metadata, metadata_filter):
                    continue
                score = cosine_similarity(vector, record.vector)
                hits.append(VectorHit(id=record.id, score=score, metadata=dict(record.metadata)))
        hits.sort(key=lambda x: x.score, reverse=True)
        return hits[:top_k]

    def delete_by_ids(self, ids: list[str]):
        with self._lock:
            records = dict(self._records)
            for record_id in ids:
                records.pop(record_id, None)
            self._commit(records)

    def __len__(self) -> int:
        return len(self._records)


class QdrantVectorStoreRepository(VectorStoreRepository):
    SCROLL_PAGE = 256

    def __init__(self, settings: Settings | None = None, client: Any | None = None):
        self.settings = settings or get_settings()
        super().__init__(self.settings.embedding_dims, self.settings.delete_scan_limit)
        self.client = client if client is not None else get_qdrant_client(self.settings)
        self.collection = self.settings.qdrant_collection
        if self.client is not None:
            self._ensure_collection()

    def _ensure_collection(self):
        try:
            from qdrant_client.models import Distance, PayloadSchemaType, VectorParams  # type: ignore

            existing = self.client.get_collections().collections
            names = {c.name for c in existing}
            if self.collection not in names:
                self.client.create_collection(
                    collection_name=self.collection,
                    vectors_config=VectorParams(size=self.dims, distance=Distance.COSINE),
                )
                for key in ("chat", "user"):
                    self.client.create_payload_index(
                        collection_name=self.collection,
                        field_name=key,
                        field_schema=PayloadSchemaType.KEYWORD,
                    )
        except Exception as exc:
            log_event("qdrant_collection_init_failed", error=str(exc), collection=self.collection)

    def _client_or_fail(self) -> Any:
        if self.client is None:
            raise StoreUnavailable("Qdrant client unavailable")
        return self.client

    def _fail(self, operation: str, exc: Exception):
        log_event("qdrant_operation_failed", operation=operation, error=str(exc), collection=self.collection)
        raise StoreUnavailable(f"Vector store unavailable during {operation}") from exc

    @staticmethod
    def _build_filter(metadata_filter: Optional[dict[str, Any]]):
        if not metadata_filter:
            return None
        from qdrant_client.models import FieldCondition, Filter, MatchValue  # type: ignore

        return Filter(
            must=[
                FieldCondition(key=key, match=MatchValue(value=value))
                for key, value in metadata_filter.items()
            ]
        )

    def upsert(self, record_id: str, vector: list[float], metadata: dict[str, Any]):
        client = self._client_or_fail()
        from qdrant_client.models import PointStruct  # type: ignore

        try:
            client.upsert(
                collection_name=self.collection,
                points=[PointStruct(id=record_id, vector=list(vector), payload=dict(metadata))],
                wait=True,
            )
        except Exception as exc:
            self._fail("upsert", exc)

    def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorHit]:
        client = self._client_or_fail()
        try:
            response = client.query_points(
                collection_name=self.collection,
                query=list(vector),
                query_filter=self._build_filter(metadata_filter),
                limit=top_k,
                with_payload=True,
            )
        except Exception as exc:
            self._fail("query", exc)
        return [
            VectorHit(id=str(p.id), score=float(getattr(p, "score", 0.0)), metadata=dict(p.payload or {}))
            for p in response.points
        ]

    def delete_by_ids(self, ids: list[str]):
        client = self._client_or_fail()
        from qdrant_client.models import PointIdsList  # type: ignore

        try:
            client.delete(
                collection_name=self.collection,
                points_selector=PointIdsList(points=list(ids)),
                wait=True,
            )
        except Exception as exc:
            self._fail("delete_by_ids", exc)

    def delete_by_metadata(self, metadata_filter: dict[str, Any]) -> int:
        # Scrolling the filter avoids ranking against a zero vector, which cosine
        # distance cannot score.
        client = self._client_or_fail()
        ids: list[str] = []
        offset = None
        try:
            while True:
                points, offset = client.scroll(
                    collection_name=self.collection,
                    scroll_filter=self._build_filter(metadata_filter),
                    limit=self.SCROLL_PAGE,
                    offset=offset,
                    with_payload=False,
                    with_vectors=False,
                )
                ids.extend(str(p.id) for p in points)
                if offset is None:
                    break
        except Exception as exc:
            self._fail("delete_by_metadata", exc)
        if not ids:
            return 0
        self.delete_by_ids(ids)
        return len(ids)


def get_vector_store(settings: Settings | None = None) -> VectorStoreRepository:
    settings = settings or get_settings()
    qdrant_repo = QdrantVectorStoreRepository(settings)
    if qdrant_repo.client is not None:
        log_event("vector_store_ready", backend="qdrant", collection=qdrant_repo.collection)
        return qdrant_repo
    if settings.require_qdrant:
        raise RuntimeError("Qdrant is required but unavailable. Check QDRANT_URL and QDRANT_API_KEY.")

    repo = LocalVectorStoreRepository(
        dims=settings.embedding_dims,
        path=settings.vector_store_path,
        delete_scan_limit=settings.delete_scan_limit,
    )
    log_event("vector_store_ready", backend="local", path=str(settings.vector_store_path or ""))
    return repo
