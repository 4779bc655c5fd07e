from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from qdrant_client.models import Filter, PointIdsList

from backend.app.core.errors import StoreUnavailable
from backend.app.vector_store.qdrant_client import get_qdrant_client, qdrant_client_kwargs
from backend.app.vector_store.repository import (
    LocalVectorStoreRepository,
    QdrantVectorStoreRepository,
    get_vector_store,
)


def _meta(chat, user="u1", text="t", role="user"):
    return {"chat": chat, "user": user, "text": text, "role": role}


def test_local_query_orders_by_similarity_and_caps_top_k():
    store = LocalVectorStoreRepository(dims=3)
    store.upsert("near", [1.0, 0.0, 0.0], _meta("c1", text="near"))
    store.upsert("mid", [1.0, 1.0, 0.0], _meta("c1", text="mid"))
    store.upsert("far", [0.0, 0.0, 1.0], _meta("c1", text="far"))

    hits = store.query([1.0, 0.0, 0.0], top_k=2)

    assert [h.id for h in hits] == ["near", "mid"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[0].metadata["text"] == "near"


def test_local_query_applies_metadata_filter():
    store = LocalVectorStoreRepository(dims=2)
    store.upsert("a", [1.0, 0.0], _meta("c1", user="u1"))
    store.upsert("b", [1.0, 0.0], _meta("c2", user="u2"))

    assert [h.id for h in store.query([1.0, 0.0], 10, {"user": "u2"})] == ["b"]
    assert [h.id for h in store.query([1.0, 0.0], 10, {"chat": "c1", "user": "u1"})] == ["a"]
    assert store.query([1.0, 0.0], 10, {"chat": "c3"}) == []


def test_upsert_replaces_record_with_same_id():
    store = LocalVectorStoreRepository(dims=2)
    store.upsert("a", [1.0, 0.0], _meta("c1", text="old"))
    store.upsert("a", [0.0, 1.0], _meta("c1", text="new"))

    [hit] = store.query([0.0, 1.0], 10)
    assert len(store) == 1
    assert hit.metadata["text"] == "new"


def test_delete_by_metadata_removes_only_matching_records():
    store = LocalVectorStoreRepository(dims=2)
    store.upsert("a", [1.0, 0.0], _meta("c1"))
    store.upsert("b", [0.0, 1.0], _meta("c1"))
    store.upsert("c", [1.0, 1.0], _meta("c2"))

    assert store.delete_by_metadata({"chat": "c1"}) == 2
    assert [h.id for h in store.query([1.0, 1.0], 10)] == ["c"]
    assert store.delete_by_metadata({"chat": "c1"}) == 0


def test_delete_by_metadata_repeats_passes_beyond_scan_limit():
    store = LocalVectorStoreRepository(dims=2, delete_scan_limit=2)
    for i in range(5):
        store.upsert(f"r{i}", [1.0, float(i)], _meta("c1"))
    store.upsert("other", [1.0, 0.0], _meta("c2"))

    assert store.delete_by_metadata({"chat": "c1"}) == 5
    assert store.query([1.0, 0.0], 10, {"chat": "c1"}) == []
    assert [h.id for h in store.query([1.0, 0.0], 10)] == ["other"]


def test_delete_by_metadata_stops_when_deletes_do_not_land():
    class StuckStore(LocalVectorStoreRepository):
        def delete_by_ids(self, ids):
            pass

    store = StuckStore(dims=2, delete_scan_limit=2)
    for i in range(3):
        store.upsert(f"r{i}", [1.0, float(i)], _meta("c1"))

    assert store.delete_by_metadata({"chat": "c1"}) == 2


def test_local_store_persists_to_json(tmp_path):
    path = tmp_path / "vectors" / "memory.json"
    store = LocalVectorStoreRepository(dims=2, path=path)
    store.upsert("a", [1.0, 0.0], _meta("c1", text="kept"))

    reloaded = LocalVectorStoreRepository(dims=2, path=path)

    [hit] = reloaded.query([1.0, 0.0], 1)
    assert hit.id == "a"
    assert hit.metadata["text"] == "kept"


def test_failed_upsert_leaves_index_unchanged(tmp_path):
    # A directory at the file path makes every write fail.
    store = LocalVectorStoreRepository(dims=2, path=tmp_path)

    with pytest.raises(StoreUnavailable):
        store.upsert("m1", [1.0, 0.0], _meta("c1"))

    assert len(store) == 0
    assert store.query([1.0, 0.0], 10) == []


def test_failed_delete_keeps_records_in_memory_and_on_disk(tmp_path):
    path = tmp_path / "memory.json"
    store = LocalVectorStoreRepository(dims=2, path=path)
    store.upsert("m1", [1.0, 0.0], _meta("c1"))
    store.path = tmp_path

    with pytest.raises(StoreUnavailable):
        store.delete_by_ids(["m1"])

    assert [h.id for h in store.query([1.0, 0.0], 10)] == ["m1"]
    assert len(LocalVectorStoreRepository(dims=2, path=path)) == 1


def test_local_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "memory.json"
    path.write_text("{not json", encoding="utf-8")

    store = LocalVectorStoreRepository(dims=2, path=path)

    assert len(store) == 0


@pytest.fixture
def qdrant_settings(settings):
    return replace(settings, qdrant_collection="test_memory", embedding_dims=4, delete_scan_limit=100)


def test_qdrant_repository_creates_missing_collection(qdrant_settings):
    client = MagicMock()

    QdrantVectorStoreRepository(qdrant_settings, client=client)

    client.create_collection.assert_called_once()
    assert client.create_collection.call_args.kwargs["collection_name"] == "test_memory"
    indexed = {c.kwargs["field_name"] for c in client.create_payload_index.call_args_list}
    assert indexed == {"chat", "user"}


def test_qdrant_query_maps_points_and_builds_filter(qdrant_settings):
    client = MagicMock()
    client.query_points.return_value = SimpleNamespace(
        points=[SimpleNamespace(id="m1", score=0.87, payload=_meta("c1", text="hello"))]
    )
    repo = QdrantVectorStoreRepository(qdrant_settings, client=client)

    [hit] = repo.query([0.1, 0.2, 0.3, 0.4], top_k=3, metadata_filter={"user": "u1"})

    assert hit.id == "m1"
    assert hit.score == pytest.approx(0.87)
    assert hit.metadata["text"] == "hello"
    kwargs = client.query_points.call_args.kwargs
    assert kwargs["limit"] == 3
    assert isinstance(kwargs["query_filter"], Filter)
    assert kwargs["query_filter"].must[0].key == "user"


def test_qdrant_query_without_filter(qdrant_settings):
    client = MagicMock()
    client.query_points.return_value = SimpleNamespace(points=[])
    repo = QdrantVectorStoreRepository(qdrant_settings, client=client)

    assert repo.query([0.0, 0.0, 0.0, 1.0], top_k=3) == []
    assert client.query_points.call_args.kwargs["query_filter"] is None


def test_qdrant_delete_by_metadata_scrolls_then_deletes(qdrant_settings):
    client = MagicMock()
    client.scroll.side_effect = [
        ([SimpleNamespace(id="a"), SimpleNamespace(id="b")], "page-2"),
        ([SimpleNamespace(id="c")], None),
    ]
    repo = QdrantVectorStoreRepository(qdrant_settings, client=client)

    assert repo.delete_by_metadata({"chat": "c1"}) == 3

    assert client.scroll.call_count == 2
    selector = client.delete.call_args.kwargs["points_selector"]
    assert isinstance(selector, PointIdsList)
    assert selector.points == ["a", "b", "c"]


def test_qdrant_delete_by_metadata_with_no_matches_skips_delete(qdrant_settings):
    client = MagicMock()
    client.scroll.return_value = ([], None)
    repo = QdrantVectorStoreRepository(qdrant_settings, client=client)

    assert repo.delete_by_metadata({"chat": "c1"}) == 0
    client.delete.assert_not_called()


def test_qdrant_errors_become_store_unavailable(qdrant_settings):
    client = MagicMock()
    client.upsert.side_effect = ConnectionError("refused")
    repo = QdrantVectorStoreRepository(qdrant_settings, client=client)

    with pytest.raises(StoreUnavailable):
        repo.upsert("11111111-1111-1111-1111-111111111111", [0.1, 0.2, 0.3, 0.4], _meta("c1"))


def test_get_vector_store_falls_back_to_local(settings, monkeypatch):
    monkeypatch.setattr("backend.app.vector_store.repository.get_qdrant_client", lambda s: None)

    store = get_vector_store(replace(settings, require_qdrant=False))

    assert isinstance(store, LocalVectorStoreRepository)
    assert store.dims == settings.embedding_dims


def test_get_vector_store_raises_when_qdrant_required(settings, monkeypatch):
    monkeypatch.setattr("backend.app.vector_store.repository.get_qdrant_client", lambda s: None)

    with pytest.raises(RuntimeError):
        get_vector_store(replace(settings, require_qdrant=True))


def test_qdrant_client_kwargs(settings):
    kwargs = qdrant_client_kwargs(replace(settings, qdrant_url="http://qdrant:6333", qdrant_api_key=""))
    assert kwargs["url"] == "http://qdrant:6333"
    assert "api_key" not in kwargs

    with_key = qdrant_client_kwargs(replace(settings, qdrant_api_key="secret"))
    assert with_key["api_key"] == "secret"


def test_unreachable_qdrant_yields_no_client(settings, monkeypatch):
    def refuse(**kwargs):
        raise ConnectionError("refused")

    monkeypatch.setattr("backend.app.vector_store.qdrant_client.QdrantClient", refuse)

    assert get_qdrant_client(settings) is None
