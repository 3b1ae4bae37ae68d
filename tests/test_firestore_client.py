import asyncio
import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as api_exceptions

from firestore_sync_odm import (
    Condition,
    FirestoreDB,
    FirestoreOperators,
    NotFoundError,
    Ordering,
    StoreConnectionError,
)
from firestore_sync_odm import firestore_client


def _snapshot(doc_id, data):
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.exists = data is not None
    snapshot.to_dict.return_value = data
    return snapshot


def _stream(*snapshots):
    async def gen():
        for snapshot in snapshots:
            yield snapshot

    return gen()


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def async_client_class(monkeypatch):
    """Replace the AsyncClient constructor so no credentials are needed."""
    mock_class = MagicMock()
    monkeypatch.setattr(firestore_client, "AsyncClient", mock_class)
    monkeypatch.delenv("FIRESTORE_EMULATOR_HOST", raising=False)
    yield mock_class
    os.environ.pop("FIRESTORE_EMULATOR_HOST", None)


@pytest.fixture
def firestore_db(async_client_class):
    db = FirestoreDB(project_id="test-project")
    db.mock_firestore_for_tests()
    return db


@pytest.fixture
def document_ref(firestore_db):
    doc_ref = MagicMock()
    firestore_db.client.collection.return_value.document.return_value = doc_ref
    return doc_ref


@pytest.fixture
def query_ref(firestore_db):
    query = MagicMock()
    query.where.return_value = query
    query.order_by.return_value = query
    query.limit.return_value = query
    firestore_db.client.collection.return_value = query
    return query


# -----------------------------------------------------------------------------
# Client setup
# -----------------------------------------------------------------------------
def test_firestore_db_init(async_client_class):
    db = FirestoreDB(project_id="test-project", database="menu-db")
    assert db.project_id == "test-project"
    async_client_class.assert_called_once_with(project="test-project", database="menu-db", credentials=None)
    assert "FIRESTORE_EMULATOR_HOST" not in os.environ


def test_firestore_db_emulator(async_client_class):
    db = FirestoreDB(project_id="test-project")
    db.use_emulator("localhost:9090")
    assert db._emulator_host == "localhost:9090"
    assert os.environ["FIRESTORE_EMULATOR_HOST"] == "localhost:9090"
    db.clear_emulator()
    assert db._emulator_host is None
    assert "FIRESTORE_EMULATOR_HOST" not in os.environ
    assert async_client_class.call_count == 3


def test_firestore_db_mock(firestore_db):
    assert isinstance(firestore_db.client, MagicMock)
    assert isinstance(firestore_db.listen_client, MagicMock)


# -----------------------------------------------------------------------------
# Reads and writes
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_get_document(firestore_db, document_ref):
    document_ref.get = AsyncMock(return_value=_snapshot("taco", {"id": "taco", "name": "Taco"}))
    assert await firestore_db.get_document("food_items", "taco") == {"id": "taco", "name": "Taco"}
    firestore_db.client.collection.assert_called_with("food_items")
    firestore_db.client.collection.return_value.document.assert_called_with("taco")


@pytest.mark.asyncio
async def test_get_missing_document(firestore_db, document_ref):
    document_ref.get = AsyncMock(return_value=_snapshot("taco", None))
    assert await firestore_db.get_document("food_items", "taco") is None


@pytest.mark.asyncio
async def test_get_documents_filters_on_id(firestore_db, query_ref):
    query_ref.stream.return_value = _stream(_snapshot("a", {"id": "a"}), _snapshot("b", {"id": "b"}))
    result = await firestore_db.get_documents("food_items", ["a", "b"])
    assert result == [("a", {"id": "a"}), ("b", {"id": "b"})]
    field_filter = query_ref.where.call_args.kwargs["filter"]
    assert (field_filter.field_path, field_filter.op_string, field_filter.value) == ("id", "in", ["a", "b"])


@pytest.mark.asyncio
async def test_set_update_and_delete(firestore_db, document_ref):
    document_ref.set = AsyncMock()
    document_ref.update = AsyncMock()
    document_ref.delete = AsyncMock()

    await firestore_db.set_document("food_items", "taco", {"name": "Taco"}, merge=True)
    document_ref.set.assert_awaited_once_with({"name": "Taco"}, merge=True)

    await firestore_db.update_fields("food_items", "taco", {"price.amount": 3.0})
    document_ref.update.assert_awaited_once_with({"price.amount": 3.0})

    await firestore_db.delete_document("food_items", "taco")
    document_ref.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_api_errors_are_translated(firestore_db, document_ref):
    document_ref.update = AsyncMock(side_effect=api_exceptions.NotFound("no document"))
    with pytest.raises(NotFoundError):
        await firestore_db.update_fields("food_items", "taco", {"name": "Taco"})

    document_ref.get = AsyncMock(side_effect=api_exceptions.ServiceUnavailable("offline"))
    with pytest.raises(StoreConnectionError) as excinfo:
        await firestore_db.get_document("food_items", "taco")
    assert isinstance(excinfo.value.cause, api_exceptions.ServiceUnavailable)


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_run_query_builds_filters_order_and_limit(firestore_db, query_ref):
    query_ref.stream.return_value = _stream(_snapshot("flan", {"name": "Flan"}))
    result = await firestore_db.run_query(
        "food_items",
        [Condition("category", FirestoreOperators.EQ, "dessert")],
        order=Ordering("price.amount", descending=True),
        limit=5,
    )
    assert result == [("flan", {"name": "Flan"})]
    field_filter = query_ref.where.call_args.kwargs["filter"]
    assert (field_filter.field_path, field_filter.op_string, field_filter.value) == ("category", "==", "dessert")
    query_ref.order_by.assert_called_once_with("price.amount", direction="DESCENDING")
    query_ref.limit.assert_called_once_with(5)


# -----------------------------------------------------------------------------
# Listening
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_subscribe_hands_snapshots_to_the_loop(firestore_db):
    doc_ref = firestore_db.listen_client.collection.return_value.document.return_value
    watch = MagicMock()
    doc_ref.on_snapshot.return_value = watch
    received = []

    cancel = await firestore_db.subscribe("food_items", "taco", received.append)
    on_snapshot = doc_ref.on_snapshot.call_args.args[0]
    on_snapshot([_snapshot("taco", {"name": "Taco"})], [], None)
    on_snapshot([_snapshot("taco", None)], [], None)
    for _ in range(3):
        await asyncio.sleep(0)

    assert received == [{"name": "Taco"}, None]
    cancel()
    watch.unsubscribe.assert_called_once_with()
