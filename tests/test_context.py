import logging

import pytest

from firestore_sync_odm import SyncContext, SyncSettings, init_firestore_sync
from firestore_sync_odm.pydantic_compat import ValidationError

from .memory_store import MemoryStore
from .models import FoodItem, Menu


@pytest.fixture(autouse=True)
def unbind_models():
    yield
    FoodItem._context = None
    Menu._context = None


def test_settings_defaults():
    settings = SyncSettings()
    assert settings.use_cache is True
    assert settings.in_query_limit == 10
    assert settings.cache_max_entries is None


def test_settings_validation():
    with pytest.raises(ValidationError):
        SyncSettings(in_query_limit=0)
    with pytest.raises(ValidationError):
        SyncSettings(cache_max_entries=0)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("FIRESTORE_SYNC_USE_CACHE", "false")
    monkeypatch.setenv("FIRESTORE_SYNC_IN_QUERY_LIMIT", "5")
    monkeypatch.setenv("FIRESTORE_SYNC_CACHE_MAX_ENTRIES", "100")
    settings = SyncSettings.from_env()
    assert settings.use_cache is False
    assert settings.in_query_limit == 5
    assert settings.cache_max_entries == 100


def test_settings_from_env_defaults(monkeypatch):
    for name in ("FIRESTORE_SYNC_USE_CACHE", "FIRESTORE_SYNC_IN_QUERY_LIMIT", "FIRESTORE_SYNC_CACHE_MAX_ENTRIES"):
        monkeypatch.delenv(name, raising=False)
    assert SyncSettings.from_env() == SyncSettings()


def test_context_builds_bounded_cache():
    context = SyncContext(MemoryStore(), SyncSettings(cache_max_entries=3))
    assert context.cache.max_entries_per_type == 3
    assert not context.closed


def test_init_binds_models_to_new_context():
    store = MemoryStore()
    context = init_firestore_sync(store, [FoodItem, Menu], settings=SyncSettings(use_cache=False))
    assert context.store is store
    assert context.settings.use_cache is False
    assert FoodItem._require_context() is context
    assert Menu._require_context() is context


def test_init_accepts_existing_context():
    context = SyncContext(MemoryStore())
    assert init_firestore_sync(context, [FoodItem]) is context


def test_close_is_idempotent(caplog):
    context = SyncContext(MemoryStore())
    with caplog.at_level(logging.INFO, logger="firestore_sync_odm.context"):
        context.close()
        context.close()
    assert context.closed
    assert caplog.text.count("Sync context closed") == 1
