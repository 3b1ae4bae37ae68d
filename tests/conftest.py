import pytest

from firestore_sync_odm import Document, SyncContext, SyncSettings, init_firestore_sync

from .memory_store import MemoryStore
from .models import AppConfig, Combo, FoodItem, Menu, SpecialFoodItem

ALL_MODELS = [FoodItem, SpecialFoodItem, Menu, AppConfig, Combo]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def context(store):
    """Bind every test model to a fresh context over the in-memory store."""
    context = init_firestore_sync(store, ALL_MODELS)
    yield context
    context.close()
    for model in ALL_MODELS:
        model._context = None
    Document._context = None


@pytest.fixture
def small_chunks_context(store):
    context = init_firestore_sync(SyncContext(store, SyncSettings(in_query_limit=3)), ALL_MODELS)
    yield context
    context.close()
    for model in ALL_MODELS:
        model._context = None
