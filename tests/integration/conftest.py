"""
Adaptive fixtures for integration tests.

Automatically detects whether to use the Firestore Emulator or real Firestore
based on the ``FIRESTORE_EMULATOR_HOST`` environment variable.

Emulator mode:  FIRESTORE_EMULATOR_HOST=localhost:8080  (fast, no creds)
Real mode:      FIRESTORE_EMULATOR_HOST unset/empty      (needs GCP creds)

Without either, every test in this package is skipped.
"""

import json
import logging
import os
import warnings

import httpx
import pytest
import pytest_asyncio

from firestore_sync_odm import FirestoreDB, init_firestore_sync

from .models import ALL_MODELS

logger = logging.getLogger(__name__)

# ── Environment detection ────────────────────────────────────────────────────

EMULATOR_HOST = os.environ.get("FIRESTORE_EMULATOR_HOST", "").strip()
DATABASE = os.environ.get("DATABASE", None) or None
CREDENTIALS_PATH = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS", "")

IS_EMULATOR = bool(EMULATOR_HOST)

PROJECT_ID = os.environ.get("GOOGLE_CLOUD_PROJECT") or ""

if not PROJECT_ID and not IS_EMULATOR and CREDENTIALS_PATH:
    # The client must never receive an empty project string.
    try:
        with open(CREDENTIALS_PATH) as _f:
            PROJECT_ID = json.load(_f).get("project_id", "") or ""
    except (OSError, ValueError) as _exc:
        logger.warning("Could not read project_id from SA file: %s", _exc)

if not PROJECT_ID:
    PROJECT_ID = "test-project"

TEST_COLLECTIONS = ["food_items", "menus", "Singleton", "restaurants"]


def pytest_collection_modifyitems(config, items):
    if IS_EMULATOR or CREDENTIALS_PATH:
        return
    skip = pytest.mark.skip(reason="needs FIRESTORE_EMULATOR_HOST or GOOGLE_APPLICATION_CREDENTIALS")
    here = os.path.dirname(__file__)
    for item in items:
        if str(item.fspath).startswith(here):
            item.add_marker(skip)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def firestore_db():
    """Create FirestoreDB pointing to emulator or real Firestore.

    Function-scoped so each test gets a fresh AsyncClient bound to the
    current event loop.
    """
    if IS_EMULATOR:
        return FirestoreDB(
            project_id=PROJECT_ID,
            emulator_host=EMULATOR_HOST,
        )

    from google.oauth2.service_account import Credentials

    credentials = Credentials.from_service_account_file(CREDENTIALS_PATH)
    return FirestoreDB(
        project_id=PROJECT_ID,
        database=DATABASE,
        credentials=credentials,
    )


@pytest.fixture()
def raw_client(firestore_db):
    """Raw AsyncClient pointing to the same backend as the ODM."""
    return firestore_db.client


@pytest_asyncio.fixture(autouse=True)
async def clean_firestore(firestore_db):
    """Wipe all data before and after each test."""
    await _perform_cleanup(firestore_db)
    yield
    await _perform_cleanup(firestore_db)


async def _perform_cleanup(firestore_db):
    if IS_EMULATOR:
        db_name = DATABASE or "(default)"
        url = (
            f"http://{EMULATOR_HOST}/emulator/v1/projects/"
            f"{PROJECT_ID}/databases/{db_name}/documents"
        )
        async with httpx.AsyncClient() as client:
            await client.delete(url)
        return

    client = firestore_db.client
    try:
        for col_name in TEST_COLLECTIONS:
            async for doc in client.collection(col_name).stream():
                await client.recursive_delete(doc.reference)
    except Exception as exc:  # noqa: BLE001
        # A teardown that raises turns a passing test into FAILED+ERROR.
        warnings.warn(f"[conftest] Firestore cleanup error: {exc}", stacklevel=1)


@pytest_asyncio.fixture
async def sync_context(firestore_db):
    """Bind every model to a context over the live store."""
    context = init_firestore_sync(firestore_db, ALL_MODELS)
    yield context
    context.close()
    for model in ALL_MODELS:
        model._context = None
