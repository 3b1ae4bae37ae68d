import asyncio
import logging
import os
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence

from google.api_core import exceptions as api_exceptions
from google.cloud.firestore_v1 import AsyncClient, Client
from google.cloud.firestore_v1.base_query import FieldFilter

from .enums import OrderByDirection
from .errors import NotFoundError, StoreConnectionError
from .store import CancelCallback, Condition, DocumentStore, Ordering, Payload, Snapshot

logger = logging.getLogger(__name__)


class FirestoreDB(DocumentStore):
    """
    :class:`DocumentStore` backed by Google Cloud Firestore.

    Wraps a :class:`google.cloud.firestore_v1.AsyncClient` for reads, writes
    and queries, plus a lazily created synchronous
    :class:`google.cloud.firestore_v1.Client` for ``on_snapshot`` listeners
    (the async client has no watch support).

    The same object can transparently connect to:

    * **A local Firestore emulator** – useful for local development and CI.
    * **The real Firestore backend** – default when no emulator host is set.
    * **A mocked client** – handy for unit‐tests that must not touch the network.
    """

    def __init__(
        self,
        project_id: str,
        database: Optional[str] = None,
        credentials=None,
        emulator_host: Optional[str] = None,
    ):
        """
        Parameters
        ----------
        project_id :
            Google Cloud project identifier (e.g. ``"my‐gcp‐project"``).
        database :
            Optional Firestore **database ID** (defaults to the default database).
        credentials :
            Explicit credentials object; if *None*, the Google SDK default
            credentials chain is used.
        emulator_host :
            Hostname (and port) of a running **Firestore emulator**
            such as ``"localhost:8080"``.  When provided, the client points
            to the emulator instead of the production service.
        """
        self.project_id = project_id
        self.database = database
        self.credentials = credentials
        self._emulator_host = emulator_host
        self._listen_client: Optional[Client] = None

        self.client: AsyncClient = self._init_client()

    # --------------------------------------------------------------------- #
    # Internal helpers                                                      #
    # --------------------------------------------------------------------- #

    def _init_client(self) -> AsyncClient:
        """
        Instantiate and return an :class:`AsyncClient`.

        * If ``self._emulator_host`` is set, the ``FIRESTORE_EMULATOR_HOST``
          environment variable is exported so that the Google client
          libraries route all traffic to the local emulator.
        * Otherwise, any previously set ``FIRESTORE_EMULATOR_HOST`` variable is
          removed to make sure we hit the real Firestore backend.
        """
        self._listen_client = None
        if self._emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = self._emulator_host
            logger.info(f"Using Firestore emulator on {self._emulator_host}")
        else:
            os.environ.pop("FIRESTORE_EMULATOR_HOST", None)
        return AsyncClient(
            project=self.project_id,
            database=self.database,
            credentials=self.credentials,
        )

    @property
    def listen_client(self) -> Client:
        """Synchronous client used only for snapshot listeners."""
        if self._listen_client is None:
            self._listen_client = Client(
                project=self.project_id,
                database=self.database,
                credentials=self.credentials,
            )
        return self._listen_client

    @contextmanager
    def _translate_errors(self, action: str):
        try:
            yield
        except api_exceptions.NotFound as exc:
            raise NotFoundError(f"{action}: {exc}", cause=exc) from exc
        except api_exceptions.GoogleAPIError as exc:
            raise StoreConnectionError(f"{action}: {exc}", cause=exc) from exc

    # --------------------------------------------------------------------- #
    # Public utility methods                                                #
    # --------------------------------------------------------------------- #

    def use_emulator(self, host: str = "localhost:8080"):
        """
        Switch the instance to a **local emulator** and recreate the client.

        Parameters
        ----------
        host :
            Target host and port where the emulator is listening.
        """
        self._emulator_host = host
        self.client = self._init_client()
        logger.info(f"Emulator enabled on {host}")

    def clear_emulator(self):
        """
        Disable the emulator and reconnect to the **production** Firestore
        endpoint.  A fresh :class:`AsyncClient` is created automatically.
        """
        self._emulator_host = None
        self.client = self._init_client()
        logger.info("Emulator disabled – using real Firestore.")

    def mock_firestore_for_tests(self):
        """
        Replace both underlying clients with :class:`unittest.mock.MagicMock`
        objects so unit tests never touch the network.
        """
        from unittest.mock import MagicMock

        self.client = MagicMock()
        self._listen_client = MagicMock()
        logger.info("Firestore clients replaced with MagicMock for unit tests.")

    # --------------------------------------------------------------------- #
    # DocumentStore                                                         #
    # --------------------------------------------------------------------- #

    async def get_document(self, collection: str, doc_id: str) -> Optional[Payload]:
        with self._translate_errors(f"get {collection}/{doc_id}"):
            snapshot = await self.client.collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    async def get_documents(self, collection: str, ids: Sequence[str]) -> List[Snapshot]:
        query = self.client.collection(collection).where(filter=FieldFilter("id", "in", list(ids)))
        with self._translate_errors(f"get {len(ids)} document(s) from {collection}"):
            return [(doc.id, doc.to_dict()) async for doc in query.stream()]

    async def set_document(self, collection: str, doc_id: str, payload: Payload, merge: bool = False) -> None:
        with self._translate_errors(f"set {collection}/{doc_id}"):
            await self.client.collection(collection).document(doc_id).set(payload, merge=merge)

    async def update_fields(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        logger.debug(f"Update: {collection} - id={doc_id}, updates={updates}")
        with self._translate_errors(f"update {collection}/{doc_id}"):
            await self.client.collection(collection).document(doc_id).update(updates)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        with self._translate_errors(f"delete {collection}/{doc_id}"):
            await self.client.collection(collection).document(doc_id).delete()

    async def run_query(
        self,
        collection: str,
        conditions: Sequence[Condition],
        order: Optional[Ordering] = None,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        query = self.client.collection(collection)
        for condition in conditions:
            query = query.where(
                filter=FieldFilter(condition.path, condition.operator.value, condition.value)
            )
        if order is not None:
            direction = OrderByDirection.DESCENDING if order.descending else OrderByDirection.ASCENDING
            query = query.order_by(order.path, direction=str(direction))
        if limit is not None:
            query = query.limit(limit)
        with self._translate_errors(f"query {collection}"):
            return [(doc.id, doc.to_dict()) async for doc in query.stream()]

    async def subscribe(
        self, collection: str, doc_id: str, on_change: Callable[[Optional[Payload]], None]
    ) -> CancelCallback:
        """
        Attach an ``on_snapshot`` watch.  Firestore calls back on its own
        thread; every snapshot is handed to ``on_change`` on this event loop
        with ``call_soon_threadsafe``, which keeps the emission order.
        """
        loop = asyncio.get_running_loop()

        def on_snapshot(snapshots, changes, read_time):
            for snapshot in snapshots:
                payload = snapshot.to_dict() if snapshot.exists else None
                loop.call_soon_threadsafe(on_change, payload)

        reference = self.listen_client.collection(collection).document(doc_id)
        with self._translate_errors(f"listen {collection}/{doc_id}"):
            watch = reference.on_snapshot(on_snapshot)
        logger.debug(f"Listening to {collection}/{doc_id}")
        return watch.unsubscribe
