import asyncio
import datetime
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from .context import SyncContext
from .enums import DocumentState
from .errors import (
    BatchEmptyError,
    DecodingFailed,
    DocumentsResult,
    EncodingFailed,
    FirestoreSyncError,
    NotFoundError,
    Result,
    StoreConnectionError,
)
from .field_object import FieldObject, encode_value
from .firestore_fields import FirestoreField
from .listeners import ListenerHandle
from .query import Query

D = TypeVar("D", bound="Document")

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class CollectionPath:
    """Slash-separated path of the collection a document lives in."""

    path: str

    def __post_init__(self):
        cleaned = self.path.strip("/")
        if not cleaned:
            raise ValueError("Collection path cannot be empty.")
        object.__setattr__(self, "path", cleaned)

    @classmethod
    def collection(cls, name: str) -> "CollectionPath":
        return cls(name)

    @classmethod
    def subcollection(cls, *segments: str) -> "CollectionPath":
        """``subcollection("users", "u1", "posts")`` -> ``users/u1/posts``."""
        if len(segments) % 2 == 0:
            raise ValueError("A subcollection path needs an odd number of segments.")
        return cls("/".join(segments))

    def __str__(self) -> str:
        return self.path


LocationType = Union[CollectionPath, str]


class Document(FieldObject):
    """
    A :class:`FieldObject` with identity and remote synchronization.

    Subclasses declare their fields with :class:`FirestoreField` and may set
    the collection name through an inner ``Settings`` class::

        class FoodItem(Document):
            class Settings:
                name = "food_items"

            name: str = FirestoreField("None")
            price: Price = FirestoreField(default_factory=Price)

    Two documents are equal when their ids are equal.
    """

    _is_document = True

    # --------------------------------------------------------------------------
    # Class attribute for injected SyncContext instance
    # --------------------------------------------------------------------------
    _context: Optional[SyncContext] = None  # Injected externally

    id: str = FirestoreField(key="id", default_factory=_new_id, read_only=True)
    date_created: datetime.datetime = FirestoreField(key="dateCreated", default_factory=_utcnow)

    def __init__(
        self,
        id: Optional[str] = None,
        date_created: Optional[datetime.datetime] = None,
        *,
        location: Optional[LocationType] = None,
        **values: Any,
    ):
        super().__init__(**values)
        if id is not None:
            self._fields["id"].value = id
        if date_created is not None:
            self._fields["date_created"].value = date_created
        self._setup_document(location)

    def _setup_document(self, location: Optional[LocationType]) -> None:
        self._location = type(self)._resolve_location(location)
        self.pending_batch: Set[str] = set()
        self.listener: Optional[ListenerHandle] = None
        self._state = DocumentState.UNBOUND
        self._writes_in_flight = 0

    # --------------------------------------------------------------------------
    # Context initialization (injection)
    # --------------------------------------------------------------------------
    @classmethod
    def initialize_context(cls, context: SyncContext) -> None:
        """
        Inject the SyncContext used for all remote operations of this model.
        """
        cls._context = context

    @classmethod
    def _require_context(cls) -> SyncContext:
        if cls._context is None:
            raise RuntimeError("Context must be initialized before using the model.")
        if cls._context.closed:
            raise RuntimeError("Context was closed; bind a new one before using the model.")
        return cls._context

    # --------------------------------------------------------------------------
    # Location
    # --------------------------------------------------------------------------
    @classmethod
    def get_collection_name(cls) -> str:
        settings = getattr(cls, "Settings", None)
        return getattr(settings, "name", None) or cls.__name__

    @classmethod
    def default_location(cls) -> CollectionPath:
        return CollectionPath(cls.get_collection_name())

    @classmethod
    def _resolve_location(cls, location: Optional[LocationType]) -> CollectionPath:
        if location is None:
            return cls.default_location()
        if isinstance(location, CollectionPath):
            return location
        return CollectionPath(location)

    @property
    def location(self) -> CollectionPath:
        return self._location

    # --------------------------------------------------------------------------
    # State tracking
    # --------------------------------------------------------------------------
    @property
    def state(self) -> DocumentState:
        if self._writes_in_flight:
            return DocumentState.WRITING
        if self.pending_batch:
            return DocumentState.DIRTY
        return self._state

    def _queue(self, key_path: str) -> None:
        self.pending_batch.add(key_path)

    @contextmanager
    def _writing(self):
        self._writes_in_flight += 1
        try:
            yield
        except BaseException:
            self._state = DocumentState.WRITE_FAILED
            raise
        else:
            self._state = DocumentState.SYNCED
        finally:
            self._writes_in_flight -= 1

    # --------------------------------------------------------------------------
    # Codec
    # --------------------------------------------------------------------------
    @classmethod
    def decode(
        cls: Type[D],
        payload: Mapping[str, Any],
        doc_id: Optional[str] = None,
        location: Optional[LocationType] = None,
    ) -> D:
        """
        Materialize a document from a remote payload.

        ``doc_id`` is the id the store reported for the payload and wins over
        an ``id`` value inside it; ``location`` is where it was fetched from.
        """
        document = super().decode(payload)
        if doc_id is not None:
            document._fields["id"].value = doc_id
        document._setup_document(location)
        document._state = DocumentState.SYNCED
        return document

    @classmethod
    def _materialize(
        cls: Type[D], context: SyncContext, doc_id: str, payload: Mapping[str, Any], location: CollectionPath
    ) -> D:
        document = cls.decode(payload, doc_id=doc_id, location=location)
        context.cache.register(document)
        return document

    # --------------------------------------------------------------------------
    # Reads
    # --------------------------------------------------------------------------
    @classmethod
    async def read(
        cls: Type[D],
        doc_id: str,
        location: Optional[LocationType] = None,
        use_cache: Optional[bool] = None,
    ) -> Result[D]:
        """
        Read one document, from the cache when allowed.

        Never raises for a missing document, a decoding problem or a store
        failure; those come back as the result's ``error``.
        """
        context = cls._require_context()
        location = cls._resolve_location(location)
        if use_cache is None:
            use_cache = context.settings.use_cache

        if use_cache:
            cached = context.cache.grab(doc_id, cls)
            if cached is not None:
                return Result.success(cached)

        try:
            payload = await context.store.get_document(location.path, doc_id)
        except StoreConnectionError as exc:
            logger.error(f"Read failed: {location.path}/{doc_id}: {exc}")
            return Result.failure(exc)

        if payload is None:
            logger.warning(f"The document with ID [{doc_id}] could not be loaded from the [{location.path}] collection.")
            return Result.failure(NotFoundError(f"No document {location.path}/{doc_id}."))

        try:
            document = cls._materialize(context, doc_id, payload, location)
        except DecodingFailed as exc:
            logger.error(f"A document loaded from [{location.path}] couldn't be decoded: {exc}")
            return Result.failure(exc)
        return Result.success(document)

    @classmethod
    async def read_many(
        cls: Type[D],
        ids: Iterable[str],
        location: Optional[LocationType] = None,
        use_cache: Optional[bool] = None,
        on_update: Optional[Callable[[List[D]], None]] = None,
    ) -> DocumentsResult[D]:
        """
        Read many documents with one "IN" request per group of ids.

        Groups run concurrently.  ``on_update`` receives the documents
        gathered so far each time a group resolves, so progress can be shown
        before the last group arrives.  Cancelling the awaiting task cancels
        the groups still running and no further updates are delivered.
        """
        context = cls._require_context()
        location = cls._resolve_location(location)
        if use_cache is None:
            use_cache = context.settings.use_cache

        unique_ids = list(dict.fromkeys(ids))
        result: DocumentsResult[D] = DocumentsResult()
        if not unique_ids:
            if on_update is not None:
                on_update([])
            return result

        size = context.settings.in_query_limit
        chunks = [unique_ids[i:i + size] for i in range(0, len(unique_ids), size)]
        found: Dict[str, D] = {}

        def ordered() -> List[D]:
            return [found[doc_id] for doc_id in unique_ids if doc_id in found]

        tasks = [
            asyncio.ensure_future(cls._read_chunk(context, chunk, location, use_cache))
            for chunk in chunks
        ]
        try:
            for next_chunk in asyncio.as_completed(tasks):
                documents, failures = await next_chunk
                for document in documents:
                    found.setdefault(document.id, document)
                result.failures.extend(failures)
                if on_update is not None:
                    on_update(ordered())
        finally:
            for task in tasks:
                task.cancel()

        result.documents = ordered()
        return result

    @classmethod
    async def _read_chunk(
        cls: Type[D],
        context: SyncContext,
        chunk: Sequence[str],
        location: CollectionPath,
        use_cache: bool,
    ) -> Tuple[List[D], List[FirestoreSyncError]]:
        documents: List[D] = []
        missing: List[str] = []
        for doc_id in chunk:
            cached = context.cache.grab(doc_id, cls) if use_cache else None
            if cached is not None:
                documents.append(cached)
            else:
                missing.append(doc_id)
        if not missing:
            return documents, []

        try:
            snapshots = await context.store.get_documents(location.path, missing)
        except StoreConnectionError as exc:
            logger.error(f"Read of {len(missing)} document(s) from [{location.path}] failed: {exc}")
            return documents, [exc]

        failures: List[FirestoreSyncError] = []
        for doc_id, payload in snapshots:
            try:
                documents.append(cls._materialize(context, doc_id, payload, location))
            except DecodingFailed as exc:
                logger.warning(f"Skipping document [{doc_id}] from [{location.path}]: {exc}")
                failures.append(exc)
        return documents, failures

    async def fetch_value(self, path: str) -> Result[Any]:
        """Read the latest remote value at ``path``, bypassing the cache."""
        result = await type(self).read(self.id, location=self._location, use_cache=False)
        if not result.ok:
            return Result.failure(result.error)
        return Result.success(result.value.field(path).value)

    @classmethod
    def query(cls: Type[D], location: Optional[LocationType] = None) -> Query[D]:
        return Query(cls, cls._resolve_location(location))

    # --------------------------------------------------------------------------
    # Writes
    # --------------------------------------------------------------------------
    async def write(self, merge: bool = False) -> Optional[FirestoreSyncError]:
        """
        Send the whole document (full replace, or merge when ``merge``).

        Nothing is sent when encoding fails; local state is never modified.
        """
        context = self._require_context()
        collection = self._location.path
        try:
            payload = self.encode()
        except EncodingFailed as exc:
            logger.error(f"Document [{self.id}] could not be encoded: {exc}")
            return exc

        try:
            with self._writing():
                await context.store.set_document(collection, self.id, payload, merge=merge)
        except StoreConnectionError as exc:
            logger.error(f"Write failed: {collection}/{self.id}: {exc}")
            return exc

        self.pending_batch.clear()
        context.cache.register(self)
        logger.debug(f"Document successfully sent to [{collection}] collection. ID: {self.id}")
        return None

    async def set_batch(self) -> Optional[FirestoreSyncError]:
        """Send every queued field path in one partial update."""
        if not self.pending_batch:
            return BatchEmptyError(f"Nothing is queued for document [{self.id}].")
        context = self._require_context()
        collection = self._location.path
        try:
            updates = {
                key_path: encode_value(self.field(key_path).value)
                for key_path in sorted(self.pending_batch)
            }
        except EncodingFailed as exc:
            return exc

        try:
            with self._writing():
                await context.store.update_fields(collection, self.id, updates)
        except (StoreConnectionError, NotFoundError) as exc:
            logger.error(f"Batch update failed: {collection}/{self.id}: {exc}")
            return exc

        self.pending_batch.difference_update(updates)
        logger.debug(f"Batch of {len(updates)} field(s) sent to [{collection}]. ID: {self.id}")
        return None

    async def delete(
        self, unassign_from: Optional[Tuple["Document", str]] = None
    ) -> Optional[FirestoreSyncError]:
        """
        Delete this document remotely and evict it from the cache.

        With ``unassign_from=(parent, path)`` the id is first removed from the
        parent's id-list field; the document is kept when that fails.
        """
        if unassign_from is not None:
            parent, path = unassign_from
            error = await self.unassign(parent, path)
            if error is not None:
                return error
        error = await type(self).delete_by_id(self.id, location=self._location)
        if error is None:
            self._state = DocumentState.UNBOUND
        return error

    @classmethod
    async def delete_by_id(
        cls, doc_id: str, location: Optional[LocationType] = None
    ) -> Optional[FirestoreSyncError]:
        """Delete a document of this type without loading it."""
        context = cls._require_context()
        collection = cls._resolve_location(location).path
        try:
            await context.store.delete_document(collection, doc_id)
        except StoreConnectionError as exc:
            logger.error(f"Delete failed: {collection}/{doc_id}: {exc}")
            return exc
        context.cache.evict(cls, doc_id)
        logger.debug(f"Document removed from [{collection}] collection. ID: {doc_id}")
        return None

    # --------------------------------------------------------------------------
    # Listening
    # --------------------------------------------------------------------------
    @classmethod
    async def listen(
        cls: Type[D],
        doc_id: str,
        on_update: Callable[[Result[D]], None],
        key: Optional[str] = None,
        location: Optional[LocationType] = None,
    ) -> ListenerHandle:
        """
        Subscribe to remote changes of one document.

        ``on_update`` gets a successful :class:`Result` with a fresh document
        for every change, and a :class:`NotFoundError` result once the
        document is deleted.  The returned handle must be cancelled (directly
        or by stopping ``key`` in the context's listener registry).
        """
        context = cls._require_context()
        location = cls._resolve_location(location)
        handle = ListenerHandle()

        def on_change(payload: Optional[Mapping[str, Any]]) -> None:
            if payload is None:
                logger.warning(f"A document loaded from the [{location.path}] collection, but no data could be found.")
                on_update(Result.failure(NotFoundError(f"Document {location.path}/{doc_id} was deleted.")))
                return
            try:
                document = cls._materialize(context, doc_id, payload, location)
            except DecodingFailed as exc:
                logger.error(f"A document loaded from the [{location.path}] collection, but couldn't be decoded: {exc}")
                on_update(Result.failure(exc))
                return
            on_update(Result.success(document))

        # Registered before subscribing so stop(key) reaches a pending subscription.
        key = key or f"{location.path}/{doc_id}"
        context.listeners.register(key, handle)
        try:
            cancel = await context.store.subscribe(location.path, doc_id, handle.guard(on_change))
        except StoreConnectionError as exc:
            logger.error(f"Could not listen to {location.path}/{doc_id}: {exc}")
            handle.cancel()
            context.listeners.discard(key, handle)
            on_update(Result.failure(exc))
            return handle
        except asyncio.CancelledError:
            handle.cancel()
            context.listeners.discard(key, handle)
            raise
        handle.attach(cancel)
        return handle

    async def start_listening(
        self, on_update: Callable[[Result["Document"]], None], key: Optional[str] = None
    ) -> ListenerHandle:
        """Listen to this document and keep the handle on ``self.listener``."""
        self.stop_listening()
        self.listener = await type(self).listen(self.id, on_update, key=key, location=self._location)
        return self.listener

    def stop_listening(self) -> None:
        if self.listener is not None:
            self.listener.cancel()
            self.listener = None

    # --------------------------------------------------------------------------
    # Linking: id lists stored in a parent document
    # --------------------------------------------------------------------------
    async def assign(self, parent: "Document", path: str) -> Optional[FirestoreSyncError]:
        """Add this document's id to the id-list field ``path`` of ``parent``."""
        return await parent.field(path).union([self.id])

    async def unassign(self, parent: "Document", path: str) -> Optional[FirestoreSyncError]:
        return await parent.field(path).remove_items([self.id])

    @classmethod
    async def read_children(
        cls: Type[D],
        parent: "Document",
        path: str,
        use_cache: Optional[bool] = None,
        on_update: Optional[Callable[[List[D]], None]] = None,
    ) -> DocumentsResult[D]:
        """Read the documents whose ids are listed in ``parent``'s ``path`` field."""
        fresh = await type(parent).read(parent.id, location=parent.location, use_cache=False)
        if not fresh.ok:
            return DocumentsResult(error=fresh.error)
        ids = fresh.value.field(path).value or []
        return await cls.read_many(ids, use_cache=use_cache, on_update=on_update)

    # --------------------------------------------------------------------------
    # Identity
    # --------------------------------------------------------------------------
    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


class Singleton(Document):
    """
    A document of which only one instance exists, stored in the
    ``Singleton`` collection under its class name.
    """

    class Settings:
        name = "Singleton"

    def __init__(
        self,
        date_created: Optional[datetime.datetime] = None,
        *,
        location: Optional[LocationType] = None,
        **values: Any,
    ):
        super().__init__(
            id=type(self).singleton_name(), date_created=date_created, location=location, **values
        )

    @classmethod
    def singleton_name(cls) -> str:
        return cls.__name__

    @classmethod
    async def fetch(cls: Type[D], use_cache: Optional[bool] = None) -> Result[D]:
        return await cls.read(cls.singleton_name(), use_cache=use_cache)

    @classmethod
    async def listen_singleton(
        cls: Type[D], on_update: Callable[[Result[D]], None], key: Optional[str] = None
    ) -> ListenerHandle:
        return await cls.listen(cls.singleton_name(), on_update, key=key)
