"""
Transport interface between the synchronization layer and a document store.

Everything the documents, fields and queries need from the remote side goes
through these seven primitives.  :class:`~firestore_sync_odm.FirestoreDB` is
the Firestore implementation; tests plug in an in-memory one.

Implementations report failures by raising
:class:`~firestore_sync_odm.errors.StoreConnectionError` (and
:class:`~firestore_sync_odm.errors.NotFoundError` when updating a document
that does not exist).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .enums import FirestoreOperators

Payload = Dict[str, Any]
Snapshot = Tuple[str, Payload]
CancelCallback = Callable[[], None]


@dataclass(frozen=True)
class Condition:
    """A resolved filter: remote key path, operator, value."""

    path: str
    operator: FirestoreOperators
    value: Any


@dataclass(frozen=True)
class Ordering:
    path: str
    descending: bool = False


class DocumentStore(ABC):

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Payload]:
        """Return the payload or ``None`` when the document does not exist."""

    @abstractmethod
    async def get_documents(self, collection: str, ids: Sequence[str]) -> List[Snapshot]:
        """Fetch documents whose ``id`` field is in ``ids`` (one "IN" request)."""

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, payload: Payload, merge: bool = False) -> None:
        ...

    @abstractmethod
    async def update_fields(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        """Partial update keyed by dotted field paths."""

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def run_query(
        self,
        collection: str,
        conditions: Sequence[Condition],
        order: Optional[Ordering] = None,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        ...

    @abstractmethod
    async def subscribe(
        self, collection: str, doc_id: str, on_change: Callable[[Optional[Payload]], None]
    ) -> CancelCallback:
        """
        Start a live subscription and return its cancel callback.

        ``on_change`` receives the current payload after every remote change
        and ``None`` once the document is deleted.  It must be invoked on the
        caller's event loop, in the order the changes were emitted.
        """
