import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Dict, Optional, Type, TypeVar

if TYPE_CHECKING:
    from .firestore_document import Document

D = TypeVar("D", bound="Document")

logger = logging.getLogger(__name__)


class DocumentCache:
    """
    In-memory map from ``(document type, id)`` to the last instance seen.

    Documents read, queried or received through listeners are registered
    here, and reads check it first unless the caller bypasses it.

    Parameters
    ----------
    max_entries_per_type :
        When set, each type keeps at most this many documents and the least
        recently used one is dropped first.  ``None`` (the default) never
        evicts anything.
    """

    def __init__(self, max_entries_per_type: Optional[int] = None):
        if max_entries_per_type is not None and max_entries_per_type < 1:
            raise ValueError("max_entries_per_type must be positive or None.")
        self.max_entries_per_type = max_entries_per_type
        self._caches: Dict[type, "OrderedDict[str, Document]"] = {}

    def register(self, document: "Document") -> None:
        """Store ``document``, replacing any instance with the same type and id."""
        doc_type = type(document)
        cache = self._caches.setdefault(doc_type, OrderedDict())
        cache[document.id] = document
        cache.move_to_end(document.id)
        if self.max_entries_per_type is not None:
            while len(cache) > self.max_entries_per_type:
                evicted_id, _ = cache.popitem(last=False)
                logger.debug(f"Evicted document from [{doc_type.__name__}] cache. ID: {evicted_id}")
        logger.debug(
            f"Document successfully stored in [{doc_type.__name__}] cache. "
            f"ID: {document.id} Size: {len(cache)} object(s)"
        )

    def grab(self, doc_id: str, doc_type: Type[D]) -> Optional[D]:
        cache = self._caches.get(doc_type)
        if cache is None or doc_id not in cache:
            return None
        cache.move_to_end(doc_id)
        logger.debug(f"Document successfully retrieved from [{doc_type.__name__}] cache. ID: {doc_id}")
        return cache[doc_id]  # type: ignore[return-value]

    def evict(self, doc_type: type, doc_id: str) -> None:
        cache = self._caches.get(doc_type)
        if cache is not None:
            cache.pop(doc_id, None)

    def clear(self) -> None:
        self._caches.clear()

    def __len__(self) -> int:
        return sum(len(cache) for cache in self._caches.values())
