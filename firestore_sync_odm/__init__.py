# firestore_sync_odm/__init__.py
from typing import Iterable, Optional, Type

from .cache import DocumentCache
from .context import SyncContext, SyncSettings
from .enums import DocumentState, FirestoreOperators, OrderByDirection, WriteOption
from .errors import (
    AlreadyBoundError,
    BatchEmptyError,
    DecodingFailed,
    DetachedFieldError,
    DocumentsResult,
    EncodingFailed,
    FirestoreSyncError,
    InvalidQueryError,
    NoKeyError,
    NotFoundError,
    ReadOnlyFieldError,
    Result,
    StoreConnectionError,
)
from .field_object import FieldObject
from .firestore_client import FirestoreDB
from .firestore_document import CollectionPath, Document, Singleton
from .firestore_fields import Field, FirestoreField
from .listeners import ListenerHandle, ListenerRegistry
from .query import Query
from .store import Condition, DocumentStore, Ordering


def init_firestore_sync(
    store_or_context,
    document_models: Iterable[Type[Document]],
    settings: Optional[SyncSettings] = None,
) -> SyncContext:
    """
    Bind ``document_models`` to a :class:`SyncContext` and return it.

    Accepts either a ready context or a :class:`DocumentStore` (such as a
    :class:`FirestoreDB`) from which a new context is built.
    """
    if isinstance(store_or_context, SyncContext):
        context = store_or_context
    else:
        context = SyncContext(store_or_context, settings=settings)
    for model in document_models:
        model.initialize_context(context)
        model.declared_fields()
    return context


__all__ = [
    "AlreadyBoundError",
    "BatchEmptyError",
    "CollectionPath",
    "Condition",
    "DecodingFailed",
    "DetachedFieldError",
    "Document",
    "DocumentCache",
    "DocumentState",
    "DocumentStore",
    "DocumentsResult",
    "EncodingFailed",
    "Field",
    "FieldObject",
    "FirestoreDB",
    "FirestoreField",
    "FirestoreOperators",
    "FirestoreSyncError",
    "InvalidQueryError",
    "ListenerHandle",
    "ListenerRegistry",
    "NoKeyError",
    "NotFoundError",
    "OrderByDirection",
    "Ordering",
    "Query",
    "ReadOnlyFieldError",
    "Result",
    "Singleton",
    "StoreConnectionError",
    "SyncContext",
    "SyncSettings",
    "WriteOption",
    "init_firestore_sync",
]
