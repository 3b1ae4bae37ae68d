import logging
import os
from typing import Optional

from .cache import DocumentCache
from .listeners import ListenerRegistry
from .pydantic_compat import BaseModel, Field
from .store import DocumentStore

logger = logging.getLogger(__name__)


class SyncSettings(BaseModel):
    """Behavioural switches shared by every model bound to a context."""

    # Prefer cached documents over remote reads unless a call bypasses the cache.
    use_cache: bool = True
    # Maximum number of ids per "IN" request when reading many documents.
    in_query_limit: int = Field(default=10, ge=1, le=30)
    # Per-type cache bound; None keeps every document.
    cache_max_entries: Optional[int] = Field(default=None, ge=1)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """
        Build settings from ``FIRESTORE_SYNC_*`` environment variables,
        falling back to the defaults for anything unset.
        """
        values = {}
        use_cache = os.environ.get("FIRESTORE_SYNC_USE_CACHE", "").strip()
        if use_cache:
            values["use_cache"] = use_cache.lower() not in ("0", "false", "no", "off")
        in_query_limit = os.environ.get("FIRESTORE_SYNC_IN_QUERY_LIMIT", "").strip()
        if in_query_limit:
            values["in_query_limit"] = int(in_query_limit)
        cache_max_entries = os.environ.get("FIRESTORE_SYNC_CACHE_MAX_ENTRIES", "").strip()
        if cache_max_entries:
            values["cache_max_entries"] = int(cache_max_entries)
        return cls(**values)


class SyncContext:
    """
    Everything a bound document model needs at runtime: the store transport,
    the settings, the document cache and the listener registry.

    Create one when the application starts, bind models to it with
    :func:`~firestore_sync_odm.init_firestore_sync`, and call :meth:`close`
    on shutdown so no remote subscription is left open.
    """

    def __init__(self, store: DocumentStore, settings: Optional[SyncSettings] = None):
        self.store = store
        self.settings = settings or SyncSettings()
        self.cache = DocumentCache(max_entries_per_type=self.settings.cache_max_entries)
        self.listeners = ListenerRegistry()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self.listeners.stop_all()
        self.cache.clear()
        self._closed = True
        logger.info("Sync context closed: listeners stopped and cache cleared.")
