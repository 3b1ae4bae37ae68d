import logging
from typing import Any, Callable, Dict, List, Optional

from .store import CancelCallback

logger = logging.getLogger(__name__)

ListenerKey = str


class ListenerHandle:
    """
    Cancellation handle for one live subscription.

    The handle can be created before the transport has finished subscribing;
    cancelling it at any point stops every later callback delivered through
    :meth:`guard`.  Calling the handle is the same as :meth:`cancel`.
    """

    def __init__(self, cancel_callback: Optional[CancelCallback] = None):
        self._cancel_callback = cancel_callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, cancel_callback: CancelCallback) -> None:
        """Hand over the transport's cancel callback once subscribed."""
        if self._cancelled:
            cancel_callback()
            return
        self._cancel_callback = cancel_callback

    def guard(self, callback: Callable[..., Any]) -> Callable[..., None]:
        def guarded(*args: Any, **kwargs: Any) -> None:
            if not self._cancelled:
                callback(*args, **kwargs)

        return guarded

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._cancel_callback is not None:
            self._cancel_callback()
            self._cancel_callback = None

    __call__ = cancel


class ListenerRegistry:
    """
    Active subscriptions grouped by key.

    A key may hold several handles at once (a listener re-opened after a
    session change, for example); stopping the key cancels all of them.
    """

    def __init__(self):
        self._listeners: Dict[ListenerKey, List[ListenerHandle]] = {}

    def register(self, key: ListenerKey, handle: ListenerHandle) -> None:
        self._listeners.setdefault(key, []).append(handle)
        logger.debug(f"Listener registered under [{key}] ({len(self._listeners[key])} active).")

    def discard(self, key: ListenerKey, handle: ListenerHandle) -> None:
        """Forget one handle without cancelling it."""
        handles = self._listeners.get(key)
        if handles and handle in handles:
            handles.remove(handle)
            if not handles:
                del self._listeners[key]

    def stop(self, key: ListenerKey) -> None:
        """Cancel and forget every handle under ``key``; unknown keys are ignored."""
        handles = self._listeners.pop(key, [])
        for handle in handles:
            handle.cancel()
        if handles:
            logger.debug(f"Stopped {len(handles)} listener(s) under [{key}].")

    def stop_all(self) -> None:
        for key in list(self._listeners):
            self.stop(key)

    def keys(self) -> List[ListenerKey]:
        return list(self._listeners)

    def handles(self, key: ListenerKey) -> List[ListenerHandle]:
        return list(self._listeners.get(key, []))

    def __contains__(self, key: object) -> bool:
        return key in self._listeners

    def __len__(self) -> int:
        return sum(len(handles) for handles in self._listeners.values())
