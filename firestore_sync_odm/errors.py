from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")


class FirestoreSyncError(Exception):
    """
    Base class for every error reported by the synchronization layer.

    Remote-facing operations hand these back as values (see :class:`Result`)
    instead of raising them, so callers can react to a failed write without
    wrapping every ``await`` in ``try``.
    """

    #: Short hint shown next to the message, mirrors ``recoverySuggestion``.
    recovery_suggestion: Optional[str] = None

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.cause = cause


class StoreConnectionError(FirestoreSyncError):
    """The remote document store could not be reached or rejected the call."""


class NotFoundError(FirestoreSyncError):
    """No document matched the requested id or query."""


class DecodingFailed(FirestoreSyncError):
    """A remote payload could not be converted into the typed object."""


class EncodingFailed(FirestoreSyncError):
    """A typed object could not be converted into a remote payload."""


class NoKeyError(FirestoreSyncError):
    """The field has no resolvable remote key path."""

    recovery_suggestion = (
        "Keys are injected when the owning object is constructed; pass "
        "FirestoreField(key=...) to override the remote name."
    )


class DetachedFieldError(FirestoreSyncError):
    """The field is not owned (directly or through parents) by a Document."""


class BatchEmptyError(FirestoreSyncError):
    """Nothing was queued in this document's batch."""

    recovery_suggestion = (
        "Queue changes with field.set(value, option=WriteOption.BATCH) "
        "before calling set_batch()."
    )


class InvalidQueryError(FirestoreSyncError):
    """A query path or argument does not map onto a remote key."""


class AlreadyBoundError(FirestoreSyncError):
    """The field was already injected with a different owner or key."""


class ReadOnlyFieldError(FirestoreSyncError):
    """The field is declared read-only and cannot be written."""


# ------------------------------------------------------------------------------
# Outcome containers
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a :class:`FirestoreSyncError`."""

    value: Optional[T] = None
    error: Optional[FirestoreSyncError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: FirestoreSyncError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass
class DocumentsResult(Generic[T]):
    """
    Outcome of an operation returning many documents.

    ``failures`` holds per-document or per-group problems (a payload that did
    not decode, one chunk of a multi-id read that failed) that did not stop the
    rest of the operation. ``error`` is set when nothing could be fetched at
    all (invalid query, unreachable store).
    """

    documents: List[T] = field(default_factory=list)
    failures: List[FirestoreSyncError] = field(default_factory=list)
    error: Optional[FirestoreSyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __iter__(self):
        return iter(self.documents)

    def __len__(self) -> int:
        return len(self.documents)

    def ids(self) -> List[Any]:
        return [document.id for document in self.documents]
