import copy
import logging
import weakref
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Generic, Iterable, List, Optional, TypeVar

from google.cloud.firestore_v1 import DELETE_FIELD, ArrayRemove, ArrayUnion, Increment

from .enums import FirestoreOperators, WriteOption
from .errors import (
    AlreadyBoundError,
    DetachedFieldError,
    EncodingFailed,
    FirestoreSyncError,
    NoKeyError,
    NotFoundError,
    ReadOnlyFieldError,
    StoreConnectionError,
)

if TYPE_CHECKING:
    from .field_object import FieldObject
    from .firestore_document import Document

T = TypeVar("T")

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class FirestoreField:
    """
    Class-level declaration of a synchronized field.

    Examples
    --------
    >>> class Price(FieldObject):
    ...     amount: float = FirestoreField(0.0)
    ...     currency: str = FirestoreField("USD")
    >>> FoodItem.category == "dessert"
    ('category', FirestoreOperators.EQ, 'dessert')

    When accessed on an **instance** the current value is returned, while a
    class-level access yields the descriptor so that rich comparison operators
    can be chained to create query tuples.  Every instance of the declaring
    class owns its own :class:`Field` slot for this declaration.
    """

    def __init__(
        self,
        default: Any = MISSING,
        *,
        key: Optional[str] = None,
        default_factory: Optional[Callable[[], Any]] = None,
        read_only: bool = False,
    ):
        if default is not MISSING and default_factory is not None:
            raise ValueError("Cannot specify both default and default_factory.")
        self.default = default
        self.default_factory = default_factory
        self.key = key
        self.read_only = read_only
        self.name: Optional[str] = None
        self.annotation: Any = None

    def __set_name__(self, owner, name: str) -> None:
        self.name = name

    @property
    def remote_key(self) -> str:
        """Name of this field inside the remote payload."""
        return self.key or self.name  # type: ignore[return-value]

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is MISSING:
            return None
        return copy.deepcopy(self.default)

    # ------------------------------------------------------------------ #
    # Descriptor protocol                                                #
    # ------------------------------------------------------------------ #

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance._fields[self.name].value

    def __set__(self, instance, value) -> None:
        if self.read_only:
            raise AttributeError(f"Field '{self.name}' is read-only.")
        instance._fields[self.name].value = value

    # ------------------------------------------------------------------ #
    # Convenience dunder methods                                         #
    # ------------------------------------------------------------------ #

    def __str__(self) -> str:          # noqa: DunderStr
        return str(self.name)

    __repr__ = __str__

    def __hash__(self) -> int:         # noqa: DunderHash
        return hash((self.name, self.key))

    # ------------------------------------------------------------------ #
    # Comparison operators build (field, operator, value) tuples         #
    # ------------------------------------------------------------------ #

    def __eq__(self, other):           # type: ignore[override]
        return (self.name, FirestoreOperators.EQ, other)

    def __ne__(self, other):           # type: ignore[override]
        return (self.name, FirestoreOperators.NE, other)

    def __lt__(self, other):
        return (self.name, FirestoreOperators.LT, other)

    def __le__(self, other):
        return (self.name, FirestoreOperators.LTE, other)

    def __gt__(self, other):
        return (self.name, FirestoreOperators.GT, other)

    def __ge__(self, other):
        return (self.name, FirestoreOperators.GTE, other)

    # ------------------------------------------------------------------ #
    # Firestore-specific helpers                                         #
    # ------------------------------------------------------------------ #

    def in_(self, values: List[Any]) -> tuple:
        """Return an ``IN`` filter tuple."""
        return (self.name, FirestoreOperators.IN, values)

    def not_in_(self, values: List[Any]) -> tuple:
        """Return a ``NOT_IN`` filter tuple."""
        return (self.name, FirestoreOperators.NOT_IN, values)

    def array_contains(self, value: Any) -> tuple:
        """Return an ``ARRAY_CONTAINS`` filter tuple."""
        return (self.name, FirestoreOperators.ARRAY_CONTAINS, value)

    def array_contains_any(self, values: List[Any]) -> tuple:
        """Return an ``ARRAY_CONTAINS_ANY`` filter tuple."""
        return (self.name, FirestoreOperators.ARRAY_CONTAINS_ANY, values)


def _field_object_class():
    from .field_object import FieldObject

    return FieldObject


class Field(Generic[T]):
    """
    Runtime slot holding one field value of one object.

    A slot is bound to its owner and key exactly once (see :meth:`inject`)
    and keeps only a weak reference to the owner; ownership flows from the
    document down to its fields.
    """

    def __init__(self, value: Optional[T] = None, declaration: Optional[FirestoreField] = None):
        self.declaration = declaration
        self.key: Optional[str] = None
        self.previous_value: Optional[T] = None
        self._owner: Optional["weakref.ReferenceType[FieldObject]"] = None
        self._value: Optional[T] = None
        self.value = value

    def __repr__(self) -> str:
        return f"Field(key={self.key!r}, value={self._value!r})"

    # --------------------------------------------------------------------------
    # Binding
    # --------------------------------------------------------------------------
    @property
    def owner(self) -> Optional["FieldObject"]:
        return self._owner() if self._owner is not None else None

    @property
    def is_bound(self) -> bool:
        return self.key is not None and self.owner is not None

    def inject(self, owner: "FieldObject", key: str) -> None:
        """Bind this slot to ``owner`` under ``key``; repeat calls must agree."""
        if self.is_bound:
            if self.owner is owner and self.key == key:
                return
            raise AlreadyBoundError(
                f"Field '{self.key}' is already bound to {type(self.owner).__name__}."
            )
        self._owner = weakref.ref(owner)
        self.key = key
        self._adopt(self._value)

    def _adopt(self, value: Any) -> None:
        owner = self.owner
        if owner is not None and self.key is not None and isinstance(value, _field_object_class()):
            value._attach(owner, self.key)

    @property
    def value(self) -> Optional[T]:
        return self._value

    @value.setter
    def value(self, new_value: Optional[T]) -> None:
        self._value = new_value
        self._adopt(new_value)

    # --------------------------------------------------------------------------
    # Path resolution
    # --------------------------------------------------------------------------
    def key_path(self) -> Optional[str]:
        """
        Dotted path of this field from the root of its owner chain.

        ``None`` when this field or any enclosing object is unbound.
        """
        if self.key is None:
            return None
        node = self.owner
        if node is None:
            return None
        parts = [self.key]
        while node.parent is not None:
            if node.enclosing_key is None:
                return None
            parts.append(node.enclosing_key)
            node = node.parent
        return ".".join(reversed(parts))

    def document(self) -> Optional["Document"]:
        owner = self.owner
        if owner is None:
            return None
        root = owner.root
        return root if getattr(root, "_is_document", False) else None

    # --------------------------------------------------------------------------
    # Optimistic local update
    # --------------------------------------------------------------------------
    @contextmanager
    def _optimistic(self, new_value: Optional[T]):
        previous = self._value
        self.previous_value = previous
        self.value = new_value
        try:
            yield
        except BaseException:
            self.value = previous
            self.previous_value = None
            raise
        else:
            self.previous_value = None

    async def _update(self, local_value: Any, remote_value: Any, option: WriteOption) -> Optional[FirestoreSyncError]:
        if self.declaration is not None and self.declaration.read_only:
            return ReadOnlyFieldError(f"Field '{self.key}' is read-only.")
        key_path = self.key_path()
        if key_path is None:
            return NoKeyError(f"Field {self!r} has no resolvable key path.")
        document = self.document()
        if document is None:
            return DetachedFieldError(f"Field '{key_path}' is not owned by a document.")

        if option == WriteOption.BATCH:
            self.value = local_value
            document._queue(key_path)
            return None

        store = document._require_context().store
        collection = document.location.path
        doc_id = document.id
        try:
            with self._optimistic(local_value), document._writing():
                await store.update_fields(collection, doc_id, {key_path: remote_value})
        except (StoreConnectionError, NotFoundError) as exc:
            logger.warning(f"Field update reverted: {collection}/{doc_id} {key_path}: {exc}")
            return exc
        logger.debug(f"Field update: {collection}/{doc_id} {key_path}")
        return None

    # --------------------------------------------------------------------------
    # Public write operations
    # --------------------------------------------------------------------------
    async def set(self, value: T, option: WriteOption = WriteOption.DEFAULT) -> Optional[FirestoreSyncError]:
        """Set the value locally and remotely."""
        from .field_object import encode_value

        try:
            remote_value = encode_value(value)
        except EncodingFailed as exc:
            return exc
        return await self._update(value, remote_value, option)

    async def increment(self, by: Any = 1, option: WriteOption = WriteOption.DEFAULT) -> Optional[FirestoreSyncError]:
        """Add ``by`` to a numeric value; remotely an atomic ``Increment``."""
        current = self._value if self._value is not None else 0
        if not _is_number(current) or not _is_number(by):
            return EncodingFailed(f"Cannot increment {current!r} by {by!r}.")
        return await self._update(current + by, Increment(by), option)

    async def union(self, values: Iterable[Any], option: WriteOption = WriteOption.DEFAULT) -> Optional[FirestoreSyncError]:
        """Append the values not present yet; remotely an ``ArrayUnion``."""
        from .field_object import encode_value

        values = list(values)
        merged = list(self._value or [])
        for item in values:
            if item not in merged:
                merged.append(item)
        try:
            remote_values = [encode_value(item) for item in values]
        except EncodingFailed as exc:
            return exc
        return await self._update(merged, ArrayUnion(remote_values), option)

    async def remove_items(self, values: Iterable[Any], option: WriteOption = WriteOption.DEFAULT) -> Optional[FirestoreSyncError]:
        """Drop every occurrence of the values; remotely an ``ArrayRemove``."""
        from .field_object import encode_value

        values = list(values)
        remaining = [item for item in (self._value or []) if item not in values]
        try:
            remote_values = [encode_value(item) for item in values]
        except EncodingFailed as exc:
            return exc
        return await self._update(remaining, ArrayRemove(remote_values), option)

    async def remove(self, option: WriteOption = WriteOption.DEFAULT) -> Optional[FirestoreSyncError]:
        """Delete the field remotely and clear it locally."""
        return await self._update(None, DELETE_FIELD, option)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
