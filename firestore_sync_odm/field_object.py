import collections.abc
import datetime
import logging
import types
import typing
import weakref
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Type, TypeVar, Union

from google.cloud.firestore_v1 import GeoPoint

from .errors import DecodingFailed, EncodingFailed
from .firestore_fields import Field, FirestoreField
from .pydantic_compat import BaseModel, ValidationError, model_dump, validate_value

logger = logging.getLogger(__name__)

F = TypeVar("F", bound="FieldObject")

_PRIMITIVES = (str, int, float, bool, bytes, datetime.datetime, GeoPoint)
_UNION_TYPES = (Union, getattr(types, "UnionType", Union))


def encode_value(value: Any) -> Any:
    """Convert a local field value into something the store accepts."""
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, _PRIMITIVES):
        return value
    if isinstance(value, FieldObject):
        return value.encode()
    if isinstance(value, BaseModel):
        return encode_value(model_dump(value))
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    if isinstance(value, Mapping):
        encoded = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodingFailed(f"Map keys must be strings, got {key!r}.")
            encoded[key] = encode_value(item)
        return encoded
    raise EncodingFailed(f"Cannot encode value of type {type(value).__name__}.")


def field_object_type(annotation: Any) -> Optional[Type["FieldObject"]]:
    """Return the FieldObject class named by ``annotation`` (``Optional`` allowed)."""
    if isinstance(annotation, type) and issubclass(annotation, FieldObject):
        return annotation
    if typing.get_origin(annotation) in _UNION_TYPES:
        for arg in typing.get_args(annotation):
            if isinstance(arg, type) and issubclass(arg, FieldObject):
                return arg
    return None


def holds_field_object(annotation: Any) -> bool:
    """True when ``annotation`` mentions a FieldObject anywhere (``List[Price]``)."""
    if field_object_type(annotation) is not None:
        return True
    return any(
        holds_field_object(arg) for arg in typing.get_args(annotation) if arg is not Ellipsis
    )


def decode_value(annotation: Any, raw: Any, name: str) -> Any:
    if annotation is None or annotation is Any:
        return raw
    nested = field_object_type(annotation)
    if nested is not None:
        if raw is None or isinstance(raw, nested):
            return raw
        return nested.decode(raw)
    if holds_field_object(annotation):
        return _decode_container(annotation, raw, name)
    try:
        return validate_value(annotation, raw)
    except (ValidationError, ValueError, TypeError, RuntimeError) as exc:
        # TypeError (pydantic 2) and RuntimeError (pydantic 1) signal unsupported annotations.
        raise DecodingFailed(f"Field '{name}' could not be decoded: {exc}", cause=exc) from exc


def _decode_container(annotation: Any, raw: Any, name: str) -> Any:
    """Decode lists, tuples, sets, maps and unions whose items are FieldObjects."""
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)

    if origin in _UNION_TYPES:
        if raw is None and type(None) in args:
            return None
        for arg in args:
            if arg is type(None):
                continue
            try:
                return decode_value(arg, raw, name)
            except DecodingFailed:
                continue
        raise DecodingFailed(f"Field '{name}' matches none of {annotation}.")

    if isinstance(origin, type) and issubclass(origin, collections.abc.Mapping):
        if not isinstance(raw, Mapping):
            raise DecodingFailed(f"Field '{name}' expects a map, got {type(raw).__name__}.")
        value_type = args[1] if len(args) == 2 else Any
        return {key: decode_value(value_type, item, f"{name}.{key}") for key, item in raw.items()}

    if isinstance(origin, type) and issubclass(origin, collections.abc.Iterable):
        if not isinstance(raw, (list, tuple)):
            raise DecodingFailed(f"Field '{name}' expects an array, got {type(raw).__name__}.")
        if origin is tuple and args and args[-1] is not Ellipsis:
            if len(args) != len(raw):
                raise DecodingFailed(f"Field '{name}' expects {len(args)} item(s), got {len(raw)}.")
            item_types = list(args)
        else:
            item_types = [args[0] if args else Any] * len(raw)
        items = [
            decode_value(item_type, item, f"{name}[{index}]")
            for index, (item_type, item) in enumerate(zip(item_types, raw))
        ]
        if origin in (tuple, set, frozenset):
            return origin(items)
        return items

    raise DecodingFailed(f"Field '{name}' has an unsupported annotation {annotation}.")


class FieldObject:
    """
    An object composed of :class:`FirestoreField` declarations.

    Declarations are collected into a per-class table when the subclass is
    created, walking the whole MRO so superclass fields are included.  Each
    instance gets one :class:`Field` slot per declaration, bound to the
    instance under the declaration's remote key.

    A FieldObject may itself be the value of a field; it then records the
    enclosing object (weakly) and the key it sits under, which is what
    :meth:`Field.key_path` walks to build paths such as ``price.amount``.
    """

    _is_document = False
    __firestore_fields__: Dict[str, FirestoreField] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        declared: Dict[str, FirestoreField] = {}
        for klass in reversed(cls.__mro__):
            for name, attr in vars(klass).items():
                if isinstance(attr, FirestoreField):
                    declared[name] = attr
        cls.__firestore_fields__ = declared
        cls._annotations_resolved = False

    @classmethod
    def declared_fields(cls) -> Dict[str, FirestoreField]:
        if not cls.__dict__.get("_annotations_resolved", False):
            cls._resolve_annotations()
        return cls.__firestore_fields__

    @classmethod
    def _resolve_annotations(cls) -> None:
        # Deferred so forward references to classes declared later resolve.
        for klass in reversed(cls.__mro__):
            if not (isinstance(klass, type) and issubclass(klass, FieldObject)):
                continue
            try:
                hints = typing.get_type_hints(klass)
            except (NameError, TypeError):
                hints = dict(vars(klass).get("__annotations__", {}))
            for name, attr in vars(klass).items():
                if isinstance(attr, FirestoreField) and attr.annotation is None:
                    attr.annotation = hints.get(name)
        cls._annotations_resolved = True

    def __init__(self, **values: Any):
        self._setup_fields()
        unknown = set(values) - set(self._fields)
        if unknown:
            raise TypeError(
                f"{type(self).__name__} got unexpected field(s): {', '.join(sorted(unknown))}"
            )
        for name, value in values.items():
            self._fields[name].value = value

    def _setup_fields(self) -> None:
        self._parent: Optional["weakref.ReferenceType[FieldObject]"] = None
        self.enclosing_key: Optional[str] = None
        self._fields: Dict[str, Field] = {}
        for name, declaration in type(self).declared_fields().items():
            self._fields[name] = Field(declaration.make_default(), declaration=declaration)
        self._inject_fields()

    def _inject_fields(self) -> None:
        for slot in self._fields.values():
            slot.inject(self, slot.declaration.remote_key)

    # --------------------------------------------------------------------------
    # Owner chain
    # --------------------------------------------------------------------------
    @property
    def parent(self) -> Optional["FieldObject"]:
        return self._parent() if self._parent is not None else None

    @property
    def root(self) -> "FieldObject":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def _attach(self, parent: "FieldObject", enclosing_key: str) -> None:
        self._parent = weakref.ref(parent)
        self.enclosing_key = enclosing_key

    # --------------------------------------------------------------------------
    # Field access
    # --------------------------------------------------------------------------
    @property
    def fields(self) -> Iterator[Field]:
        return iter(self._fields.values())

    def _slot(self, part: str) -> Optional[Field]:
        slot = self._fields.get(part)
        if slot is not None:
            return slot
        for candidate in self._fields.values():
            if candidate.key == part:
                return candidate
        return None

    def field(self, path: str) -> Field:
        """
        Return the runtime slot at ``path``.

        ``path`` is a dotted attribute path (``"price.amount"``); remote keys
        are accepted as well.
        """
        node: Any = self
        parts = path.split(".")
        for index, part in enumerate(parts):
            slot = node._slot(part) if isinstance(node, FieldObject) else None
            if slot is None:
                raise KeyError(f"{type(self).__name__} has no field at '{path}'.")
            if index == len(parts) - 1:
                return slot
            node = slot.value
        raise KeyError(path)

    @classmethod
    def resolve_key_path(cls, path: str) -> Optional[str]:
        """Map an attribute path onto the remote dotted key path, or ``None``."""
        owner: Type[FieldObject] = cls
        keys = []
        parts = path.split(".")
        for index, part in enumerate(parts):
            declarations = owner.declared_fields()
            declaration = declarations.get(part)
            if declaration is None:
                declaration = next(
                    (d for d in declarations.values() if d.remote_key == part), None
                )
            if declaration is None:
                return None
            keys.append(declaration.remote_key)
            if index < len(parts) - 1:
                nested = field_object_type(declaration.annotation)
                if nested is None:
                    return None
                owner = nested
        return ".".join(keys)

    # --------------------------------------------------------------------------
    # Codec
    # --------------------------------------------------------------------------
    def encode(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for slot in self._fields.values():
            if slot.key is None:
                continue
            payload[slot.key] = encode_value(slot.value)
        return payload

    @classmethod
    def decode(cls: Type[F], payload: Mapping[str, Any]) -> F:
        if not isinstance(payload, Mapping):
            raise DecodingFailed(
                f"{cls.__name__} expects a map payload, got {type(payload).__name__}."
            )
        obj = cls.__new__(cls)
        obj._setup_fields()
        obj._decode_into(payload)
        return obj

    def _decode_into(self, payload: Mapping[str, Any]) -> None:
        for name, slot in self._fields.items():
            if slot.key is None or slot.key not in payload:
                continue
            slot.value = decode_value(slot.declaration.annotation, payload[slot.key], name)
        self._inject_fields()

    # --------------------------------------------------------------------------
    # Dunder
    # --------------------------------------------------------------------------
    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return all(
            slot.value == other._fields[name].value for name, slot in self._fields.items()
        )

    def __repr__(self) -> str:
        values = ", ".join(f"{name}={slot.value!r}" for name, slot in self._fields.items())
        return f"{type(self).__name__}({values})"
