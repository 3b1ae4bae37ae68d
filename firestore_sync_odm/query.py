import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, List, Optional, Tuple, Type, TypeVar, Union

from .enums import FirestoreOperators
from .errors import (
    DecodingFailed,
    DocumentsResult,
    EncodingFailed,
    InvalidQueryError,
    NotFoundError,
    Result,
    StoreConnectionError,
)
from .field_object import encode_value
from .firestore_fields import MISSING, FirestoreField
from .store import Condition, Ordering

if TYPE_CHECKING:
    from .firestore_document import CollectionPath, Document

T = TypeVar("T", bound="Document")

# Alias for anything accepted where a field path is expected
FieldType = Union[str, FirestoreField]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionBlock:
    path: str
    comparator: Union[FirestoreOperators, str]
    value: Any


@dataclass(frozen=True)
class OrderClause:
    path: str
    descending: bool = False


def _path_name(path: FieldType) -> str:
    if isinstance(path, FirestoreField):
        return str(path.name)
    return path


class Query(Generic[T]):
    """
    Immutable query over one document type.

    Every builder method returns a new query, so partial queries can be
    shared and branched::

        desserts = FoodItem.query().where("category", FirestoreOperators.EQ, "dessert")
        cheapest = await desserts.order_by("price.amount").limit(5).execute()
        named = await desserts.where(FoodItem.name == "Flan").execute()

    Paths are attribute paths of the document class (``"price.amount"``)
    and are translated into remote keys only when the query runs.
    """

    def __init__(
        self,
        document_type: Type[T],
        location: "CollectionPath",
        conditions: Tuple[ConditionBlock, ...] = (),
        order: Optional[OrderClause] = None,
        limit: Optional[int] = None,
    ):
        self._document_type = document_type
        self._location = location
        self._conditions = tuple(conditions)
        self._order = order
        self._limit = limit

    # --------------------------------------------------------------------------
    # Inspection
    # --------------------------------------------------------------------------
    @property
    def document_type(self) -> Type[T]:
        return self._document_type

    @property
    def location(self) -> "CollectionPath":
        return self._location

    @property
    def conditions(self) -> Tuple[ConditionBlock, ...]:
        return self._conditions

    @property
    def order(self) -> Optional[OrderClause]:
        return self._order

    @property
    def max_results(self) -> Optional[int]:
        return self._limit

    def __repr__(self) -> str:
        return (
            f"Query({self._document_type.__name__}, location={str(self._location)!r}, "
            f"conditions={list(self._conditions)!r}, order={self._order!r}, limit={self._limit!r})"
        )

    # --------------------------------------------------------------------------
    # Builder
    # --------------------------------------------------------------------------
    def _copy(self, **changes: Any) -> "Query[T]":
        return Query(
            self._document_type,
            self._location,
            conditions=changes.get("conditions", self._conditions),
            order=changes.get("order", self._order),
            limit=changes.get("limit", self._limit),
        )

    def where(
        self,
        path: Union[FieldType, tuple],
        comparator: Union[FirestoreOperators, str, None] = None,
        value: Any = MISSING,
    ) -> "Query[T]":
        """
        Add a filter.  Accepts ``(path, comparator, value)`` or a condition
        tuple built from a field declaration such as ``FoodItem.name == "Taco"``.
        """
        if isinstance(path, tuple):
            path, comparator, value = path
        if comparator is None or value is MISSING:
            raise TypeError("where() needs a path, a comparator and a value.")
        block = ConditionBlock(_path_name(path), comparator, value)
        return self._copy(conditions=self._conditions + (block,))

    def order_by(self, path: FieldType, descending: bool = False) -> "Query[T]":
        """Order results; only one ordering clause is kept (the latest one)."""
        return self._copy(order=OrderClause(_path_name(path), descending))

    def limit(self, count: int) -> "Query[T]":
        return self._copy(limit=count)

    # --------------------------------------------------------------------------
    # Execution
    # --------------------------------------------------------------------------
    def _resolve_path(self, path: str) -> str:
        key_path = self._document_type.resolve_key_path(path)
        if key_path is None:
            raise InvalidQueryError(
                f"'{path}' does not resolve to a field of {self._document_type.__name__}."
            )
        return key_path

    def _resolve(self) -> Tuple[List[Condition], Optional[Ordering]]:
        conditions = []
        for block in self._conditions:
            key_path = self._resolve_path(block.path)
            try:
                operator = FirestoreOperators(block.comparator)
            except ValueError as exc:
                raise InvalidQueryError(f"Unknown comparator {block.comparator!r}.") from exc
            if operator.expects_list and not isinstance(block.value, (list, tuple)):
                raise InvalidQueryError(
                    f"The {operator.name} comparison needs a list value for '{block.path}'."
                )
            try:
                value = encode_value(block.value)
            except EncodingFailed as exc:
                raise InvalidQueryError(f"Cannot compare '{block.path}' against {block.value!r}.") from exc
            conditions.append(Condition(key_path, operator, value))

        order = None
        if self._order is not None:
            order = Ordering(self._resolve_path(self._order.path), self._order.descending)

        if self._limit is not None and (isinstance(self._limit, bool) or not isinstance(self._limit, int) or self._limit < 1):
            raise InvalidQueryError(f"Limit must be a positive integer, got {self._limit!r}.")
        return conditions, order

    async def execute(self) -> DocumentsResult[T]:
        """
        Run the query.

        Documents whose payload does not decode are reported in
        ``failures`` and skipped; the rest are returned and cached.
        """
        try:
            conditions, order = self._resolve()
        except InvalidQueryError as exc:
            logger.error(f"Invalid query on {self._document_type.__name__}: {exc}")
            return DocumentsResult(error=exc)

        context = self._document_type._require_context()
        collection = self._location.path
        logger.debug(f"Query: {collection} conditions={conditions} order={order} limit={self._limit}")
        try:
            snapshots = await context.store.run_query(collection, conditions, order, self._limit)
        except StoreConnectionError as exc:
            logger.error(f"Query on [{collection}] failed: {exc}")
            return DocumentsResult(error=exc)

        result: DocumentsResult[T] = DocumentsResult()
        for doc_id, payload in snapshots:
            try:
                result.documents.append(
                    self._document_type._materialize(context, doc_id, payload, self._location)
                )
            except DecodingFailed as exc:
                logger.warning(f"Skipping document [{doc_id}] from [{collection}]: {exc}")
                result.failures.append(exc)
        return result

    async def first(self) -> Result[T]:
        """Return the first matching document, or a :class:`NotFoundError` result."""
        result = await self.limit(1).execute()
        if result.error is not None:
            return Result.failure(result.error)
        if not result.documents:
            return Result.failure(NotFoundError(f"No {self._document_type.__name__} matched the query."))
        return Result.success(result.documents[0])
