from enum import Enum


class FirestoreOperators(str, Enum):
    LT = "<"
    LTE = "<="
    EQ = "=="
    NE = "!="
    GT = ">"
    GTE = ">="
    IN = "in"
    NOT_IN = "not-in"
    ARRAY_CONTAINS = "array_contains"
    ARRAY_CONTAINS_ANY = "array_contains_any"

    @property
    def expects_list(self) -> bool:
        return self in (
            FirestoreOperators.IN,
            FirestoreOperators.NOT_IN,
            FirestoreOperators.ARRAY_CONTAINS_ANY,
        )


class OrderByDirection(str, Enum):
    DESCENDING = "DESCENDING"
    ASCENDING = "ASCENDING"

    def __str__(self):
        return self.value


class WriteOption(str, Enum):
    # Update locally right away, then remotely; revert the local value on failure.
    DEFAULT = "default"
    # Update locally and queue the key path in the document's batch.
    BATCH = "batch"


class DocumentState(str, Enum):
    UNBOUND = "unbound"
    SYNCED = "synced"
    DIRTY = "dirty"
    WRITING = "writing"
    WRITE_FAILED = "write_failed"
