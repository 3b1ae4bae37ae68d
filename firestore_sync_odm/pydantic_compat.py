import logging
from functools import lru_cache
from typing import Any

import pydantic
from packaging.version import parse
from pydantic.version import VERSION

logger = logging.getLogger(__name__)

version_parsed = parse(str(VERSION))

if version_parsed.major >= 2:
    PydanticVersion = 2
else:
    PydanticVersion = 1

logger.debug(f"Running with Pydantic V{PydanticVersion} ({VERSION}).")


BaseModel: type = pydantic.BaseModel
Field: type = pydantic.Field
ValidationError: type = pydantic.ValidationError


@lru_cache(maxsize=None)
def _type_adapter(annotation: Any):
    return pydantic.TypeAdapter(annotation)  # type: ignore[attr-defined]


def validate_value(annotation: Any, value: Any) -> Any:
    """
    Coerce ``value`` into ``annotation`` the way a pydantic field would.

    Pydantic V1 exposes this as ``parse_obj_as``; V2 replaced it with
    ``TypeAdapter``.  Unhashable annotations skip the adapter cache.
    """
    if PydanticVersion == 1:
        return pydantic.parse_obj_as(annotation, value)  # type: ignore[attr-defined]
    try:
        adapter = _type_adapter(annotation)
    except TypeError:
        adapter = pydantic.TypeAdapter(annotation)  # type: ignore[attr-defined]
    return adapter.validate_python(value)


def model_dump(model: Any) -> dict:
    """``.dict()`` on V1, ``.model_dump()`` on V2."""
    if PydanticVersion == 1:
        return model.dict()
    return model.model_dump()


__all__ = [
    "BaseModel",
    "Field",
    "ValidationError",
    "validate_value",
    "model_dump",
    "PydanticVersion",
]
