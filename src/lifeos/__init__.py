"""LifeOS record kernel: field coercion, entity schemas and the entity catalog."""

from .catalog import EntityKind, all_schemas, resolve_entity
from .errors import (
    LifeOsError,
    NotFoundError,
    PersistError,
    ReadError,
    RowStoreError,
    UnknownEntityError,
    ValidationError,
)
from .fields import FieldDescriptor, FieldKind, coerce_field, coerce_input, format_for_display
from .schema import EntitySchema

__all__ = [
    "EntityKind",
    "EntitySchema",
    "FieldDescriptor",
    "FieldKind",
    "LifeOsError",
    "NotFoundError",
    "PersistError",
    "ReadError",
    "RowStoreError",
    "UnknownEntityError",
    "ValidationError",
    "all_schemas",
    "coerce_field",
    "coerce_input",
    "format_for_display",
    "resolve_entity",
]
