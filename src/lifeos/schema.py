"""Entity schemas: ordered field descriptors plus storage metadata."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .fields import FieldDescriptor


@dataclass(frozen=True)
class EntitySchema:
    storage_name: str
    fields: tuple[FieldDescriptor, ...]
    primary_key: str = "id"
    order_by: str = "created_at"
    label: str = ""

    def __post_init__(self) -> None:
        if not self.storage_name:
            raise ValueError("storage_name is required")
        object.__setattr__(self, "fields", tuple(self.fields))
        seen: set[str] = set()
        for field in self.fields:
            if field.name in seen:
                raise ValueError(f"duplicate field {field.name} in {self.storage_name}")
            seen.add(field.name)
        if not self.label:
            object.__setattr__(self, "label", self.storage_name)

    def __iter__(self) -> Iterator[FieldDescriptor]:
        return iter(self.fields)

    def field(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict:
        return {
            "storage_name": self.storage_name,
            "label": self.label,
            "primary_key": self.primary_key,
            "order_by": self.order_by,
            "fields": [f.to_dict() for f in self.fields],
        }
