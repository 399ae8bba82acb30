"""Typed errors raised by the record engine and its hooks."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class LifeOsError(Exception):
    message: str

    code = "LIFEOS_ERROR"

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class ValidationError(LifeOsError):
    field: str | None = None

    code = "VALIDATION_FAILED"

    def __str__(self) -> str:
        return f"{self.field}: {self.message}" if self.field else self.message


@dataclass
class UnknownEntityError(LifeOsError):
    key: str | None = None

    code = "ENTITY_NOT_FOUND"


@dataclass
class RowStoreError(LifeOsError):
    """Raised by row-store adapters; the engine wraps it."""

    code = "ROW_STORE_ERROR"


@dataclass
class PersistError(LifeOsError):
    storage_name: str = ""

    code = "PERSIST_FAILED"

    def __str__(self) -> str:
        return f"{self.storage_name}: {self.message}" if self.storage_name else self.message


@dataclass
class ReadError(LifeOsError):
    storage_name: str = ""

    code = "READ_FAILED"

    def __str__(self) -> str:
        return f"{self.storage_name}: {self.message}" if self.storage_name else self.message


@dataclass
class NotFoundError(LifeOsError):
    storage_name: str = ""
    key: str | None = None

    code = "NOT_FOUND"
