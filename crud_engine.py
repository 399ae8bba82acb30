"""Schema-driven CRUD engine over an injected row-store."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Protocol

from event_bus import EventBus, records_changed
from lifeos.errors import PersistError, ReadError
from lifeos.fields import coerce_field
from lifeos.schema import EntitySchema


DEFAULT_LIST_LIMIT = 50

logger = logging.getLogger("lifeos.records")

Row = dict
# hook(engine, operation, key, values, before)
MutationHook = Callable[["CrudEngine", str, str, dict, "dict | None"], None]


class RowStore(Protocol):
    def insert(self, collection: str, values: dict) -> dict: ...

    def update(self, collection: str, values: dict, filters: dict) -> int: ...

    def delete(self, collection: str, filters: dict) -> int: ...

    def select(
        self,
        collection: str,
        filters: dict | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict]: ...


def _key(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class CrudEngine:
    def __init__(self, store: RowStore, bus: EventBus | None = None, enforce_select_options: bool = False) -> None:
        self.store = store
        self.bus = bus
        self.enforce_select_options = enforce_select_options
        self._hooks: dict[str, list[MutationHook]] = {}
        self._wants_before: set[str] = set()

    def register_hook(self, schema: EntitySchema, hook: MutationHook, needs_before: bool = False) -> None:
        """Run ``hook`` after each create, update or delete of ``schema`` rows.

        Hooks do not fire for ``insert_values``, ``patch`` or ``delete_where``,
        so a hook may write through those without re-entering itself.

        With ``needs_before`` the engine reads the row before each update or
        delete and passes it as ``before``; that read is one extra row-store
        call per mutation. Otherwise ``before`` is ``None``.
        """
        self._hooks.setdefault(schema.storage_name, []).append(hook)
        if needs_before:
            self._wants_before.add(schema.storage_name)

    def _before(self, schema: EntitySchema, key: str) -> dict | None:
        if schema.storage_name not in self._wants_before:
            return None
        return self.get(schema, key)

    def _run_hooks(self, schema: EntitySchema, operation: str, key: Any, values: dict, before: dict | None) -> None:
        for hook in self._hooks.get(schema.storage_name, []):
            hook(self, operation, _key(key), values, before)

    def coerce(self, schema: EntitySchema, raw_fields: Mapping[str, Any]) -> dict:
        """Coerce every schema field; fields missing from ``raw_fields`` become absent."""
        raw_fields = raw_fields or {}
        return {
            field.name: coerce_field(field, raw_fields.get(field.name), enforce_options=self.enforce_select_options)
            for field in schema.fields
        }

    def coerce_partial(self, schema: EntitySchema, raw_fields: Mapping[str, Any]) -> dict:
        """Coerce only the schema fields present in ``raw_fields``; unknown keys are dropped."""
        values = {}
        for name, raw in (raw_fields or {}).items():
            field = schema.field(name)
            if field is None:
                continue
            values[name] = coerce_field(field, raw, enforce_options=self.enforce_select_options)
        return values

    def _notify(self, schema: EntitySchema, operation: str, record_id: Any) -> None:
        if self.bus is None:
            return
        self.bus.publish(records_changed(schema.storage_name, operation, record_id))

    def create(self, schema: EntitySchema, raw_fields: Mapping[str, Any]) -> Any:
        values = self.coerce(schema, raw_fields)
        record_id = self.insert_values(schema, values)
        self._run_hooks(schema, "create", record_id, values, None)
        return record_id

    def insert_values(self, schema: EntitySchema, values: dict) -> Any:
        """Insert already-typed ``values``; returns the store-assigned id."""
        try:
            row = self.store.insert(schema.storage_name, values)
        except Exception as exc:
            logger.warning("record_insert_failed storage=%s error=%s", schema.storage_name, exc)
            raise PersistError(str(exc), storage_name=schema.storage_name) from exc
        record_id = (row or {}).get(schema.primary_key)
        logger.info("record_created storage=%s id=%s", schema.storage_name, record_id)
        self._notify(schema, "create", record_id)
        return record_id

    def update(self, schema: EntitySchema, primary_key_value: Any, raw_fields: Mapping[str, Any]) -> None:
        key = _key(primary_key_value)
        if not key:
            return
        values = self.coerce(schema, raw_fields)
        before = self._before(schema, key)
        self.patch(schema, key, values)
        self._run_hooks(schema, "update", key, values, before)

    def patch(self, schema: EntitySchema, primary_key_value: Any, values: dict) -> None:
        """Write typed ``values`` to the row with the given key (no-op on empty key)."""
        key = _key(primary_key_value)
        if not key or not values:
            return
        try:
            self.store.update(schema.storage_name, values, {schema.primary_key: key})
        except Exception as exc:
            logger.warning("record_update_failed storage=%s id=%s error=%s", schema.storage_name, key, exc)
            raise PersistError(str(exc), storage_name=schema.storage_name) from exc
        logger.info("record_updated storage=%s id=%s fields=%s", schema.storage_name, key, sorted(values.keys()))
        self._notify(schema, "update", key)

    def delete(self, schema: EntitySchema, primary_key_value: Any) -> None:
        key = _key(primary_key_value)
        if not key:
            return
        before = self._before(schema, key)
        self.delete_where(schema, {schema.primary_key: key}, record_id=key)
        self._run_hooks(schema, "delete", key, {}, before)

    def delete_where(self, schema: EntitySchema, filters: dict, record_id: Any = None) -> None:
        try:
            self.store.delete(schema.storage_name, filters)
        except Exception as exc:
            logger.warning("record_delete_failed storage=%s filters=%s error=%s", schema.storage_name, filters, exc)
            raise PersistError(str(exc), storage_name=schema.storage_name) from exc
        logger.info("record_deleted storage=%s filters=%s", schema.storage_name, filters)
        self._notify(schema, "delete", record_id)

    def list(self, schema: EntitySchema, limit: int = DEFAULT_LIST_LIMIT) -> list[Row]:
        if not isinstance(limit, int) or limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        try:
            return self.store.select(schema.storage_name, order_by=schema.order_by, descending=True, limit=limit)
        except Exception as exc:
            logger.warning("record_list_failed storage=%s error=%s", schema.storage_name, exc)
            raise ReadError(str(exc), storage_name=schema.storage_name) from exc

    def get(self, schema: EntitySchema, primary_key_value: Any) -> Row | None:
        key = _key(primary_key_value)
        if not key:
            return None
        try:
            rows = self.store.select(schema.storage_name, filters={schema.primary_key: key}, limit=1)
        except Exception as exc:
            logger.warning("record_get_failed storage=%s id=%s error=%s", schema.storage_name, key, exc)
            raise ReadError(str(exc), storage_name=schema.storage_name) from exc
        return rows[0] if rows else None

    def select_where(self, schema: EntitySchema, filters: dict, order_by: str | None = None, descending: bool = True) -> list[Row]:
        try:
            return self.store.select(schema.storage_name, filters=filters, order_by=order_by or schema.order_by, descending=descending)
        except Exception as exc:
            logger.warning("record_select_failed storage=%s filters=%s error=%s", schema.storage_name, filters, exc)
            raise ReadError(str(exc), storage_name=schema.storage_name) from exc
