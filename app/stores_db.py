"""DB-backed row-store over Supabase Postgres tables."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import psycopg2
from psycopg2 import sql as pgsql

from app.db import execute, fetch_all, fetch_one, get_conn
from lifeos.errors import RowStoreError


logger = logging.getLogger("lifeos.db")


def _is_safe_identifier(value: str) -> bool:
    if not value or not isinstance(value, str):
        return False
    for ch in value:
        if not (ch.isalnum() or ch == "_"):
            return False
    return True


def _ident(value: str) -> pgsql.Identifier:
    if not _is_safe_identifier(value):
        raise RowStoreError(f"Unsafe identifier: {value!r}")
    return pgsql.Identifier(value)


def _to_iso(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    return value


def _decode_row(row: dict) -> dict:
    out = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, list):
            value = [float(v) if isinstance(v, Decimal) else v for v in value]
        elif key == "id" and value is not None:
            value = str(value)
        out[key] = _to_iso(value)
    return out


def _adapt(value: Any) -> Any:
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return value


def _where(filters: dict | None) -> tuple[pgsql.Composable, list]:
    if not filters:
        return pgsql.SQL(""), []
    clauses = [pgsql.SQL("{} = %s").format(_ident(key)) for key in filters]
    return pgsql.SQL(" where ") + pgsql.SQL(" and ").join(clauses), [_adapt(v) for v in filters.values()]


class DbRowStore:
    """Row-store over plain Postgres tables, one table per collection."""

    def insert(self, collection: str, values: dict) -> dict:
        columns = list(values.keys())
        statement = pgsql.SQL("insert into {} ({}) values ({}) returning *").format(
            _ident(collection),
            pgsql.SQL(", ").join(_ident(c) for c in columns),
            pgsql.SQL(", ").join(pgsql.Placeholder() for _ in columns),
        )
        if not columns:
            statement = pgsql.SQL("insert into {} default values returning *").format(_ident(collection))
        try:
            with get_conn() as conn:
                row = fetch_one(conn, statement, [_adapt(values[c]) for c in columns], query_name=f"{collection}.insert")
        except psycopg2.Error as exc:
            raise RowStoreError(_pg_message(exc)) from exc
        return _decode_row(row or {})

    def update(self, collection: str, values: dict, filters: dict) -> int:
        if not values:
            return 0
        assignments = pgsql.SQL(", ").join(pgsql.SQL("{} = %s").format(_ident(c)) for c in values)
        where, where_params = _where(filters)
        statement = pgsql.SQL("update {} set {}").format(_ident(collection), assignments) + where
        try:
            with get_conn() as conn:
                return execute(conn, statement, [_adapt(v) for v in values.values()] + where_params, query_name=f"{collection}.update")
        except psycopg2.Error as exc:
            raise RowStoreError(_pg_message(exc)) from exc

    def delete(self, collection: str, filters: dict) -> int:
        if not filters:
            raise RowStoreError(f"Refusing unfiltered delete on {collection}")
        where, where_params = _where(filters)
        statement = pgsql.SQL("delete from {}").format(_ident(collection)) + where
        try:
            with get_conn() as conn:
                return execute(conn, statement, where_params, query_name=f"{collection}.delete")
        except psycopg2.Error as exc:
            raise RowStoreError(_pg_message(exc)) from exc

    def select(
        self,
        collection: str,
        filters: dict | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict]:
        where, params = _where(filters)
        statement = pgsql.SQL("select * from {}").format(_ident(collection)) + where
        if order_by:
            direction = pgsql.SQL(" desc") if descending else pgsql.SQL(" asc")
            statement = statement + pgsql.SQL(" order by {}").format(_ident(order_by)) + direction
        if isinstance(limit, int) and limit >= 0:
            statement = statement + pgsql.SQL(" limit %s")
            params.append(limit)
        try:
            with get_conn() as conn:
                rows = fetch_all(conn, statement, params, query_name=f"{collection}.select")
        except psycopg2.Error as exc:
            raise RowStoreError(_pg_message(exc)) from exc
        return [_decode_row(r) for r in rows]


def _pg_message(exc: psycopg2.Error) -> str:
    diag = getattr(exc, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    return primary or str(exc).strip() or exc.__class__.__name__
