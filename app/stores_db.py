"""Postgres-backed record store adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json

from app.db import execute, fetch_all, fetch_one, get_conn
from certflow.errors import StoreError


logger = logging.getLogger("certflow.db")

# Column types and defaults alter_schema may emit. Anything else is refused.
_ALLOWED_TYPES = {"timestamptz", "uuid", "text", "boolean", "integer", "numeric", "date", "jsonb"}
_ALLOWED_DEFAULTS = {None: None, "now()": sql.SQL("now()"), "gen_random_uuid()": sql.SQL("gen_random_uuid()")}


def _wrap_db_error(exc: psycopg2.Error, table: str | None = None) -> StoreError:
    diag = getattr(exc, "diag", None)
    return StoreError(
        message=(getattr(diag, "message_primary", None) if diag else None) or str(exc).strip() or "database error",
        code=getattr(exc, "pgcode", None),
        table=(getattr(diag, "table_name", None) if diag else None) or table,
        constraint=getattr(diag, "constraint_name", None) if diag else None,
        column=getattr(diag, "column_name", None) if diag else None,
        detail=getattr(diag, "message_detail", None) if diag else None,
    )


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Json(value)
    return value


def _where(filters: Dict[str, Any] | None) -> tuple[sql.Composable, list]:
    if not filters:
        return sql.SQL(""), []
    clauses = []
    params: list = []
    for key, value in filters.items():
        if isinstance(value, (list, tuple, set)):
            clauses.append(sql.SQL("{}::text = ANY(%s)").format(sql.Identifier(key)))
            params.append([str(v) for v in value])
        elif value is None:
            clauses.append(sql.SQL("{} IS NULL").format(sql.Identifier(key)))
        else:
            clauses.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
            params.append(value)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


class DbRecordStore:
    def select(self, object_type: str, filters: dict | None = None, order_by: List[str] | None = None) -> list[dict]:
        where, params = _where(filters)
        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(object_type)) + where
        if order_by:
            query += sql.SQL(" ORDER BY ") + sql.SQL(", ").join(sql.Identifier(c) for c in order_by)
        try:
            with get_conn() as conn:
                return fetch_all(conn, query, params, query_name=f"{object_type}.select")
        except psycopg2.Error as exc:
            raise _wrap_db_error(exc, object_type) from exc

    def insert(self, object_type: str, row: dict) -> dict:
        columns = list(row.keys())
        if columns:
            query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                sql.Identifier(object_type),
                sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            )
        else:
            query = sql.SQL("INSERT INTO {} DEFAULT VALUES RETURNING *").format(sql.Identifier(object_type))
        try:
            with get_conn() as conn:
                return fetch_one(conn, query, [_adapt(row[c]) for c in columns], query_name=f"{object_type}.insert")
        except psycopg2.Error as exc:
            raise _wrap_db_error(exc, object_type) from exc

    def update(self, object_type: str, record_id: str, patch: dict) -> dict:
        columns = [c for c in patch.keys() if c != "id"]
        if not columns:
            rows = self.select(object_type, {"id": record_id})
            if not rows:
                raise StoreError("Record not found", code="P0002", table=object_type)
            return rows[0]
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            sql.Identifier(object_type),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in columns),
        )
        params = [_adapt(patch[c]) for c in columns] + [record_id]
        try:
            with get_conn() as conn:
                row = fetch_one(conn, query, params, query_name=f"{object_type}.update")
        except psycopg2.Error as exc:
            raise _wrap_db_error(exc, object_type) from exc
        if row is None:
            raise StoreError("Record not found", code="P0002", table=object_type)
        return row

    def delete(self, object_type: str, record_id: str) -> None:
        query = sql.SQL("DELETE FROM {} WHERE id = %s").format(sql.Identifier(object_type))
        try:
            with get_conn() as conn:
                count = execute(conn, query, [record_id], query_name=f"{object_type}.delete")
        except psycopg2.Error as exc:
            raise _wrap_db_error(exc, object_type) from exc
        if count == 0:
            raise StoreError("Record not found", code="P0002", table=object_type)

    def alter_schema(self, object_type: str, column: str, col_type: str, default: str | None = None) -> None:
        if col_type not in _ALLOWED_TYPES or default not in _ALLOWED_DEFAULTS:
            raise StoreError(f"column type {col_type} with default {default} is not allowed", table=object_type, column=column)
        query = sql.SQL("ALTER TABLE {} ADD COLUMN IF NOT EXISTS {} {}").format(
            sql.Identifier(object_type),
            sql.Identifier(column),
            sql.SQL(col_type),
        )
        if default is not None:
            query += sql.SQL(" DEFAULT ") + _ALLOWED_DEFAULTS[default]
        try:
            with get_conn() as conn:
                execute(conn, query, None, query_name=f"{object_type}.alter_schema")
        except psycopg2.Error as exc:
            raise _wrap_db_error(exc, object_type) from exc

    def rpc(self, name: str, args: dict | None = None) -> Any:
        """Call a stored function with named arguments.

        A function returning a single scalar (such as json) is unwrapped; set
        returning functions come back as rows.
        """
        args = args or {}
        keys = list(args.keys())
        query = sql.SQL("SELECT * FROM {}({})").format(
            sql.Identifier(name),
            sql.SQL(", ").join(sql.SQL("{} => %s").format(sql.Identifier(k)) for k in keys),
        )
        try:
            with get_conn() as conn:
                rows = fetch_all(conn, query, [_adapt(args[k]) for k in keys], query_name=f"rpc.{name}")
        except psycopg2.Error as exc:
            raise _wrap_db_error(exc) from exc
        if len(rows) == 1 and list(rows[0].keys()) == [name]:
            return rows[0][name]
        return rows
