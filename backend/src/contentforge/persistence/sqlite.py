"""SQLite persistence adapter.

Each collection is a table of JSON documents:

    CREATE TABLE "blog" (id TEXT PRIMARY KEY, data TEXT NOT NULL)

Filters and sorts compile to json_extract() expressions over the data
column. Unique fields get unique expression indexes; a violation raises
DuplicateKey naming the fields.
"""

import json
import re
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from contentforge.core.errors import DuplicateKey, PersistenceError
from contentforge.persistence.adapter import WHERE_OPERATORS
from contentforge.schema.fields import CollectionSchema

_SEGMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_INDEX = re.compile(r"^\d+$")
_UNIQUE_FAILED = re.compile(r"index '([^']+)'")


class SQLiteAdapter:
    """Simple SQLite persistence adapter for JSON documents."""

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self.conn: sqlite3.Connection | None = None
        # index name -> field names it covers
        self._unique_indexes: dict[str, list[str]] = {}

    def connect(self) -> None:
        """Establish database connection."""
        with self._errors("connect"):
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def initialize_collection(self, schema: CollectionSchema) -> None:
        """Create the collection's table and unique indexes if missing."""
        conn = self._connection()
        table = self._table_name(schema.slug)

        with self._errors(f"initialize '{schema.slug}'"):
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} "
                "(id TEXT PRIMARY KEY, data TEXT NOT NULL)"
            )
            for field_name in sorted(schema.unique_fields):
                index = f"uq:{schema.slug}:{field_name}"
                conn.execute(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS "{index}" '
                    f"ON {table} ({self._field_expr(field_name)})"
                )
                self._unique_indexes[index] = [field_name]
            conn.commit()

    # =========================================================================
    # Reads
    # =========================================================================

    def find(
        self,
        collection: str,
        where: dict[str, Any] | None = None,
        sort: list[dict[str, str]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Query documents with filtering, sorting, and pagination."""
        conn = self._connection()
        table = self._table_name(collection)
        where_clause, where_values = self._where_clause(where)

        order_clause = " ORDER BY rowid"
        if sort:
            order_parts = []
            for s in sort:
                direction = "DESC" if s.get("direction") == "desc" else "ASC"
                order_parts.append(f"{self._field_expr(s['field'])} {direction}")
            order_clause = f" ORDER BY {', '.join(order_parts)}, rowid"

        limit_clause = ""
        limit_values: list[Any] = []
        if limit:
            limit_clause = " LIMIT ? OFFSET ?"
            limit_values = [int(limit), int(offset)]
        elif offset:
            limit_clause = " LIMIT -1 OFFSET ?"
            limit_values = [int(offset)]

        with self._errors(f"query '{collection}'"):
            cursor = conn.execute(
                f"SELECT id, data FROM {table}{where_clause}{order_clause}{limit_clause}",
                where_values + limit_values,
            )
            rows = [self._to_document(row) for row in cursor.fetchall()]
            total = conn.execute(
                f"SELECT COUNT(*) FROM {table}{where_clause}", where_values
            ).fetchone()[0]

        return {
            "data": rows,
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "hasMore": (offset + len(rows)) < total if limit else False,
            },
        }

    def find_by_id(
        self,
        collection: str,
        id: str,
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Fetch a single document by id, optionally constrained by where."""
        conn = self._connection()
        table = self._table_name(collection)
        clause, values = self._where_clause(self._with_id(id, where))

        with self._errors(f"read '{collection}/{id}'"):
            row = conn.execute(f"SELECT id, data FROM {table}{clause}", values).fetchone()

        return self._to_document(row) if row else None

    def count_matching(
        self, collection: str, where: dict[str, Any] | None = None
    ) -> int:
        conn = self._connection()
        table = self._table_name(collection)
        clause, values = self._where_clause(where)

        with self._errors(f"count '{collection}'"):
            return conn.execute(f"SELECT COUNT(*) FROM {table}{clause}", values).fetchone()[0]

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a new document, assigning its id.

        Returns:
            The stored document including the generated id
        """
        conn = self._connection()
        table = self._table_name(collection)
        doc_id = uuid.uuid4().hex
        body = {k: v for k, v in data.items() if k != "id"}

        with self._errors(f"insert into '{collection}'"):
            conn.execute(
                f"INSERT INTO {table} (id, data) VALUES (?, ?)",
                [doc_id, self._dumps(body)],
            )
            conn.commit()

        return {"id": doc_id, **body}

    def update_by_id(
        self,
        collection: str,
        id: str,
        data: dict[str, Any],
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Replace a document's body.

        Returns:
            The stored document, or None if no document matched id and where
        """
        conn = self._connection()
        table = self._table_name(collection)
        clause, values = self._where_clause(self._with_id(id, where))
        body = {k: v for k, v in data.items() if k != "id"}

        with self._errors(f"update '{collection}/{id}'"):
            cursor = conn.execute(
                f"UPDATE {table} SET data = ?{clause}", [self._dumps(body)] + values
            )
            conn.commit()

        if cursor.rowcount == 0:
            return None
        return {"id": id, **body}

    def delete_by_id(
        self,
        collection: str,
        id: str,
        where: dict[str, Any] | None = None,
    ) -> bool:
        """Delete a document. Returns False if nothing matched."""
        conn = self._connection()
        table = self._table_name(collection)
        clause, values = self._where_clause(self._with_id(id, where))

        with self._errors(f"delete '{collection}/{id}'"):
            cursor = conn.execute(f"DELETE FROM {table}{clause}", values)
            conn.commit()

        return cursor.rowcount > 0

    # =========================================================================
    # Filter compilation
    # =========================================================================

    def _where_clause(self, where: dict[str, Any] | None) -> tuple[str, list[Any]]:
        if not where:
            return "", []
        sql, values = self._build_where(where)
        return (f" WHERE {sql}", values) if sql else ("", [])

    def _build_where(self, where: dict[str, Any]) -> tuple[str, list[Any]]:
        """Compile a where mapping; its keys are combined with AND."""
        parts: list[str] = []
        values: list[Any] = []

        for key, cond in where.items():
            if key in ("and", "or"):
                if not isinstance(cond, list):
                    raise PersistenceError(f"'{key}' expects a list of filters")
                sub_parts = []
                for sub in cond:
                    sql, vals = self._build_where(sub)
                    if sql:
                        sub_parts.append(f"({sql})")
                        values.extend(vals)
                if sub_parts:
                    parts.append(f"({f' {key.upper()} '.join(sub_parts)})")
                continue

            expr = self._field_expr(key)
            if not isinstance(cond, dict):
                cond = {"eq": cond}
            for op, value in cond.items():
                sql, vals = self._build_condition(expr, op, value)
                parts.append(sql)
                values.extend(vals)

        return " AND ".join(parts), values

    def _build_condition(self, expr: str, op: str, value: Any) -> tuple[str, list[Any]]:
        """Build SQL condition for one operator."""
        if op not in WHERE_OPERATORS:
            raise PersistenceError(f"Unsupported filter operator '{op}'")

        if op == "eq":
            if value is None:
                return f"{expr} IS NULL", []
            return f"{expr} = ?", [value]
        elif op == "neq":
            if value is None:
                return f"{expr} IS NOT NULL", []
            return f"({expr} IS NULL OR {expr} != ?)", [value]
        elif op == "gt":
            return f"{expr} > ?", [value]
        elif op == "gte":
            return f"{expr} >= ?", [value]
        elif op == "lt":
            return f"{expr} < ?", [value]
        elif op == "lte":
            return f"{expr} <= ?", [value]
        elif op in ("in", "notIn"):
            items = list(value or [])
            if not items:
                return ("0", []) if op == "in" else ("1", [])
            placeholders = ", ".join(["?" for _ in items])
            negate = "NOT " if op == "notIn" else ""
            return f"{expr} {negate}IN ({placeholders})", items
        elif op == "contains":
            return f"{expr} LIKE ?", [f"%{value}%"]
        elif op == "startsWith":
            return f"{expr} LIKE ?", [f"{value}%"]
        elif op == "isNull":
            return f"{expr} IS NULL", []
        return f"{expr} IS NOT NULL", []

    def _field_expr(self, path: str) -> str:
        """SQL expression addressing a (dotted) document field."""
        if path == "id":
            return "id"

        json_path = "$"
        for segment in path.split("."):
            if _INDEX.match(segment):
                json_path += f"[{segment}]"
            elif _SEGMENT.match(segment):
                json_path += f".{segment}"
            else:
                raise PersistenceError(f"Invalid field path '{path}'")
        return f"json_extract(data, '{json_path}')"

    # =========================================================================
    # Helpers
    # =========================================================================

    def _connection(self) -> sqlite3.Connection:
        if not self.conn:
            raise PersistenceError("Database not connected")
        return self.conn

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        """Translate sqlite3 errors into engine persistence errors."""
        try:
            yield
        except sqlite3.IntegrityError as e:
            if self.conn:
                self.conn.rollback()
            match = _UNIQUE_FAILED.search(str(e))
            if match:
                fields = self._unique_indexes.get(match.group(1), [])
                raise DuplicateKey(
                    f"Duplicate value for {', '.join(fields) or 'a unique field'}",
                    fields,
                ) from e
            raise PersistenceError(f"Failed to {action}: {e}") from e
        except sqlite3.Error as e:
            if self.conn:
                self.conn.rollback()
            raise PersistenceError(f"Failed to {action}: {e}") from e

    @staticmethod
    def _with_id(id: str, where: dict[str, Any] | None) -> dict[str, Any]:
        if not where:
            return {"id": {"eq": id}}
        return {"and": [{"id": {"eq": id}}, where]}

    @staticmethod
    def _to_document(row: sqlite3.Row) -> dict[str, Any]:
        return {"id": row["id"], **json.loads(row["data"])}

    @staticmethod
    def _dumps(body: dict[str, Any]) -> str:
        return json.dumps(body, default=str)

    def _table_name(self, collection: str) -> str:
        """Quote a collection slug as its table name."""
        if not re.match(r"^[a-z0-9][a-z0-9_-]*$", collection):
            raise PersistenceError(f"Invalid collection name '{collection}'")
        return f'"{collection}"'
