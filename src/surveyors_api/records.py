"""
Generic record access over the directory tables.

Table names are checked against a fixed allow-list and column names against
a plain identifier pattern before they are spliced into SQL; every value is
bound as a parameter.

Each method accepts an optional connection. With one, the statement runs on
it (inside the caller's transaction). Without one, reads borrow a pooled
connection and writes run in their own transaction.
"""
import math
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence

from src.surveyors_api import db
from src.surveyors_api.db import Database

SURVEYORS = "surveyors"
SERVICE_CATEGORIES = "service_categories"
SERVICE_SUBCATEGORIES = "service_subcategories"
COUNTIES = "counties"
SURVEYORS_SERVICES = "surveyors_services"
SURVEYORS_COUNTIES = "surveyors_counties"

KNOWN_TABLES: FrozenSet[str] = frozenset(
    {SURVEYORS, SERVICE_CATEGORIES, SERVICE_SUBCATEGORIES, COUNTIES, SURVEYORS_SERVICES, SURVEYORS_COUNTIES}
)

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_ORDER_TERM_RE = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*)(?:\s+(ASC|DESC))?$", re.IGNORECASE)


@dataclass(frozen=True)
class WriteResult:
    affected_rows: int
    insert_id: Optional[int] = None


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


@dataclass(frozen=True)
class Page:
    data: List[Dict[str, Any]] = field(default_factory=list)
    pagination: Optional[Pagination] = None


def _column(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid column name '{name}'")
    return name


def _column_list(columns: Sequence[str]) -> str:
    if list(columns) == ["*"]:
        return "*"
    if not columns:
        raise ValueError("At least one column is required")
    return ", ".join(_column(c) for c in columns)


def _order_clause(order_by: Optional[str]) -> str:
    if not order_by:
        return ""
    terms = []
    for raw in order_by.split(","):
        m = _ORDER_TERM_RE.match(raw.strip())
        if not m:
            raise ValueError(f"Invalid ORDER BY term '{raw.strip()}'")
        terms.append(f"{m.group(1)} {(m.group(2) or 'ASC').upper()}")
    return " ORDER BY " + ", ".join(terms)


def _placeholders(count: int) -> str:
    return ", ".join(["%s"] * count)


class RecordStore:
    """Find/insert/update/delete/paginate helpers parameterized by table name."""

    def __init__(self, database: Database, tables: Iterable[str] = KNOWN_TABLES) -> None:
        self._db = database
        self._tables = frozenset(tables)

    def _table(self, name: str) -> str:
        if name not in self._tables:
            raise ValueError(f"Unknown table '{name}'")
        return name

    @contextmanager
    def _reading(self, conn: Any) -> Iterator[Any]:
        if conn is not None:
            yield conn
            return
        with self._db.connection() as own:
            yield own

    @contextmanager
    def _writing(self, conn: Any) -> Iterator[Any]:
        if conn is not None:
            yield conn
            return
        with self._db.transaction() as own:
            yield own

    # PUBLIC_INTERFACE
    def find_by_id(
        self, table: str, record_id: Any, columns: Sequence[str] = ("*",), conn: Any = None
    ) -> Optional[Dict[str, Any]]:
        """Return the row with this primary key, or None."""
        query = f"SELECT {_column_list(columns)} FROM {self._table(table)} WHERE id = %s"
        with self._reading(conn) as c:
            return db.fetch_one(c, query, [record_id])

    # PUBLIC_INTERFACE
    def find_by_field(
        self, table: str, field_name: str, value: Any, columns: Sequence[str] = ("*",), conn: Any = None
    ) -> List[Dict[str, Any]]:
        """Return every row whose field equals value (empty list when none match)."""
        query = f"SELECT {_column_list(columns)} FROM {self._table(table)} WHERE {_column(field_name)} = %s"
        with self._reading(conn) as c:
            return db.fetch_all(c, query, [value])

    # PUBLIC_INTERFACE
    def find_in(
        self,
        table: str,
        field_name: str,
        values: Sequence[Any],
        columns: Sequence[str] = ("*",),
        conn: Any = None,
    ) -> List[Dict[str, Any]]:
        """Return rows whose field is one of values. No query is issued for an empty input."""
        values = list(values)
        if not values:
            return []
        query = (
            f"SELECT {_column_list(columns)} FROM {self._table(table)} "
            f"WHERE {_column(field_name)} IN ({_placeholders(len(values))})"
        )
        with self._reading(conn) as c:
            return db.fetch_all(c, query, values)

    # PUBLIC_INTERFACE
    def exists_by_field(self, table: str, field_name: str, value: Any, conn: Any = None) -> bool:
        """True when at least one row has field equal to value."""
        query = f"SELECT 1 FROM {self._table(table)} WHERE {_column(field_name)} = %s LIMIT 1"
        with self._reading(conn) as c:
            return db.fetch_one(c, query, [value]) is not None

    # PUBLIC_INTERFACE
    def insert(self, table: str, fields: Mapping[str, Any], conn: Any = None) -> int:
        """Insert one row and return its generated id."""
        if not fields:
            raise ValueError("Cannot insert an empty record")
        columns = list(fields.keys())
        query = (
            f"INSERT INTO {self._table(table)} ({_column_list(columns)}) "
            f"VALUES ({_placeholders(len(columns))}) RETURNING id"
        )
        with self._writing(conn) as c:
            row = db.execute_returning_one(c, query, list(fields.values()))
        return row["id"]

    # PUBLIC_INTERFACE
    def update_by_id(self, table: str, record_id: Any, fields: Mapping[str, Any], conn: Any = None) -> int:
        """Update one row by primary key. Returns the affected row count (0 when the id is unknown)."""
        if not fields:
            raise ValueError("Cannot update with an empty field set")
        assignments = ", ".join(f"{_column(name)} = %s" for name in fields)
        query = f"UPDATE {self._table(table)} SET {assignments} WHERE id = %s"
        with self._writing(conn) as c:
            return db.execute(c, query, list(fields.values()) + [record_id])

    # PUBLIC_INTERFACE
    def delete_by_id(self, table: str, record_id: Any, conn: Any = None) -> int:
        """Delete one row by primary key. Returns the affected row count."""
        query = f"DELETE FROM {self._table(table)} WHERE id = %s"
        with self._writing(conn) as c:
            return db.execute(c, query, [record_id])

    # PUBLIC_INTERFACE
    def delete_by_field(self, table: str, field_name: str, value: Any, conn: Any = None) -> int:
        """Delete every row whose field equals value. Returns the affected row count."""
        query = f"DELETE FROM {self._table(table)} WHERE {_column(field_name)} = %s"
        with self._writing(conn) as c:
            return db.execute(c, query, [value])

    # PUBLIC_INTERFACE
    def batch_insert(self, table: str, records: Sequence[Mapping[str, Any]], conn: Any = None) -> WriteResult:
        """
        Insert all records with a single multi-row INSERT.

        Every record must carry the same keys as the first one. An empty input
        returns immediately without touching the pool.
        """
        if not records:
            return WriteResult(affected_rows=0, insert_id=None)

        columns = list(records[0].keys())
        params: List[Any] = []
        for record in records:
            if list(record.keys()) != columns:
                raise ValueError("All records in a batch must share the same columns")
            params.extend(record[c] for c in columns)

        row_placeholder = f"({_placeholders(len(columns))})"
        query = (
            f"INSERT INTO {self._table(table)} ({_column_list(columns)}) "
            f"VALUES {', '.join([row_placeholder] * len(records))}"
        )
        with self._writing(conn) as c:
            affected = db.execute(c, query, params)
        return WriteResult(affected_rows=affected, insert_id=None)

    # PUBLIC_INTERFACE
    def paginate(
        self,
        table: str,
        page: int = 1,
        limit: int = 10,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        columns: Sequence[str] = ("*",),
        conn: Any = None,
    ) -> Page:
        """
        Return one page of rows plus pagination metadata.

        Runs a COUNT(*) and a LIMIT/OFFSET select under the same equality
        filter. page and limit are used as given; callers validate them.
        """
        safe_table = self._table(table)
        where_sql = ""
        params: List[Any] = []
        if where:
            where_sql = " WHERE " + " AND ".join(f"{_column(name)} = %s" for name in where)
            params = list(where.values())

        count_query = f"SELECT COUNT(*) AS total FROM {safe_table}{where_sql}"
        data_query = (
            f"SELECT {_column_list(columns)} FROM {safe_table}{where_sql}"
            f"{_order_clause(order_by)} LIMIT %s OFFSET %s"
        )
        offset = (page - 1) * limit

        with self._reading(conn) as c:
            count_row = db.fetch_one(c, count_query, params)
            data = db.fetch_all(c, data_query, params + [limit, offset])

        total = int(count_row["total"]) if count_row else 0
        total_pages = math.ceil(total / limit)
        return Page(
            data=data,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1,
            ),
        )
