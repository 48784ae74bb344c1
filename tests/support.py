# In-memory stand-in for a psycopg2 ThreadedConnectionPool.
# Each connection works on a private copy of the tables, published on commit
# and dropped on rollback, so tests can observe transactional behaviour.
# Only the SQL shapes the API emits are understood.

from __future__ import annotations

import copy
import re
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import errors as pg_errors

Row = Dict[str, Any]
Tables = Dict[str, List[Row]]

UNIQUE_KEYS: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "surveyors": (("email",),),
    "counties": (("name",),),
    "service_categories": (("name",),),
    "surveyors_services": (("surveyor_id", "subcategory_id"),),
    "surveyors_counties": (("surveyor_id", "county_id"),),
}
TABLES_WITHOUT_ID = {"surveyors_services", "surveyors_counties"}

VALID_PASSWORD = "Secret123"

_SELECT_RE = re.compile(
    r"^SELECT (?P<cols>.+?) FROM (?P<table>\w+)"
    r"(?: WHERE (?P<where>.+?))?"
    r"(?: ORDER BY (?P<order>.+?))?"
    r"(?: LIMIT (?P<limit>%s|\d+))?"
    r"(?: OFFSET (?P<offset>%s))?$"
)
_INSERT_RE = re.compile(r"^INSERT INTO (?P<table>\w+) \((?P<cols>[\w, ]+)\) VALUES .+?(?: RETURNING (?P<ret>\w+))?$")
_UPDATE_RE = re.compile(r"^UPDATE (?P<table>\w+) SET (?P<sets>.+?) WHERE (?P<where>.+)$")
_DELETE_RE = re.compile(r"^DELETE FROM (?P<table>\w+) WHERE (?P<where>.+)$")
_EQ_RE = re.compile(r"^(\w+) = %s$")
_IN_RE = re.compile(r"^(\w+) IN \(((?:%s(?:, )?)+)\)$")


class FakeStore:
    """Committed state shared by every connection of a FakePool."""

    def __init__(self) -> None:
        self.tables: Tables = defaultdict(list)
        self._sequences: Dict[str, int] = defaultdict(int)
        self.statements: List[Tuple[str, Tuple[Any, ...]]] = []
        self.fail_when: Optional[Callable[[str], bool]] = None
        self.fail_rollback = False

    def next_id(self, table: str) -> int:
        self._sequences[table] += 1
        return self._sequences[table]

    def seed(self, table: str, rows: Sequence[Row]) -> List[int]:
        ids = []
        for row in rows:
            row = dict(row)
            if table not in TABLES_WITHOUT_ID:
                row.setdefault("id", self.next_id(table))
                self._sequences[table] = max(self._sequences[table], row["id"])
                ids.append(row["id"])
            self.tables[table].append(row)
        return ids

    def rows(self, table: str) -> List[Row]:
        return [dict(r) for r in self.tables[table]]

    def seed_reference_data(self) -> Dict[str, int]:
        """Counties and a small service taxonomy; returns name -> id for both."""
        ids: Dict[str, int] = {}
        for name in ("Adams", "Boulder", "Broomfield", "Denver", "Gilpin", "Jefferson"):
            ids[name] = self.seed("counties", [{"name": name}])[0]
        taxonomy = {
            "Surveying & Mapping": ["ALTA/NSPS Land Title Survey", "Topographic Survey"],
            "Digital Buildings": ["BIM Consulting", "Scan to BIM"],
            "Real Estate Transactions Service": ["ALTA Survey"],
        }
        for category, subs in taxonomy.items():
            cat_id = self.seed("service_categories", [{"name": category}])[0]
            for sub in subs:
                ids[sub] = self.seed("service_subcategories", [{"category_id": cat_id, "name": sub}])[0]
        return ids


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self._rows: List[Row] = []
        self.rowcount = -1

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def fetchone(self) -> Optional[Row]:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> List[Row]:
        return list(self._rows)

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> None:
        sql = " ".join(query.split())
        params = list(params or [])
        store = self._conn.store
        store.statements.append((sql, tuple(params)))
        if store.fail_when is not None and store.fail_when(sql):
            raise psycopg2.OperationalError("server closed the connection unexpectedly")

        tables = self._conn.working_tables()
        for marker, handler in _JOIN_HANDLERS:
            if marker in sql:
                self._rows = handler(tables, params)
                self.rowcount = len(self._rows)
                return

        for pattern, handler in (
            (_SELECT_RE, _select),
            (_INSERT_RE, _insert),
            (_UPDATE_RE, _update),
            (_DELETE_RE, _delete),
        ):
            m = pattern.match(sql)
            if m:
                self._rows, self.rowcount = handler(store, tables, m, params)
                return
        raise NotImplementedError(f"FakeCursor does not understand: {sql}")


class FakeConnection:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self._work: Optional[Tables] = None
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    def working_tables(self) -> Tables:
        if self._work is None:
            self._work = copy.deepcopy(self.store.tables)
        return self._work

    def cursor(self, cursor_factory: Any = None) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        if self._work is not None:
            self.store.tables = self._work
        self._work = None
        self.commits += 1

    def rollback(self) -> None:
        if self.store.fail_rollback:
            raise psycopg2.InterfaceError("connection already closed")
        self._work = None
        self.rollbacks += 1


class FakePool:
    """getconn/putconn/closeall with acquire and release bookkeeping."""

    def __init__(self, store: Optional[FakeStore] = None) -> None:
        self.store = store or FakeStore()
        self.unavailable = False
        self.acquired = 0
        self.released = 0
        self.discarded = 0
        self.closed = False
        self.connections: List[FakeConnection] = []
        self._out: List[FakeConnection] = []

    def getconn(self) -> FakeConnection:
        if self.unavailable:
            raise psycopg2.OperationalError("could not connect to server: Connection refused")
        conn = FakeConnection(self.store)
        self.acquired += 1
        self.connections.append(conn)
        self._out.append(conn)
        return conn

    def putconn(self, conn: FakeConnection, close: bool = False) -> None:
        if conn not in self._out:
            raise AssertionError("connection released twice or never acquired")
        self._out.remove(conn)
        # A real pool discards whatever the borrower left uncommitted.
        conn._work = None
        self.released += 1
        if close:
            self.discarded += 1

    def closeall(self) -> None:
        self.closed = True

    @property
    def outstanding(self) -> int:
        return len(self._out)


def registration_payload(**overrides: Any) -> Dict[str, Any]:
    """A valid registration body in wire (camelCase) form."""
    payload = {
        "firstName": "Jane",
        "lastName": "Doe",
        "companyName": "Front Range Surveying",
        "email": "jane@example.com",
        "password": VALID_PASSWORD,
        "confirmPassword": VALID_PASSWORD,
        "phone": "303-555-0100",
        "address": "1 Main St",
        "city": "Boulder",
        "state": "CO",
        "zipCode": "80301",
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Statement handlers
# ---------------------------------------------------------------------------


def _predicate(clause: Optional[str], params: List[Any]) -> Callable[[Row], bool]:
    if not clause:
        return lambda row: True
    checks: List[Callable[[Row], bool]] = []
    for part in clause.split(" AND "):
        m = _EQ_RE.match(part)
        if m:
            column, value = m.group(1), params.pop(0)
            checks.append(lambda row, c=column, v=value: row.get(c) == v)
            continue
        m = _IN_RE.match(part)
        if m:
            column = m.group(1)
            values = [params.pop(0) for _ in range(m.group(2).count("%s"))]
            checks.append(lambda row, c=column, vs=values: row.get(c) in vs)
            continue
        raise NotImplementedError(f"Unsupported condition: {part}")
    return lambda row: all(check(row) for check in checks)


def _check_unique(table: str, rows: List[Row], candidate: Row, ignore: Optional[Row] = None) -> None:
    for key in UNIQUE_KEYS.get(table, ()):
        for existing in rows:
            if existing is ignore:
                continue
            if all(existing.get(k) == candidate.get(k) for k in key):
                raise pg_errors.UniqueViolation(f"duplicate key value violates unique constraint on {table}{key}")


def _select(store: FakeStore, tables: Tables, m: "re.Match[str]", params: List[Any]):
    predicate = _predicate(m.group("where"), params)
    matches = [row for row in tables[m.group("table")] if predicate(row)]

    if m.group("order"):
        for term in reversed(m.group("order").split(", ")):
            column, _, direction = term.partition(" ")
            matches.sort(key=lambda r: r.get(column), reverse=direction.upper() == "DESC")

    cols = m.group("cols")
    if cols == "COUNT(*) AS total":
        return [{"total": len(matches)}], 1

    limit = m.group("limit")
    if limit is not None:
        limit_value = params.pop(0) if limit == "%s" else int(limit)
        offset_value = params.pop(0) if m.group("offset") else 0
        matches = matches[offset_value:offset_value + limit_value]

    if cols == "*":
        rows = [dict(r) for r in matches]
    elif cols == "1":
        rows = [{"?column?": 1} for _ in matches]
    else:
        names = [c.strip() for c in cols.split(",")]
        rows = [{n: r.get(n) for n in names} for r in matches]
    return rows, len(rows)


def _insert(store: FakeStore, tables: Tables, m: "re.Match[str]", params: List[Any]):
    table = m.group("table")
    columns = [c.strip() for c in m.group("cols").split(",")]
    width = len(columns)
    inserted: List[Row] = []
    for start in range(0, len(params), width):
        row = dict(zip(columns, params[start:start + width]))
        _check_unique(table, tables[table] + inserted, row)
        inserted.append(row)
    for row in inserted:
        if table not in TABLES_WITHOUT_ID and "id" not in row:
            row["id"] = store.next_id(table)
        tables[table].append(row)

    returning = m.group("ret")
    rows = [{returning: row[returning]} for row in inserted] if returning else []
    return rows, len(inserted)


def _update(store: FakeStore, tables: Tables, m: "re.Match[str]", params: List[Any]):
    table = m.group("table")
    assignments = []
    for part in m.group("sets").split(", "):
        em = _EQ_RE.match(part)
        if not em:
            raise NotImplementedError(f"Unsupported assignment: {part}")
        assignments.append((em.group(1), params.pop(0)))
    predicate = _predicate(m.group("where"), params)

    count = 0
    for row in tables[table]:
        if predicate(row):
            candidate = dict(row)
            candidate.update(assignments)
            _check_unique(table, tables[table], candidate, ignore=row)
            row.update(assignments)
            count += 1
    return [], count


def _delete(store: FakeStore, tables: Tables, m: "re.Match[str]", params: List[Any]):
    table = m.group("table")
    predicate = _predicate(m.group("where"), params)
    kept = [row for row in tables[table] if not predicate(row)]
    count = len(tables[table]) - len(kept)
    tables[table] = kept
    return [], count


def _by_id(rows: List[Row]) -> Dict[Any, Row]:
    return {row["id"]: row for row in rows}


def _surveyor_services(tables: Tables, params: List[Any]) -> List[Row]:
    subs = _by_id(tables["service_subcategories"])
    cats = _by_id(tables["service_categories"])
    out = []
    for link in tables["surveyors_services"]:
        if link["surveyor_id"] != params[0]:
            continue
        sub = subs[link["subcategory_id"]]
        out.append({"subservice_name": sub["name"], "category_name": cats[sub["category_id"]]["name"]})
    return sorted(out, key=lambda r: (r["category_name"], r["subservice_name"]))


def _surveyor_counties(tables: Tables, params: List[Any]) -> List[Row]:
    counties = _by_id(tables["counties"])
    names = [counties[link["county_id"]]["name"] for link in tables["surveyors_counties"] if link["surveyor_id"] == params[0]]
    return [{"county_name": name} for name in sorted(names)]


def _service_catalog(tables: Tables, params: List[Any]) -> List[Row]:
    out = []
    for cat in tables["service_categories"]:
        subs = [s for s in tables["service_subcategories"] if s["category_id"] == cat["id"]]
        if not subs:
            out.append({"category_name": cat["name"], "subservice_name": None})
        for sub in subs:
            out.append({"category_name": cat["name"], "subservice_name": sub["name"]})
    return sorted(out, key=lambda r: (r["category_name"], r["subservice_name"] or ""))


_JOIN_HANDLERS = (
    ("FROM surveyors_services ss JOIN", _surveyor_services),
    ("FROM counties c JOIN surveyors_counties", _surveyor_counties),
    ("FROM service_categories sc LEFT JOIN", _service_catalog),
)
