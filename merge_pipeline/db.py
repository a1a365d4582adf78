import base64
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import List

import pandas as pd

# Engine-reserved object names (sqlite_sequence, sqlite_stat1, sqlite_autoindex_*)
INTERNAL_PREFIX = "sqlite_"


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def is_internal(name: str) -> bool:
    return name.lower().startswith(INTERNAL_PREFIX)


def readonly_uri(db_path: str) -> str:
    return Path(db_path).resolve().as_uri() + "?mode=ro"


@contextmanager
def get_conn(db_path: str, readonly: bool = False):
    if readonly:
        conn = sqlite3.connect(readonly_uri(db_path), uri=True)
    else:
        Path(os.path.dirname(os.path.abspath(db_path))).mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


def open_readonly(db_path: str) -> sqlite3.Connection:
    """Open a read-only connection that may be shared across request threads."""
    return sqlite3.connect(readonly_uri(db_path), uri=True, check_same_thread=False)


def list_tables(conn: sqlite3.Connection) -> List[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    ).fetchall()
    return [r[0] for r in rows if not is_internal(r[0])]


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def table_columns(conn: sqlite3.Connection, table: str) -> List[dict]:
    """Return PRAGMA table_info rows as dicts (name, type, notnull, pk)."""
    rows = conn.execute(f"PRAGMA table_info({quote_ident(table)})").fetchall()
    return [
        {"name": r[1], "type": r[2] or "", "notnull": bool(r[3]), "pk": int(r[5])}
        for r in rows
    ]


def integer_id_key(columns: List[dict]) -> bool:
    """True when the primary key is exactly one integer-affinity column named ``id``.

    SQLite gives a column INTEGER affinity when its declared type contains "INT".
    """
    pk_cols = [c for c in columns if c["pk"] > 0]
    if len(pk_cols) != 1:
        return False
    col = pk_cols[0]
    return col["name"] == "id" and "INT" in col["type"].upper()


def count_rows(conn: sqlite3.Connection, table: str) -> int:
    return int(conn.execute(f"SELECT COUNT(*) FROM {quote_ident(table)}").fetchone()[0])


def _json_value(value):
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if value is None or pd.isna(value):
        return None
    # numpy scalars
    if hasattr(value, "item"):
        return value.item()
    return value


def fetch_records(conn: sqlite3.Connection, query: str, params: tuple = ()) -> List[dict]:
    """
    Run a query and return JSON-ready records.
    Nullable dtypes keep INTEGER columns as int when they hold NULLs; NULL
    becomes None and BLOB values are returned as base64 text.
    """
    df = pd.read_sql_query(query, conn, params=params, dtype_backend="numpy_nullable")
    if df.empty:
        return []
    records = df.astype(object).to_dict(orient="records")
    return [{k: _json_value(v) for k, v in row.items()} for row in records]
