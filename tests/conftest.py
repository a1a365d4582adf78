import os
import sqlite3
import sys

import pytest
import requests

# Ensure workspace root is on sys.path so we can import merge_pipeline, services and utils
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


def make_db(path, statements, rows=None):
    """Create a SQLite file from DDL statements and {table: [tuples]} rows."""
    conn = sqlite3.connect(str(path))
    try:
        for stmt in statements:
            conn.execute(stmt)
        for table, table_rows in (rows or {}).items():
            for row in table_rows:
                placeholders = ','.join('?' * len(row))
                conn.execute(f'INSERT INTO {table} VALUES ({placeholders})', row)
        conn.commit()
    finally:
        conn.close()
    return str(path)


def read_rows(path, query):
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute(query).fetchall()
    finally:
        conn.close()


class FakeResponse:
    def __init__(self, status_code=200, body=b''):
        self.status_code = status_code
        self._body = body

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """
    Stand-in for requests.Session.
    routes maps url -> bytes, int (HTTP status), an exception instance, or a
    list of those consumed one per call.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append(url)
        target = self.routes.get(url, 404)
        if isinstance(target, list):
            target = target.pop(0) if len(target) > 1 else target[0]
        if isinstance(target, Exception):
            raise target
        if isinstance(target, int):
            return FakeResponse(status_code=target)
        return FakeResponse(body=target)


def file_bytes(path):
    with open(path, 'rb') as fh:
        return fh.read()


SCENARIO_DDL = ['CREATE TABLE scenario (id INTEGER PRIMARY KEY, value INT)']
LIGHTHOUSE_DDL = [
    'CREATE TABLE lighthouse_results (id INTEGER PRIMARY KEY, url TEXT, score REAL, timestamp TEXT)',
    'CREATE INDEX idx_lighthouse_url ON lighthouse_results (url)',
]
VISUAL_DDL = [
    'CREATE TABLE baselines (name TEXT PRIMARY KEY, image TEXT)',
    'CREATE TABLE comparisons (id INTEGER PRIMARY KEY, name TEXT, diff REAL, created_at TEXT)',
]


@pytest.fixture
def connection_error():
    return requests.ConnectionError('connection refused')
