import logging
from typing import Dict, List

from merge_pipeline.connections import ConnectionManager
from merge_pipeline.db import count_rows, fetch_records, list_tables, quote_ident, table_columns, table_exists
from merge_pipeline.errors import TableNotFoundError
from utils.constants import TIMESTAMP_COLUMNS
from utils.helpers import file_metadata

logger = logging.getLogger(__name__)


def _order_clause(columns: List[str], descending: bool = True) -> str:
    """ORDER BY the first timestamp-like column, else id, else nothing."""
    direction = "DESC" if descending else "ASC"
    for name in TIMESTAMP_COLUMNS + ("id",):
        if name in columns:
            return f" ORDER BY {quote_ident(name)} {direction}"
    return ""


class QueryService:
    """
    Read-only queries against the live merged databases.
    - table_rows: rows of one table, newest first
    - group_rows: rows of every table in a group
    - group_stats: table counts and file metadata for a group
    Raises HandleUnavailableError when a group has no data yet and
    TableNotFoundError when a requested table is missing.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    def table_rows(self, group: str, table: str) -> List[dict]:
        with self.manager.lease(group) as handle:
            if not table_exists(handle.conn, table):
                raise TableNotFoundError(group, table)
            columns = [c["name"] for c in table_columns(handle.conn, table)]
            query = f"SELECT * FROM {quote_ident(table)}" + _order_clause(columns)
            return fetch_records(handle.conn, query)

    def group_rows(self, group: str) -> Dict[str, List[dict]]:
        tables = {}
        with self.manager.lease(group) as handle:
            for table in list_tables(handle.conn):
                columns = [c["name"] for c in table_columns(handle.conn, table)]
                query = f"SELECT * FROM {quote_ident(table)}" + _order_clause(columns)
                tables[table] = fetch_records(handle.conn, query)
        return tables

    def group_stats(self, group: str) -> dict:
        with self.manager.lease(group) as handle:
            counts = {t: count_rows(handle.conn, t) for t in list_tables(handle.conn)}
            stats = {
                "group": group,
                "tables": list(counts),
                "table_counts": counts,
                "total_rows": sum(counts.values()),
                "source_count": handle.source_count,
                "activated_at": handle.activated_at.isoformat(),
            }
            stats.update(file_metadata(handle.path))
        return stats

