import logging
import os
import sqlite3
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .db import get_conn, integer_id_key, quote_ident, table_columns, table_exists
from .errors import MergeError
from .fetcher import DownloadResult
from .schema import Schema, extract_schema

logger = logging.getLogger(__name__)


@dataclass
class TableOutcome:
    name: str
    created: bool = False
    reassigned_ids: bool = False
    rows_merged: int = 0
    errors: int = 0
    sources_missing: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "reassigned_ids": self.reassigned_ids,
            "rows_merged": self.rows_merged,
            "errors": self.errors,
            "sources_missing": list(self.sources_missing),
        }


@dataclass
class MergeReport:
    output_path: str
    sources: int = 0
    tables_created: int = 0
    indexes_created: int = 0
    rows_merged: int = 0
    errors: int = 0
    failures: List[str] = field(default_factory=list)
    tables: Dict[str, TableOutcome] = field(default_factory=dict)
    optimized: bool = False
    duration_seconds: float = 0.0

    @property
    def per_table_counts(self) -> Dict[str, int]:
        return {name: t.rows_merged for name, t in self.tables.items() if t.created}

    def to_dict(self) -> dict:
        return {
            "output_path": self.output_path,
            "sources": self.sources,
            "tables_created": self.tables_created,
            "indexes_created": self.indexes_created,
            "rows_merged": self.rows_merged,
            "per_table_counts": self.per_table_counts,
            "errors": self.errors,
            "failures": list(self.failures),
            "tables": {name: t.to_dict() for name, t in self.tables.items()},
            "optimized": self.optimized,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def _remove_existing(path: str):
    for suffix in ("", "-journal", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.remove(path + suffix)


def _create_tables(out: sqlite3.Connection, schema: Schema, report: MergeReport):
    for table in schema.tables:
        outcome = TableOutcome(name=table.name)
        report.tables[table.name] = outcome
        try:
            out.execute(table.sql)
            outcome.created = True
            report.tables_created += 1
        except sqlite3.Error as e:
            logger.error(f"Skipping table {table.name}: create failed: {e}")
            report.failures.append(f"table {table.name}: {e}")


def _create_indexes(out: sqlite3.Connection, schema: Schema, report: MergeReport):
    for index in schema.indexes:
        try:
            out.execute(index.sql)
            report.indexes_created += 1
        except sqlite3.Error as e:
            logger.warning(f"Skipping index {index.name}: {e}")
            report.failures.append(f"index {index.name}: {e}")


def _merge_source_into_table(
    out: sqlite3.Connection,
    src: sqlite3.Connection,
    source_url: str,
    outcome: TableOutcome,
    columns: List[str],
) -> int:
    """Copy one source's rows of one table. Returns number of failed rows."""
    table = outcome.name
    if not table_exists(src, table):
        logger.warning(f"Source {source_url} has no table {table}; skipping")
        outcome.sources_missing.append(source_url)
        return 0

    src_cols = {c["name"] for c in table_columns(src, table)}
    cols = [c for c in columns if c in src_cols]
    if outcome.reassigned_ids:
        cols = [c for c in cols if c != "id"]
        select_cols = cols + ["id"] if "id" in src_cols else list(cols)
    else:
        select_cols = list(cols)
    if not select_cols:
        logger.warning(f"Source {source_url} shares no columns with {table}; skipping")
        outcome.sources_missing.append(source_url)
        return 0

    select_sql = f"SELECT {', '.join(quote_ident(c) for c in select_cols)} FROM {quote_ident(table)}"
    if outcome.reassigned_ids and "id" in src_cols:
        select_sql += ' ORDER BY "id"'

    insert_cols = (["id"] + cols) if outcome.reassigned_ids else cols
    insert_sql = (
        f"INSERT INTO {quote_ident(table)} ({', '.join(quote_ident(c) for c in insert_cols)}) "
        f"VALUES ({', '.join('?' * len(insert_cols))})"
    )

    failed = 0
    inserted = 0
    with out:
        next_id = 0
        if outcome.reassigned_ids:
            next_id = out.execute(f'SELECT COALESCE(MAX("id"), 0) FROM {quote_ident(table)}').fetchone()[0]
        for row in src.execute(select_sql):
            values = tuple(row[: len(cols)])
            if outcome.reassigned_ids:
                values = (next_id + 1,) + values
            try:
                out.execute(insert_sql, values)
            except sqlite3.Error as e:
                failed += 1
                logger.debug(f"Row insert into {table} from {source_url} failed: {e}")
                continue
            if outcome.reassigned_ids:
                next_id += 1
            inserted += 1
    outcome.rows_merged += inserted
    outcome.errors += failed
    if failed:
        logger.warning(f"{failed} rows from {source_url} could not be merged into {table}")
    return failed


def _optimize(out: sqlite3.Connection, report: MergeReport):
    try:
        out.execute("ANALYZE")
        out.commit()
        out.execute("VACUUM")
        report.optimized = True
    except sqlite3.Error as e:
        logger.warning(f"Optimization of {report.output_path} failed: {e}")
        report.failures.append(f"optimize: {e}")


def merge_group(
    sources: Sequence[DownloadResult],
    output_path: str,
    schema: Optional[Schema] = None,
) -> MergeReport:
    """
    Merge every successful source, in the given order, into a fresh database at
    ``output_path``.

    Tables keyed by a single integer ``id`` column get new ids from a counter
    seeded with the output table's MAX(id), so overlapping source ids never
    collide. Other tables are copied with their keys unchanged; rows that then
    violate a constraint are skipped and counted in ``errors``.
    """
    started = time.monotonic()
    usable = [s for s in sources if s.success]
    if not usable:
        raise MergeError(f"no successful sources to merge into {output_path}")
    if schema is None:
        schema = extract_schema(usable[0].local_path)

    report = MergeReport(output_path=output_path, sources=len(usable))
    _remove_existing(output_path)

    with ExitStack() as stack:
        out = stack.enter_context(get_conn(output_path))
        _create_tables(out, schema, report)
        _create_indexes(out, schema, report)

        src_conns = [
            (s.url, stack.enter_context(get_conn(s.local_path, readonly=True)))
            for s in usable
        ]
        for outcome in report.tables.values():
            if not outcome.created:
                continue
            out_columns = table_columns(out, outcome.name)
            outcome.reassigned_ids = integer_id_key(out_columns)
            column_names = [c["name"] for c in out_columns]
            for url, src in src_conns:
                try:
                    report.errors += _merge_source_into_table(out, src, url, outcome, column_names)
                except sqlite3.Error as e:
                    # Source table unreadable (corrupt page, incompatible shape)
                    logger.error(f"Could not read {outcome.name} from {url}: {e}")
                    report.failures.append(f"read {outcome.name} from {url}: {e}")
            report.rows_merged += outcome.rows_merged
            logger.info(
                f"Merged {outcome.rows_merged} rows into {outcome.name} "
                f"({outcome.errors} failed, ids {'reassigned' if outcome.reassigned_ids else 'kept'})"
            )

        _optimize(out, report)

    report.duration_seconds = time.monotonic() - started
    logger.info(
        f"Merge into {output_path} done: {report.tables_created} tables, "
        f"{report.indexes_created} indexes, {report.rows_merged} rows, {report.errors} row errors"
    )
    return report
