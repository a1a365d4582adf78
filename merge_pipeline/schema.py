import logging
from dataclasses import dataclass, field
from typing import List

from .db import get_conn, is_internal

logger = logging.getLogger(__name__)


@dataclass
class SchemaObject:
    name: str
    sql: str


@dataclass
class Schema:
    tables: List[SchemaObject] = field(default_factory=list)
    indexes: List[SchemaObject] = field(default_factory=list)

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]


def _objects(conn, kind: str) -> List[SchemaObject]:
    # Auto-indexes for UNIQUE/PRIMARY KEY constraints have no SQL and are
    # recreated by their table's CREATE statement.
    rows = conn.execute(
        "SELECT name, sql FROM sqlite_master WHERE type=? AND sql IS NOT NULL ORDER BY name",
        (kind,),
    ).fetchall()
    return [SchemaObject(name=name, sql=sql) for name, sql in rows if not is_internal(name)]


def extract_schema(reference_db_path: str) -> Schema:
    """
    Read table and index definitions from the reference database.
    Both lists are sorted by name so repeated merges build identical schemas.
    """
    with get_conn(reference_db_path, readonly=True) as conn:
        schema = Schema(tables=_objects(conn, "table"), indexes=_objects(conn, "index"))
    logger.info(
        f"Extracted schema from {reference_db_path}: "
        f"{len(schema.tables)} tables, {len(schema.indexes)} indexes"
    )
    return schema
