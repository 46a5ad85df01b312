"""Read-only schema probes used by migrations to decide whether a step applies."""

from dataclasses import dataclass
from typing import List, Optional

from infradb.db.adapter import DatabaseAdapter


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    nullable: bool
    default: Optional[str]
    generated: bool


@dataclass(frozen=True)
class IndexInfo:
    name: str
    table: str


class SchemaIntrospector:
    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter
        self.dialect = adapter.dialect

    async def table_exists(self, table: str) -> bool:
        rows = await self.adapter.query(self.dialect.table_exists_sql(), {"table": table})
        return bool(rows)

    async def column_exists(self, table: str, column: str) -> bool:
        return await self.get_column(table, column) is not None

    async def index_exists(self, index: str) -> bool:
        rows = await self.adapter.query(self.dialect.index_exists_sql(), {"index": index})
        return bool(rows)

    async def foreign_key_exists(self, table: str, column: str) -> bool:
        rows = await self.adapter.query(
            self.dialect.foreign_key_exists_sql(), {"table": table, "column": column}
        )
        return bool(rows)

    async def get_column(self, table: str, column: str) -> Optional[ColumnInfo]:
        for info in await self.list_columns(table):
            if info.name.lower() == column.lower():
                return info
        return None

    async def list_tables(self) -> List[str]:
        rows = await self.adapter.query(self.dialect.list_tables_sql())
        return [row["name"] for row in rows]

    async def list_columns(self, table: str) -> List[ColumnInfo]:
        rows = await self.adapter.query(self.dialect.list_columns_sql(), {"table": table})
        return [
            ColumnInfo(
                name=row["name"],
                type=str(row["type"] or ""),
                nullable=not row["not_null"],
                default=row["default_value"],
                generated=bool(row["generated"]),
            )
            for row in rows
        ]

    async def list_indexes(self, table: Optional[str] = None) -> List[IndexInfo]:
        rows = await self.adapter.query(self.dialect.list_indexes_sql())
        indexes = [IndexInfo(name=row["name"], table=row["table_name"]) for row in rows]
        if table is not None:
            indexes = [i for i in indexes if i.table == table]
        return indexes
