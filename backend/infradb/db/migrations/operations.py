"""Self-guarding DDL helpers for migrations.

Each helper asks the schema introspector first and only issues DDL when
the change is missing, so a migration built from them can be re-run
against any partially-applied schema.
"""

import logging
from typing import Optional, Sequence

from infradb.db.adapter import DatabaseAdapter
from infradb.db.introspection import SchemaIntrospector

logger = logging.getLogger(__name__)

REBUILD_SUFFIX = "__rebuild"


async def ensure_table(adapter: DatabaseAdapter, table: str, body: Sequence[str]) -> bool:
    """Create ``table`` from column/constraint definitions. Returns True if created."""
    if await SchemaIntrospector(adapter).table_exists(table):
        return False
    await adapter.execute(adapter.dialect.create_table(table, body))
    logger.info(f"Created table {table}")
    return True


async def ensure_column(adapter: DatabaseAdapter, table: str, column: str, definition: str) -> bool:
    """Add ``column`` using its full definition (``"name TYPE ..."``)."""
    if await SchemaIntrospector(adapter).column_exists(table, column):
        return False
    await adapter.execute(adapter.dialect.add_column(table, definition))
    logger.info(f"Added column {table}.{column}")
    return True


async def ensure_reference_column(
    adapter: DatabaseAdapter,
    table: str,
    column: str,
    ref_table: str,
    on_delete: str = "SET NULL",
) -> bool:
    """Add a nullable integer column referencing ``ref_table(id)``."""
    introspector = SchemaIntrospector(adapter)
    dialect = adapter.dialect
    statements = dialect.add_reference_column(table, column, ref_table, on_delete)

    if not await introspector.column_exists(table, column):
        for sql in statements:
            await adapter.execute(sql)
        logger.info(f"Added reference column {table}.{column} -> {ref_table}")
        return True

    # Column exists (possibly from an older revision that skipped the FK)
    if len(statements) > 1 and not await introspector.foreign_key_exists(table, column):
        for sql in statements[1:]:
            await adapter.execute(sql)
        logger.info(f"Added missing foreign key on {table}.{column} -> {ref_table}")
        return True
    return False


async def ensure_index(
    adapter: DatabaseAdapter,
    index: str,
    table: str,
    columns: Sequence[str],
    unique: bool = False,
) -> bool:
    if await SchemaIntrospector(adapter).index_exists(index):
        return False
    kind = "UNIQUE INDEX" if unique else "INDEX"
    await adapter.execute(f"CREATE {kind} {index} ON {table}({', '.join(columns)})")
    logger.info(f"Created {kind.lower()} {index} on {table}")
    return True


async def drop_index_if_exists(adapter: DatabaseAdapter, index: str, table: str) -> bool:
    if not await SchemaIntrospector(adapter).index_exists(index):
        return False
    await adapter.execute(adapter.dialect.drop_index(index, table))
    logger.info(f"Dropped index {index}")
    return True


async def drop_column_if_exists(adapter: DatabaseAdapter, table: str, column: str) -> bool:
    introspector = SchemaIntrospector(adapter)
    if not await introspector.table_exists(table):
        return False
    if not await introspector.column_exists(table, column):
        return False
    await adapter.execute(adapter.dialect.drop_column(table, column))
    logger.info(f"Dropped column {table}.{column}")
    return True


async def relax_not_null(
    adapter: DatabaseAdapter,
    table: str,
    column: str,
    column_type: str,
) -> Optional[bool]:
    """Make ``column`` nullable in place.

    Returns True when altered, False when already nullable or absent, and
    None when the engine cannot alter it in place (the caller must rebuild
    the table).
    """
    info = await SchemaIntrospector(adapter).get_column(table, column)
    if info is None or info.nullable:
        return False
    sql = adapter.dialect.modify_column_nullable(table, column, column_type)
    if sql is None:
        return None
    await adapter.execute(sql)
    logger.info(f"Relaxed NOT NULL on {table}.{column}")
    return True


async def rebuild_table(
    adapter: DatabaseAdapter,
    table: str,
    body: Sequence[str],
    indexes: Sequence[str] = (),
) -> None:
    """Recreate ``table`` with a new definition, keeping its rows (SQLite only).

    Follows SQLite's documented table-rebuild procedure: foreign key
    enforcement is switched off, rows are copied into ``{table}__rebuild``
    for every column both shapes share, the old table is dropped and the
    copy renamed into place. ``indexes`` are CREATE INDEX statements to
    re-run afterwards. A rebuild interrupted after the drop is completed by
    the next call; one interrupted before it is redone from scratch.
    """
    if adapter.dialect.name != "sqlite":
        raise NotImplementedError("Table rebuilds are only needed on SQLite")

    introspector = SchemaIntrospector(adapter)
    temp = f"{table}{REBUILD_SUFFIX}"
    has_table = await introspector.table_exists(table)
    has_temp = await introspector.table_exists(temp)

    await adapter.execute("PRAGMA foreign_keys=OFF")
    try:
        if has_temp and not has_table:
            logger.warning(f"Completing interrupted rebuild of {table}")
            await adapter.execute(adapter.dialect.rename_table(temp, table))
        else:
            if has_temp:
                await adapter.execute(f"DROP TABLE {temp}")
            await adapter.execute(adapter.dialect.create_table(temp, body))

            old_columns = {c.name for c in await introspector.list_columns(table) if not c.generated}
            new_columns = [c.name for c in await introspector.list_columns(temp) if not c.generated]
            shared = ", ".join(f"`{name}`" for name in new_columns if name in old_columns)

            async with adapter.transaction():
                await adapter.execute(f"INSERT INTO {temp} ({shared}) SELECT {shared} FROM {table}")
                await adapter.execute(f"DROP TABLE {table}")
                await adapter.execute(adapter.dialect.rename_table(temp, table))

        for sql in indexes:
            await adapter.execute(sql)
    finally:
        await adapter.execute("PRAGMA foreign_keys=ON")

    logger.info(f"Rebuilt table {table}")
