"""SQL dialect translation for the two supported engines.

Every piece of engine-specific SQL text lives here: DDL fragments, catalog
probes, the atomic insert-if-absent used by the counters and the
classification of driver errors. Callers pick text from
``adapter.dialect`` and never branch on the engine name themselves.

Both engines accept backtick-quoted identifiers, so ``row`` (reserved in
MySQL 8) is always written as ```row```.

Generated identity key columns compare case-sensitively on both engines:
MySQL gives them ``utf8mb4_bin`` instead of the table's case-insensitive
collation. ``floor`` keeps the table collation, so on MySQL floors that
differ only in case share an identity.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from infradb.core.exceptions import ConstraintViolation

NONE_SENTINEL = "__NONE__"
UNLABELED_SENTINEL = "__UNLABELED__"

# MySQL server error numbers
ER_BAD_DB_ERROR = 1049
ER_DUP_ENTRY = 1062
ER_LOCK_WAIT_TIMEOUT = 1205
ER_LOCK_DEADLOCK = 1213
ER_ROW_IS_REFERENCED_2 = 1451
ER_NO_REFERENCED_ROW_2 = 1452


def quote(identifier: str) -> str:
    return f"`{identifier}`"


def normalized_key_expression(column: str, sentinel: str = NONE_SENTINEL) -> str:
    """Expression mapping NULL and blank values onto a sentinel."""
    return f"IFNULL(NULLIF(TRIM({quote(column)}), ''), '{sentinel}')"


def _driver_error(exc: BaseException) -> BaseException:
    # SQLAlchemy wraps DBAPI errors; the driver's error is on .orig
    return getattr(exc, "orig", None) or exc


def _mysql_errno(exc: BaseException) -> Optional[int]:
    orig = _driver_error(exc)
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


class Dialect(ABC):
    """Base class. Subclasses provide the engine-specific text."""

    name = ""

    primary_key = ""
    integer = "INTEGER"
    text = "TEXT"
    created_at = ""
    updated_at = ""
    table_options = ""

    @abstractmethod
    def choose(self, *, sqlite: str, mysql: str) -> str:
        ...

    @abstractmethod
    def varchar(self, length: int) -> str:
        ...

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def create_table(self, table: str, body: Sequence[str]) -> str:
        columns = ",\n  ".join(body)
        suffix = f" {self.table_options}" if self.table_options else ""
        return f"CREATE TABLE IF NOT EXISTS {table} (\n  {columns}\n){suffix}"

    @abstractmethod
    def generated_key_column(
        self,
        name: str,
        source: str,
        sentinel: str = NONE_SENTINEL,
        length: int = 64,
        on_existing_table: bool = False,
    ) -> str:
        ...

    def add_column(self, table: str, definition: str) -> str:
        return f"ALTER TABLE {table} ADD COLUMN {definition}"

    def drop_column(self, table: str, column: str) -> str:
        return f"ALTER TABLE {table} DROP COLUMN {quote(column)}"

    @abstractmethod
    def drop_index(self, index: str, table: str) -> str:
        ...

    @abstractmethod
    def add_reference_column(
        self,
        table: str,
        column: str,
        ref_table: str,
        on_delete: str = "SET NULL",
    ) -> List[str]:
        ...

    @abstractmethod
    def modify_column_nullable(self, table: str, column: str, column_type: str) -> Optional[str]:
        """Statement relaxing NOT NULL in place, or None when a rebuild is required."""
        ...

    def rename_table(self, old: str, new: str) -> str:
        return f"ALTER TABLE {old} RENAME TO {new}"

    # ------------------------------------------------------------------
    # DML helpers
    # ------------------------------------------------------------------

    @abstractmethod
    def insert_if_absent(self, table: str, columns: Sequence[str], key: str) -> str:
        ...

    @abstractmethod
    def ref_number_from_string(self, column: str = "ref_string") -> str:
        """Numeric suffix of a ``CODE-0001`` style reference, or NULL."""
        ...

    @abstractmethod
    def cast_integer(self, expression: str) -> str:
        ...

    # ------------------------------------------------------------------
    # Catalog probes
    # ------------------------------------------------------------------

    @abstractmethod
    def list_tables_sql(self) -> str:
        ...

    @abstractmethod
    def table_exists_sql(self) -> str:
        ...

    @abstractmethod
    def list_columns_sql(self) -> str:
        ...

    @abstractmethod
    def list_indexes_sql(self) -> str:
        ...

    @abstractmethod
    def index_exists_sql(self) -> str:
        ...

    @abstractmethod
    def foreign_key_exists_sql(self) -> str:
        ...

    # ------------------------------------------------------------------
    # Error classification
    # ------------------------------------------------------------------

    @abstractmethod
    def classify_error(self, exc: BaseException) -> Optional[ConstraintViolation]:
        ...

    def is_unique_violation(self, exc: BaseException, table: Optional[str] = None) -> bool:
        violation = self.classify_error(exc)
        if violation is None or not violation.is_unique:
            return False
        if table is None:
            return True
        if violation.table:
            return violation.table == table
        return bool(violation.constraint and table in violation.constraint)

    def is_unknown_database(self, exc: BaseException) -> bool:
        return False

    def is_retryable(self, exc: BaseException) -> bool:
        return False


class SQLiteDialect(Dialect):
    name = "sqlite"

    primary_key = "id INTEGER PRIMARY KEY AUTOINCREMENT"
    created_at = "created_at DATETIME DEFAULT CURRENT_TIMESTAMP"
    updated_at = "updated_at DATETIME DEFAULT CURRENT_TIMESTAMP"
    table_options = ""

    _unique_re = re.compile(r"UNIQUE constraint failed: (?:index '(?P<index>[^']+)'|(?P<columns>.+))")

    def choose(self, *, sqlite: str, mysql: str) -> str:
        return sqlite

    def varchar(self, length: int) -> str:
        return "TEXT"

    def generated_key_column(
        self,
        name: str,
        source: str,
        sentinel: str = NONE_SENTINEL,
        length: int = 64,
        on_existing_table: bool = False,
    ) -> str:
        # ALTER TABLE ... ADD COLUMN only accepts VIRTUAL generated columns
        storage = "VIRTUAL" if on_existing_table else "STORED"
        return f"{name} TEXT GENERATED ALWAYS AS ({normalized_key_expression(source, sentinel)}) {storage}"

    def drop_index(self, index: str, table: str) -> str:
        return f"DROP INDEX {index}"

    def add_reference_column(
        self,
        table: str,
        column: str,
        ref_table: str,
        on_delete: str = "SET NULL",
    ) -> List[str]:
        return [
            f"ALTER TABLE {table} ADD COLUMN {column} INTEGER "
            f"REFERENCES {ref_table}(id) ON DELETE {on_delete}"
        ]

    def modify_column_nullable(self, table: str, column: str, column_type: str) -> Optional[str]:
        return None

    def insert_if_absent(self, table: str, columns: Sequence[str], key: str) -> str:
        names = ", ".join(columns)
        binds = ", ".join(f":{c}" for c in columns)
        return f"INSERT INTO {table} ({names}) VALUES ({binds}) ON CONFLICT({key}) DO NOTHING"

    def ref_number_from_string(self, column: str = "ref_string") -> str:
        suffix = f"SUBSTR({column}, INSTR({column}, '-') + 1)"
        return (
            f"CASE WHEN INSTR({column}, '-') > 0 "
            f"AND {suffix} <> '' AND {suffix} NOT GLOB '*[^0-9]*' "
            f"THEN CAST({suffix} AS INTEGER) END"
        )

    def cast_integer(self, expression: str) -> str:
        return (
            f"CASE WHEN TRIM({expression}) <> '' AND TRIM({expression}) NOT GLOB '*[^0-9]*' "
            f"THEN CAST(TRIM({expression}) AS INTEGER) END"
        )

    def list_tables_sql(self) -> str:
        return (
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )

    def table_exists_sql(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table' AND name = :table"

    def list_columns_sql(self) -> str:
        # table_xinfo also reports generated columns (hidden 2 = virtual, 3 = stored)
        return (
            "SELECT name, type, \"notnull\" AS not_null, dflt_value AS default_value, "
            "hidden AS generated FROM pragma_table_xinfo(:table) ORDER BY cid"
        )

    def list_indexes_sql(self) -> str:
        return (
            "SELECT name, tbl_name AS table_name FROM sqlite_master "
            "WHERE type = 'index' AND name NOT LIKE 'sqlite_%' ORDER BY tbl_name, name"
        )

    def index_exists_sql(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'index' AND name = :index"

    def foreign_key_exists_sql(self) -> str:
        return 'SELECT "table" AS ref_table FROM pragma_foreign_key_list(:table) WHERE "from" = :column'

    def classify_error(self, exc: BaseException) -> Optional[ConstraintViolation]:
        message = str(_driver_error(exc))
        match = self._unique_re.search(message)
        if match:
            if match.group("index"):
                return ConstraintViolation(
                    ConstraintViolation.UNIQUE,
                    constraint=match.group("index"),
                    message=message,
                )
            columns = [c.strip() for c in match.group("columns").split(",")]
            table = columns[0].split(".", 1)[0] if "." in columns[0] else None
            return ConstraintViolation(
                ConstraintViolation.UNIQUE,
                table=table,
                constraint=", ".join(columns),
                message=message,
            )
        if "FOREIGN KEY constraint failed" in message:
            return ConstraintViolation(ConstraintViolation.FOREIGN_KEY, message=message)
        return None

    def is_retryable(self, exc: BaseException) -> bool:
        message = str(_driver_error(exc)).lower()
        return "database is locked" in message or "database table is locked" in message


class MySQLDialect(Dialect):
    name = "mysql"

    primary_key = "id INT AUTO_INCREMENT PRIMARY KEY"
    integer = "INT"
    created_at = "created_at TIMESTAMP(3) DEFAULT CURRENT_TIMESTAMP(3)"
    updated_at = "updated_at TIMESTAMP(3) DEFAULT CURRENT_TIMESTAMP(3) ON UPDATE CURRENT_TIMESTAMP(3)"
    table_options = "ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci"

    _dup_key_re = re.compile(r"for key '(?P<key>[^']+)'")

    def choose(self, *, sqlite: str, mysql: str) -> str:
        return mysql

    def varchar(self, length: int) -> str:
        return f"VARCHAR({length})"

    def generated_key_column(
        self,
        name: str,
        source: str,
        sentinel: str = NONE_SENTINEL,
        length: int = 64,
        on_existing_table: bool = False,
    ) -> str:
        return (
            f"{name} VARCHAR({length}) COLLATE utf8mb4_bin GENERATED ALWAYS AS "
            f"({normalized_key_expression(source, sentinel)}) STORED"
        )

    def drop_index(self, index: str, table: str) -> str:
        return f"DROP INDEX {index} ON {table}"

    def add_reference_column(
        self,
        table: str,
        column: str,
        ref_table: str,
        on_delete: str = "SET NULL",
    ) -> List[str]:
        return [
            f"ALTER TABLE {table} ADD COLUMN {column} INT NULL",
            f"ALTER TABLE {table} ADD CONSTRAINT fk_{table}_{column} "
            f"FOREIGN KEY ({column}) REFERENCES {ref_table}(id) ON DELETE {on_delete}",
        ]

    def modify_column_nullable(self, table: str, column: str, column_type: str) -> Optional[str]:
        return f"ALTER TABLE {table} MODIFY {quote(column)} {column_type} NULL"

    def insert_if_absent(self, table: str, columns: Sequence[str], key: str) -> str:
        names = ", ".join(columns)
        binds = ", ".join(f":{c}" for c in columns)
        return f"INSERT INTO {table} ({names}) VALUES ({binds}) ON DUPLICATE KEY UPDATE {key} = {key}"

    def ref_number_from_string(self, column: str = "ref_string") -> str:
        suffix = f"SUBSTRING_INDEX({column}, '-', -1)"
        return (
            f"CASE WHEN LOCATE('-', {column}) > 0 AND {suffix} REGEXP '^[0-9]+$' "
            f"THEN CAST({suffix} AS UNSIGNED) END"
        )

    def cast_integer(self, expression: str) -> str:
        return (
            f"CASE WHEN TRIM({expression}) REGEXP '^[0-9]+$' "
            f"THEN CAST(TRIM({expression}) AS UNSIGNED) END"
        )

    def list_tables_sql(self) -> str:
        return (
            "SELECT TABLE_NAME AS name FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME"
        )

    def table_exists_sql(self) -> str:
        return (
            "SELECT TABLE_NAME AS name FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table"
        )

    def list_columns_sql(self) -> str:
        return (
            "SELECT COLUMN_NAME AS name, COLUMN_TYPE AS type, "
            "CASE WHEN IS_NULLABLE = 'NO' THEN 1 ELSE 0 END AS not_null, "
            "COLUMN_DEFAULT AS default_value, "
            "CASE WHEN EXTRA LIKE '%GENERATED%' THEN 1 ELSE 0 END AS generated "
            "FROM INFORMATION_SCHEMA.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table ORDER BY ORDINAL_POSITION"
        )

    def list_indexes_sql(self) -> str:
        return (
            "SELECT DISTINCT INDEX_NAME AS name, TABLE_NAME AS table_name "
            "FROM INFORMATION_SCHEMA.STATISTICS "
            "WHERE TABLE_SCHEMA = DATABASE() AND INDEX_NAME <> 'PRIMARY' "
            "ORDER BY TABLE_NAME, INDEX_NAME"
        )

    def index_exists_sql(self) -> str:
        return (
            "SELECT INDEX_NAME AS name FROM INFORMATION_SCHEMA.STATISTICS "
            "WHERE TABLE_SCHEMA = DATABASE() AND INDEX_NAME = :index LIMIT 1"
        )

    def foreign_key_exists_sql(self) -> str:
        return (
            "SELECT REFERENCED_TABLE_NAME AS ref_table FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table AND COLUMN_NAME = :column "
            "AND REFERENCED_TABLE_NAME IS NOT NULL"
        )

    def classify_error(self, exc: BaseException) -> Optional[ConstraintViolation]:
        errno = _mysql_errno(exc)
        message = str(_driver_error(exc))
        if errno == ER_DUP_ENTRY:
            match = self._dup_key_re.search(message)
            key = match.group("key") if match else None
            table = None
            if key and "." in key:
                # MySQL 8 reports the key as table.index
                table, key = key.split(".", 1)
            return ConstraintViolation(
                ConstraintViolation.UNIQUE,
                table=table,
                constraint=key,
                message=message,
            )
        if errno in (ER_ROW_IS_REFERENCED_2, ER_NO_REFERENCED_ROW_2):
            return ConstraintViolation(ConstraintViolation.FOREIGN_KEY, message=message)
        return None

    def is_unknown_database(self, exc: BaseException) -> bool:
        return _mysql_errno(exc) == ER_BAD_DB_ERROR

    def is_retryable(self, exc: BaseException) -> bool:
        return _mysql_errno(exc) in (ER_LOCK_DEADLOCK, ER_LOCK_WAIT_TIMEOUT)


_DIALECTS = {
    "sqlite": SQLiteDialect,
    "mysql": MySQLDialect,
}


def get_dialect(name: str) -> Dialect:
    try:
        return _DIALECTS[name]()
    except KeyError:
        raise ValueError(f"Unsupported database type: {name}") from None
