"""Tests for dialect SQL selection and driver error classification."""

import sqlite3

import pymysql
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from infradb.core.exceptions import ConstraintViolation
from infradb.db.dialects import Dialect, MySQLDialect, SQLiteDialect, get_dialect


def wrap(orig: Exception, cls=IntegrityError):
    """Wrap a driver error the way SQLAlchemy does."""
    return cls("INSERT ...", {}, orig)


class TestDialectSelection:
    def test_get_dialect(self):
        assert isinstance(get_dialect("sqlite"), SQLiteDialect)
        assert isinstance(get_dialect("mysql"), MySQLDialect)

    def test_unknown_dialect(self):
        with pytest.raises(ValueError, match="Unsupported database type"):
            get_dialect("postgres")

    def test_choose(self):
        assert SQLiteDialect().choose(sqlite="a", mysql="b") == "a"
        assert MySQLDialect().choose(sqlite="a", mysql="b") == "b"

    def test_base_dialect_is_abstract(self):
        with pytest.raises(TypeError):
            Dialect()

    def test_incomplete_dialect_cannot_be_instantiated(self):
        class PartialDialect(Dialect):
            name = "partial"

            def choose(self, *, sqlite: str, mysql: str) -> str:
                return sqlite

        with pytest.raises(TypeError, match="abstract"):
            PartialDialect()


class TestDDLFragments:
    def test_primary_keys(self):
        assert "AUTOINCREMENT" in SQLiteDialect().primary_key
        assert "AUTO_INCREMENT" in MySQLDialect().primary_key

    def test_mysql_table_options(self):
        sql = MySQLDialect().create_table("t", ["id INT"])
        assert sql.startswith("CREATE TABLE IF NOT EXISTS t")
        assert sql.endswith("ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci")

    def test_sqlite_generated_column_storage(self):
        d = SQLiteDialect()
        assert d.generated_key_column("suite_key", "suite").endswith("STORED")
        assert d.generated_key_column("suite_key", "suite", on_existing_table=True).endswith("VIRTUAL")

    def test_generated_column_normalizes_blank(self):
        sql = MySQLDialect().generated_key_column("row_key", "row")
        assert "IFNULL(NULLIF(TRIM(`row`), ''), '__NONE__')" in sql
        assert "VARCHAR(64)" in sql
        assert sql.endswith("STORED")

    def test_mysql_key_columns_are_case_sensitive(self):
        sql = MySQLDialect().generated_key_column("suite_key", "suite")
        assert sql.startswith("suite_key VARCHAR(64) COLLATE utf8mb4_bin GENERATED ALWAYS AS")

    def test_drop_index(self):
        assert SQLiteDialect().drop_index("idx_a", "t") == "DROP INDEX idx_a"
        assert MySQLDialect().drop_index("idx_a", "t") == "DROP INDEX idx_a ON t"

    def test_insert_if_absent(self):
        sqlite_sql = SQLiteDialect().insert_if_absent("site_counters", ["site_id", "next_ref"], "site_id")
        mysql_sql = MySQLDialect().insert_if_absent("site_counters", ["site_id", "next_ref"], "site_id")
        assert sqlite_sql.endswith("ON CONFLICT(site_id) DO NOTHING")
        assert mysql_sql.endswith("ON DUPLICATE KEY UPDATE site_id = site_id")
        assert "VALUES (:site_id, :next_ref)" in mysql_sql

    def test_reference_columns(self):
        sqlite_sql = SQLiteDialect().add_reference_column("labels", "cable_type_id", "cable_types")
        mysql_sql = MySQLDialect().add_reference_column("labels", "cable_type_id", "cable_types")
        assert len(sqlite_sql) == 1
        assert "REFERENCES cable_types(id) ON DELETE SET NULL" in sqlite_sql[0]
        assert len(mysql_sql) == 2
        assert "CONSTRAINT fk_labels_cable_type_id" in mysql_sql[1]

    def test_modify_nullable(self):
        assert SQLiteDialect().modify_column_nullable("t", "c", "TEXT") is None
        assert MySQLDialect().modify_column_nullable("t", "row", "VARCHAR(64)") == (
            "ALTER TABLE t MODIFY `row` VARCHAR(64) NULL"
        )


class TestSQLiteErrorClassification:
    def test_unique_on_columns(self):
        error = wrap(sqlite3.IntegrityError(
            "UNIQUE constraint failed: site_locations.site_id, site_locations.template_type"
        ))
        violation = SQLiteDialect().classify_error(error)
        assert violation.kind == ConstraintViolation.UNIQUE
        assert violation.table == "site_locations"
        assert SQLiteDialect().is_unique_violation(error, "site_locations")
        assert not SQLiteDialect().is_unique_violation(error, "sites")

    def test_unique_on_named_index(self):
        error = wrap(sqlite3.IntegrityError("UNIQUE constraint failed: index 'idx_sites_code_unique'"))
        violation = SQLiteDialect().classify_error(error)
        assert violation.constraint == "idx_sites_code_unique"
        assert SQLiteDialect().is_unique_violation(error, "sites")

    def test_foreign_key(self):
        error = wrap(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))
        assert SQLiteDialect().classify_error(error).kind == ConstraintViolation.FOREIGN_KEY

    def test_unrelated_error(self):
        error = wrap(sqlite3.OperationalError("no such table: nope"), OperationalError)
        assert SQLiteDialect().classify_error(error) is None

    def test_locked_is_retryable(self):
        error = wrap(sqlite3.OperationalError("database is locked"), OperationalError)
        assert SQLiteDialect().is_retryable(error)


class TestMySQLErrorClassification:
    def test_duplicate_entry_mysql8(self):
        error = wrap(pymysql.err.IntegrityError(
            1062, "Duplicate entry '1-DATACENTRE-1' for key 'site_locations.idx_site_locations_unique_identity'"
        ))
        violation = MySQLDialect().classify_error(error)
        assert violation.is_unique
        assert violation.table == "site_locations"
        assert violation.constraint == "idx_site_locations_unique_identity"

    def test_duplicate_entry_without_table_prefix(self):
        error = wrap(pymysql.err.IntegrityError(
            1062, "Duplicate entry 'HQ' for key 'idx_sites_code_unique'"
        ))
        violation = MySQLDialect().classify_error(error)
        assert violation.table is None
        assert MySQLDialect().is_unique_violation(error, "sites")
        assert not MySQLDialect().is_unique_violation(error, "labels")

    def test_foreign_key_errors(self):
        for errno in (1451, 1452):
            error = wrap(pymysql.err.IntegrityError(errno, "Cannot add or update a child row"))
            assert MySQLDialect().classify_error(error).kind == ConstraintViolation.FOREIGN_KEY

    def test_unknown_database(self):
        error = wrap(pymysql.err.OperationalError(1049, "Unknown database 'infradb'"), OperationalError)
        assert MySQLDialect().is_unknown_database(error)
        assert not MySQLDialect().is_retryable(error)

    def test_deadlock_and_lock_wait_are_retryable(self):
        for errno in (1213, 1205):
            error = wrap(pymysql.err.OperationalError(errno, "try restarting transaction"), OperationalError)
            assert MySQLDialect().is_retryable(error)
