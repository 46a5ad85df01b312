"""Domain exceptions for the persistence core.

Driver errors are translated into these only where the caller can act on
the difference (a unique-key clash, a missing row). Anything else is
re-raised unchanged.
"""

from typing import Any, Optional


class InfraDBError(Exception):
    """Base class for every error raised by InfraDB."""


class DatabaseConnectionError(InfraDBError):
    """The adapter could not reach or bootstrap its database."""

    def __init__(self, message: str, dialect: Optional[str] = None):
        self.dialect = dialect
        super().__init__(message)


class TransactionError(InfraDBError):
    """Invalid transaction usage, e.g. nesting or committing without one."""


class ConstraintViolation(InfraDBError):
    """A unique or foreign key constraint rejected a statement."""

    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"

    def __init__(
        self,
        kind: str,
        table: Optional[str] = None,
        constraint: Optional[str] = None,
        message: str = "",
    ):
        self.kind = kind
        self.table = table
        self.constraint = constraint
        super().__init__(message or f"{kind} constraint violated on {table or 'unknown table'}")

    @property
    def is_unique(self) -> bool:
        return self.kind == self.UNIQUE


class DuplicateIdentityError(InfraDBError):
    """A row with the same normalized identity already exists."""

    def __init__(self, existing: Any, message: str = "Duplicate location"):
        self.existing = existing
        super().__init__(message)


class UsageConflictError(InfraDBError):
    """A location is still referenced by labels and no strategy was chosen."""

    def __init__(self, source: int, destination: int):
        self.source = source
        self.destination = destination
        super().__init__(
            f"Location is in use by {source + destination} label(s) "
            f"({source} as source, {destination} as destination)"
        )

    @property
    def total(self) -> int:
        return self.source + self.destination


class MigrationFailure(InfraDBError):
    """A migration's ``up`` step raised. The migration was not recorded."""

    def __init__(self, migration_id: str, name: str = ""):
        self.migration_id = migration_id
        self.name = name
        super().__init__(f"Migration {migration_id} ({name}) failed")


class NotFoundError(InfraDBError):
    """A referenced row does not exist."""

    def __init__(self, entity: str, identifier: Any = None):
        self.entity = entity
        self.identifier = identifier
        if identifier is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {identifier} not found")
