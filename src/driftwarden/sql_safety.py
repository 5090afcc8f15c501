"""
SQL safety utilities for preventing SQL injection.

Provides identifier validation and dialect-aware quoting for the statements the
sync engine builds itself (batch lookups, ALTER TABLE, table-wide deletes).
Values are always passed as bound parameters, never interpolated.

Identifiers come from the databases' own catalogs, so any name the server
accepts (hyphens, spaces, non-ASCII) must survive quoting. Safety comes from
doubling the dialect's quote character inside the name.
"""

from enum import Enum

from .exceptions import ValidationError


class Dialect(str, Enum):
    """
    SQL dialect of the local database.

    Inherits from str so configuration values compare directly.
    """

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"

    @classmethod
    def parse(cls, value: "str | Dialect") -> "Dialect":
        try:
            return cls(value.lower() if isinstance(value, str) else value)
        except ValueError:
            raise ValidationError(
                f"Unsupported SQL dialect: {value!r}",
                details={"supported": ", ".join(d.value for d in cls)},
            )

    @property
    def quote_char(self) -> str:
        return '"' if self is Dialect.POSTGRESQL else "`"

    @property
    def placeholder(self) -> str:
        """Parameter placeholder (both pymysql and psycopg use pyformat)."""
        return "%s"

    def quote(self, identifier: str) -> str:
        return quote_identifier(identifier, self)


def validate_identifier(identifier: str) -> None:
    """
    Validate a SQL identifier (table name, column name, index name).

    Neither MySQL nor PostgreSQL can represent an empty name or one containing
    a NUL character, even when quoted; everything else is quotable.

    Raises:
        ValidationError: If the identifier is empty or contains NUL
    """
    if not identifier:
        raise ValidationError("SQL identifier cannot be empty")

    if "\x00" in identifier:
        raise ValidationError(
            f"Invalid SQL identifier: {identifier!r} contains a NUL character"
        )


def quote_identifier(identifier: str, dialect: "Dialect | str" = Dialect.MYSQL) -> str:
    """
    Safely quote a SQL identifier after validation.

    The whole name is quoted as one identifier; embedded quote characters are
    doubled (`` ` `` -> ``` `` ``` for MySQL, ``"`` -> ``""`` for PostgreSQL).

    Args:
        identifier: The identifier to quote
        dialect: Target dialect

    Returns:
        Quoted identifier safe for use in SQL

    Raises:
        ValidationError: If the identifier is empty or contains NUL
    """
    validate_identifier(identifier)
    quote = Dialect.parse(dialect).quote_char
    return f"{quote}{identifier.replace(quote, quote * 2)}{quote}"
