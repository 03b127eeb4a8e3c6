"""Domain models for record-keeper.

This module defines the editable record type and the entity schemas shared by
every store and editor implementation.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class RecordNotFoundError(KeyError):
    """Raised when a record identity is not present in a collection or store."""

    def __init__(self, key: str, where: str = "collection") -> None:
        super().__init__(key)
        self.key = key
        self.where = where

    def __str__(self) -> str:
        return f"Record {self.key!r} not found in {self.where}"


class ColumnType(str, Enum):
    """Storage type of an entity column.

    Attributes:
        TEXT: Unicode string.
        INTEGER: Signed integer.
        REAL: Floating point number.
        DATETIME: Aware UTC datetime, stored as integer epoch seconds.
    """

    TEXT = "text"
    INTEGER = "integer"
    REAL = "real"
    DATETIME = "datetime"

    @property
    def sql_type(self) -> str:
        """SQLite column affinity for this type."""
        if self is ColumnType.DATETIME:
            return "INTEGER"
        return self.value.upper()


def _utc_now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


@dataclass(frozen=True, slots=True)
class Column:
    """A named field of an entity.

    Attributes:
        name: Field name, also the column name.
        type: Storage type.
        default: Value used when a created record omits the field.
        default_factory: Callable producing the default, takes precedence over default.
        nullable: Whether None is an acceptable value.
    """

    name: str
    type: ColumnType = ColumnType.TEXT
    default: Any = None
    default_factory: Callable[[], Any] | None = None
    nullable: bool = True

    def default_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return self.default


@dataclass(frozen=True, slots=True)
class EntitySchema:
    """Description of one entity collection.

    Attributes:
        table: Table (collection) name.
        key_column: Name of the identity column.
        columns: Editable fields, excluding the key column.
        order_by: Field used to order find_all results, None for insertion order.
    """

    table: str
    key_column: str = "uuid"
    columns: tuple[Column, ...] = ()
    order_by: str | None = None

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def column(self, name: str) -> Column:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(f"{self.table} has no column {name!r}")

    def with_defaults(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Return fields completed with column defaults for any missing column."""
        completed = dict(fields)
        for column in self.columns:
            if column.name not in completed:
                completed[column.name] = column.default_value()
        return completed

    def validate_fields(self, fields: dict[str, Any]) -> None:
        """Reject fields that are not columns of this schema.

        Raises:
            ValueError: If an unknown field is present.
        """
        unknown = set(fields) - set(self.column_names)
        if unknown:
            raise ValueError(f"Unknown fields for {self.table}: {sorted(unknown)}")


@dataclass(slots=True)
class Record:
    """An editable record.

    The key is the record identity and never changes across edits. Fields are
    read and written independently.

    Attributes:
        key: Opaque identity (UUID hex or natural key).
        fields: Mapping of field name to value.
    """

    key: str
    fields: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def copy(self) -> Record:
        return Record(key=self.key, fields=dict(self.fields))

    def to_dict(self, key_column: str = "key") -> dict[str, Any]:
        """Flatten to a single dict with the key under `key_column`."""
        return {key_column: self.key, **self.fields}


ITEM_LOG = EntitySchema(
    table="item_log",
    columns=(
        Column("quantity_change", ColumnType.INTEGER, default=0, nullable=False),
        Column("item_definition_id", ColumnType.INTEGER),
        Column("date", ColumnType.DATETIME, default_factory=_utc_now, nullable=False),
    ),
    order_by="date",
)

BOND_LOG = EntitySchema(
    table="bond_log",
    columns=(
        Column("value", ColumnType.INTEGER, default=0, nullable=False),
        Column("pokemon", ColumnType.TEXT),
        Column("date", ColumnType.DATETIME, default_factory=_utc_now, nullable=False),
        Column("source_url", ColumnType.TEXT),
    ),
    order_by="date",
)

BOND_STYLING_CONFIG = EntitySchema(
    table="bond_styling_config",
    columns=(
        Column("pokemon_uuid", ColumnType.TEXT, nullable=False),
        Column("color", ColumnType.TEXT),
        Column("image_url", ColumnType.TEXT),
    ),
)

POKEMON = EntitySchema(
    table="pokemon",
    columns=(
        Column("name", ColumnType.TEXT),
        Column("species", ColumnType.TEXT),
    ),
)

MISC_VALUE = EntitySchema(
    table="misc_value",
    key_column="key",
    columns=(Column("value", ColumnType.TEXT, default=""),),
)

SCHEMAS: dict[str, EntitySchema] = {
    schema.table: schema
    for schema in (ITEM_LOG, BOND_LOG, BOND_STYLING_CONFIG, POKEMON, MISC_VALUE)
}
