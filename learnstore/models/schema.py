"""Declarative table schemas, immutable once created."""

from enum import Enum
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ColumnType(str, Enum):
    """SQLite storage classes accepted for columns."""
    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"
    BLOB = "BLOB"


class ColumnSchema(BaseModel):
    """One column definition."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    type: Optional[ColumnType] = None
    primary_key: bool = False         # Single-column keys only, see TableSchema.primary_keys
    auto_increment: bool = False      # Only honoured with primary_key
    not_null: bool = False
    unique: bool = False
    check: Optional[str] = None
    default: Optional[str] = None     # Raw SQL literal, e.g. "0" or "'draft'"


class ForeignKeySchema(BaseModel):
    """Foreign key from local columns to another table."""
    model_config = ConfigDict(frozen=True)

    columns: Tuple[str, ...]
    table: str
    foreign_columns: Tuple[str, ...] = ()
    actions: Optional[str] = None     # e.g. "ON DELETE CASCADE"


class TableSchema(BaseModel):
    """A table: ordered columns plus table-level constraints."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    columns: Tuple[ColumnSchema, ...]
    primary_keys: Tuple[str, ...] = ()                 # Compound primary key
    unique_keys: Tuple[Tuple[str, ...], ...] = ()      # e.g. (("section", "title"),)
    foreign_keys: Tuple[ForeignKeySchema, ...] = ()
    table_check: Optional[str] = None

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v):
        names = [column.name for column in v]
        if len(names) != len(set(names)):
            raise ValueError("Column names must be unique")
        return v

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def primary_key_columns(self) -> List[str]:
        """Primary key columns, compound or single-column."""
        if self.primary_keys:
            return list(self.primary_keys)
        return [column.name for column in self.columns if column.primary_key]
