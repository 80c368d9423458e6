"""Errors raised while compiling queries and materializing dataset tables."""

from __future__ import annotations


class InsightQLError(ValueError):
    """Base class for query compilation and materialization failures."""


class InvalidInsightError(InsightQLError):
    pass


class MissingDatasetError(InsightQLError):
    def __init__(self, table_name: str, *, joined: bool = False) -> None:
        self.table_name = table_name
        self.joined = joined
        if joined:
            message = f"Join table {table_name} has no data"
        else:
            message = f"Base DataTable {table_name} has no cached data. Load data first."
        super().__init__(message)


class JoinKeyNotFoundError(InsightQLError):
    def __init__(
        self,
        base_table: str,
        base_field: str,
        joined_table: str,
        joined_field: str,
    ) -> None:
        self.base_table = base_table
        self.base_field = base_field
        self.joined_table = joined_table
        self.joined_field = joined_field
        super().__init__(
            "Join key fields not found: "
            f"{base_table}.{base_field} -> {joined_table}.{joined_field}"
        )


class UnsupportedStorageError(InsightQLError):
    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"{kind.upper()} storage not yet implemented")


class TableLoadError(InsightQLError):
    def __init__(self, table_name: str, reason: str) -> None:
        self.table_name = table_name
        super().__init__(f"Failed to load table {table_name}: {reason}")
