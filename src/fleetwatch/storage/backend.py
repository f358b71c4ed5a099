"""
Storage backend interface for the event log.

The event store only appends rows and reads them back; there is no update
or delete path, and the interface reflects that.
"""

from abc import ABC, abstractmethod
from typing import Any

Row = dict[str, Any]


class StorageBackend(ABC):
    """
    What EventStore needs from a database.

    Every write commits on its own. A failed write leaves nothing behind and
    re-raises the driver's exception.
    """

    @abstractmethod
    def execute_script(self, script: str) -> None:
        """Run a batch of DDL statements (schema and index creation)."""
        pass

    @abstractmethod
    def execute(self, query: str, params: tuple = ()) -> None:
        """Run one non-INSERT write, e.g. ALTER TABLE during migration."""
        pass

    @abstractmethod
    def insert(self, query: str, params: tuple = ()) -> int:
        """
        Append one row.

        Returns:
            The row id assigned by the database
        """
        pass

    @abstractmethod
    def fetch_one(self, query: str, params: tuple = ()) -> Row | None:
        pass

    @abstractmethod
    def fetch_all(self, query: str, params: tuple = ()) -> list[Row]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def table_columns(self, table: str) -> set[str]:
        """Names of the columns a table currently has."""
        return {row["name"] for row in self.fetch_all(f"PRAGMA table_info({table})")}

    def __enter__(self) -> "StorageBackend":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
