"""
CDC Change Events

A change event is a (table identity, row) pair. The row carries the changed
column values plus reserved metadata columns written by the CDC source:

    _metadata_deleted       - row is a delete ("true"/"false", bool or 0/1)
    _metadata_table         - origin table name
    _metadata_schema        - origin schema name
    _metadata_stream        - stream name or stream resource path
    _metadata_source_type   - mysql / postgresql / oracle / cockroachdb
    _metadata_primary_keys  - list (or JSON list) of primary key columns
"""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

METADATA_DELETED = "_metadata_deleted"
METADATA_TABLE = "_metadata_table"
METADATA_SCHEMA = "_metadata_schema"
METADATA_STREAM = "_metadata_stream"
METADATA_SOURCE_TYPE = "_metadata_source_type"
METADATA_PRIMARY_KEYS = "_metadata_primary_keys"

_TRUE_VALUES = {"true", "t", "1", "yes", "y", "d", "delete"}


@dataclass(frozen=True)
class TableId:
    """Three part table reference (project.dataset.table, i.e. catalog.schema.table in Unity Catalog)."""
    project: str
    dataset: str
    table: str

    @property
    def fqn(self) -> str:
        return f"{self.project}.{self.dataset}.{self.table}"

    def __str__(self) -> str:
        return self.fqn


@dataclass(frozen=True)
class ChangeEvent:
    """
    One row-level change, immutable once created.

    Attributes:
        table_id: Table the event was written for
        row: Column name -> value, including the _metadata_* columns
    """
    table_id: TableId
    row: Mapping[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def of(cls, table_id: TableId, row: Mapping[str, Any]) -> "ChangeEvent":
        return cls(table_id=table_id, row=MappingProxyType(dict(row)))

    @classmethod
    def from_row(cls, row: Mapping[str, Any], project: str) -> "ChangeEvent":
        """
        Build an event whose table identity comes from the row's own metadata.

        Args:
            row: Column name -> value (a dict, or a Spark Row converted with asDict())
            project: Project / catalog used for the table identity

        Returns:
            ChangeEvent with table_id = project.<_metadata_schema>.<_metadata_table>
        """
        values = dict(row)
        table_id = TableId(
            project=project,
            dataset=str(values.get(METADATA_SCHEMA) or ""),
            table=str(values.get(METADATA_TABLE) or ""),
        )
        return cls.of(table_id, values)

    def get(self, column: str, default: Any = None) -> Any:
        return self.row.get(column, default)

    def _string_value(self, column: str) -> Optional[str]:
        value = self.row.get(column)
        if value is None:
            return None
        return str(value)

    @property
    def stream_name(self) -> Optional[str]:
        """Stream name; for a resource path (projects/p/locations/l/streams/s) only the last segment."""
        value = self._string_value(METADATA_STREAM)
        if value is None:
            return None
        return value.rstrip("/").split("/")[-1]

    @property
    def schema_name(self) -> Optional[str]:
        return self._string_value(METADATA_SCHEMA)

    @property
    def table_name(self) -> Optional[str]:
        return self._string_value(METADATA_TABLE)

    @property
    def source_type(self) -> Optional[str]:
        value = self._string_value(METADATA_SOURCE_TYPE)
        return value.lower() if value else None

    @property
    def is_deleted(self) -> bool:
        value = self.row.get(METADATA_DELETED)
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        return str(value).strip().lower() in _TRUE_VALUES

    @property
    def primary_keys(self) -> List[str]:
        """Primary key columns carried in the row metadata (empty when absent)."""
        value = self.row.get(METADATA_PRIMARY_KEYS)
        if value is None or value == "":
            return []
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                # comma separated fallback: "id,region"
                return [v.strip() for v in value.split(",") if v.strip()]
            if isinstance(value, str):
                return [value] if value else []
        if not isinstance(value, (list, tuple)):
            # null, objects and numbers carry no usable key columns
            return []
        return [str(v) for v in value if v is not None]

    def __reduce__(self):
        # MappingProxyType cannot be pickled; Spark ships events to executors
        return (self.__class__.of, (self.table_id, dict(self.row)))

    def raw(self) -> Dict[str, Any]:
        """Plain dict copy of the row, used for logging."""
        return dict(self.row)

    def __str__(self) -> str:
        return f"{self.table_id.fqn} -> {self.raw()}"
