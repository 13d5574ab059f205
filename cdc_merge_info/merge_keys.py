"""
Schema Key Resolvers

A key resolver returns the primary keys (row identity) and sort keys (which of
several changes to the same primary key wins) for a change event's table.

Available resolvers:
    • RowMetadataKeyResolver - keys carried by the event itself (_metadata_primary_keys,
                               sort keys chosen from _metadata_source_type)
    • StaticKeyResolver      - keys from configuration, per "schema.table"
    • CockroachDBKeyResolver - primary keys read from CockroachDB information_schema,
                               sort key __crdb__updated (HLC string written by the changefeed)

Every resolver exposes resolve(event) -> KeySet.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .merge_event import ChangeEvent
from .merge_exceptions import KeyResolutionError

logger = logging.getLogger(__name__)

ORACLE_DEFAULT_PRIMARY_KEY = "_metadata_row_id"
CRDB_UPDATED_COLUMN = "__crdb__updated"

SORT_KEYS_BY_SOURCE_TYPE: Dict[str, Tuple[str, ...]] = {
    "mysql": ("_metadata_timestamp", "_metadata_log_file", "_metadata_log_position"),
    "postgresql": ("_metadata_timestamp", "_metadata_lsn"),
    "oracle": ("_metadata_timestamp", "_metadata_scn", "_metadata_rs_id", "_metadata_ssn"),
    "cockroachdb": (CRDB_UPDATED_COLUMN,),
}


@dataclass(frozen=True)
class KeySet:
    """Ordered primary key and sort key column names for one table. Either may be empty."""
    primary_keys: Tuple[str, ...] = ()
    sort_keys: Tuple[str, ...] = ()

    @classmethod
    def of(cls, primary_keys: Iterable[str] = (), sort_keys: Iterable[str] = ()) -> "KeySet":
        return cls(tuple(primary_keys or ()), tuple(sort_keys or ()))


class RowMetadataKeyResolver:
    """Keys taken from the metadata columns of the event row."""

    def resolve(self, event: ChangeEvent) -> KeySet:
        source_type = event.source_type
        primary_keys = event.primary_keys
        if not primary_keys and source_type == "oracle":
            primary_keys = [ORACLE_DEFAULT_PRIMARY_KEY]
        sort_keys = SORT_KEYS_BY_SOURCE_TYPE.get(source_type or "", ())
        return KeySet.of(primary_keys, sort_keys)


class StaticKeyResolver:
    """
    Keys from a fixed mapping of "schema.table" -> KeySet.

    Args:
        tables: Mapping of "schema.table" (or bare "table") to a KeySet or a dict
                {"primary_keys": [...], "sort_keys": [...]}
        default_sort_keys: Sort keys used for tables that do not list their own

    Tables that are not listed resolve to an empty KeySet.

    Example:
        >>> resolver = StaticKeyResolver({"sales.orders": {"primary_keys": ["order_id"],
        ...                                                "sort_keys": ["update_ts"]}})
    """

    def __init__(self, tables: Mapping[str, object], default_sort_keys: Sequence[str] = ()):
        self.default_sort_keys = tuple(default_sort_keys)
        self.tables: Dict[str, KeySet] = {}
        for name, keys in tables.items():
            if isinstance(keys, KeySet):
                self.tables[name] = keys
            else:
                self.tables[name] = KeySet.of(
                    keys.get("primary_keys") or (),
                    keys.get("sort_keys", self.default_sort_keys) or (),
                )

    def resolve(self, event: ChangeEvent) -> KeySet:
        qualified = f"{event.schema_name}.{event.table_name}"
        keys = self.tables.get(qualified) or self.tables.get(event.table_name or "")
        return keys if keys is not None else KeySet()


class CockroachDBKeyResolver:
    """
    Primary keys looked up in CockroachDB, cached per (schema, table).

    The connection is only used on the driver; call to_static() to ship the
    resolved keys to Spark executors.

    Args:
        conn: pg8000 connection (DBAPI cursor API) to the source database
        sort_keys: Sort keys for every table (default: ["__crdb__updated"])
    """

    PK_QUERY = """
        SELECT kcu.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON tc.constraint_name = kcu.constraint_name
          AND tc.table_schema = kcu.table_schema
          AND tc.table_name = kcu.table_name
        WHERE tc.constraint_type = 'PRIMARY KEY'
          AND tc.table_schema = %s
          AND tc.table_name = %s
        ORDER BY kcu.ordinal_position
    """

    def __init__(self, conn, sort_keys: Sequence[str] = (CRDB_UPDATED_COLUMN,)):
        self.conn = conn
        self.sort_keys = tuple(sort_keys)
        self._cache: Dict[Tuple[str, str], KeySet] = {}
        self._lock = threading.Lock()

    def primary_keys(self, schema: str, table_name: str) -> Tuple[str, ...]:
        """Primary key columns ordered by ordinal position (empty when the table has none)."""
        try:
            with self.conn.cursor() as cur:
                cur.execute(self.PK_QUERY, (schema, table_name))
                return tuple(r[0] for r in cur.fetchall())
        except Exception as e:
            raise KeyResolutionError(schema, table_name, str(e)) from e

    def keys_for(self, schema: str, table_name: str) -> KeySet:
        key = (schema, table_name)
        with self._lock:
            cached = self._cache.get(key)
            if cached is None:
                cached = KeySet(self.primary_keys(schema, table_name), self.sort_keys)
                self._cache[key] = cached
                logger.info(
                    "Resolved keys for %s.%s: primary=%s sort=%s",
                    schema, table_name, list(cached.primary_keys), list(cached.sort_keys),
                )
        return cached

    def resolve(self, event: ChangeEvent) -> KeySet:
        return self.keys_for(event.schema_name or "public", event.table_name or "")

    def to_static(self, tables: Optional[Iterable[Tuple[str, str]]] = None) -> StaticKeyResolver:
        """
        Snapshot resolved keys into a StaticKeyResolver (picklable, no connection).

        Args:
            tables: (schema, table) pairs to resolve first; already cached tables are always included
        """
        for schema, table_name in tables or ():
            self.keys_for(schema, table_name)
        with self._lock:
            snapshot = {f"{s}.{t}": keys for (s, t), keys in self._cache.items()}
        return StaticKeyResolver(snapshot, default_sort_keys=self.sort_keys)
