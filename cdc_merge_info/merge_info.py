"""
CDC Merge Info Derivation

For every change event this module decides whether the event's table can be
consolidated with a MERGE, and if so emits one MergeInfo naming:

    - the staging table holding raw change events
    - the destination (replica) table holding the latest state per primary key
    - the primary keys (row identity) and sort keys (latest change wins)
    - the delete marker column (_metadata_deleted)
    - a unique job id

Flow per event:
    1. Resolve KeySet for the event's table
    2. No primary keys  -> WARNING, foregone counter +1, nothing emitted
    3. No sort keys     -> WARNING, foregone counter +1, merge info still emitted
    4. Format staging/destination dataset and table names from templates
    5. Generate job id, emit MergeInfo

Any failure while deriving one event is logged with the raw event and the event
is dropped; it never stops the remaining events.

Usage:
    from cdc_merge_info import MergeInfoDeriver, MergeMetrics

    metrics = MergeMetrics()
    deriver = MergeInfoDeriver(
        project_id="main",
        staging_dataset="staging_{_metadata_schema}",
        staging_table="{_metadata_table}_log",
        destination_dataset="{_metadata_schema}",
        destination_table="{_metadata_table}",
        metrics=metrics,
    )
    merge_infos = deriver.derive(event)                      # [] or [MergeInfo]
    merge_infos_rdd = derive_merge_infos(df, deriver)        # Spark, see merge_spark
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .merge_event import METADATA_DELETED, ChangeEvent, TableId
from .merge_exceptions import (
    DerivationError,
    DerivationErrorKind,
    DerivationResult,
    TemplateFormatError,
)
from .merge_job_id import JOB_ID_PREFIX, new_job_id
from .merge_keys import RowMetadataKeyResolver
from .merge_template import TemplateContext, format_name

logger = logging.getLogger(__name__)


def _event_repr(event) -> str:
    raw = getattr(event, "raw", None)
    return str(raw()) if callable(raw) else repr(event)


@dataclass(frozen=True)
class MergeInfo:
    """
    Everything a merge coordinator needs to consolidate one destination table.

    Attributes:
        project_id: Owning project / catalog
        primary_keys: Columns identifying a destination row (never empty)
        sort_keys: Columns ordering changes to the same primary key (may be empty)
        delete_field: Metadata column marking deleted rows
        staging_table: Table holding the raw change events
        destination_table: Table receiving the consolidated state
        job_id: Unique id of this merge job
    """
    project_id: str
    primary_keys: Tuple[str, ...]
    sort_keys: Tuple[str, ...]
    delete_field: str
    staging_table: TableId
    destination_table: TableId
    job_id: str

    def __post_init__(self):
        if not self.primary_keys:
            raise ValueError(
                f"MergeInfo for {self.destination_table} requires at least one primary key."
            )
        object.__setattr__(self, "primary_keys", tuple(self.primary_keys))
        object.__setattr__(self, "sort_keys", tuple(self.sort_keys or ()))

    def as_dict(self) -> Dict[str, Any]:
        """Flat representation (matches merge_spark.MERGE_INFO_SCHEMA)."""
        return {
            "project_id": self.project_id,
            "primary_keys": list(self.primary_keys),
            "sort_keys": list(self.sort_keys),
            "delete_field": self.delete_field,
            "staging_table": self.staging_table.fqn,
            "destination_table": self.destination_table.fqn,
            "job_id": self.job_id,
        }


class MergeInfoDeriver:
    """
    Derives zero or one MergeInfo per change event.

    Holds only static configuration; the foregone counter lives in the metrics
    context passed in, so one deriver can be shared by many worker threads.

    Args:
        project_id: Project / catalog of both staging and destination tables
        staging_dataset: Template for the staging dataset name
        staging_table: Template for the staging table name
        destination_dataset: Template for the destination dataset name
        destination_table: Template for the destination table name
        key_resolver: Object with resolve(event) -> KeySet (default: RowMetadataKeyResolver)
        metrics: Object with inc_foregone() (MergeMetrics or AccumulatorMergeMetrics);
                 None disables counting
        job_id_prefix: Prefix of generated job ids (default: "datastream")
    """

    def __init__(
        self,
        project_id: str,
        staging_dataset: str,
        staging_table: str,
        destination_dataset: str,
        destination_table: str,
        key_resolver=None,
        metrics=None,
        job_id_prefix: str = JOB_ID_PREFIX,
    ):
        self.project_id = project_id
        self.staging_dataset = staging_dataset
        self.staging_table = staging_table
        self.destination_dataset = destination_dataset
        self.destination_table = destination_table
        self.key_resolver = key_resolver if key_resolver is not None else RowMetadataKeyResolver()
        self.metrics = metrics
        self.job_id_prefix = job_id_prefix

    @classmethod
    def from_config(cls, config, key_resolver=None, metrics=None) -> "MergeInfoDeriver":
        """Build a deriver from a MergeInfoConfig (see merge_config.process_config)."""
        return cls(
            project_id=config.project_id,
            staging_dataset=config.staging.dataset,
            staging_table=config.staging.table,
            destination_dataset=config.destination.dataset,
            destination_table=config.destination.table,
            key_resolver=key_resolver,
            metrics=metrics,
            job_id_prefix=config.job_id_prefix,
        )

    def _record_foregone(self) -> None:
        if self.metrics is not None:
            self.metrics.inc_foregone()

    def try_derive(self, event: ChangeEvent) -> DerivationResult:
        """
        Derive merge info for one event, returning an explicit result.

        Returns:
            DerivationResult with merge_info set when a descriptor was produced and
            error set when the event was skipped, dropped, or degraded.
        """
        try:
            return self._derive(event)
        except TemplateFormatError as e:
            raw = _event_repr(event)
            message = f"Merge Info Failure, skipping merge for: {raw} -> {e}"
            logger.error(message)
            return DerivationResult(
                error=DerivationError(DerivationErrorKind.FORMAT_ERROR, message, raw, e)
            )
        except Exception as e:
            raw = _event_repr(event)
            message = f"Merge Info Failure, skipping merge for: {raw} -> {e!r}"
            logger.error(message, exc_info=True)
            return DerivationResult(
                error=DerivationError(DerivationErrorKind.UNEXPECTED_FAILURE, message, raw, e)
            )

    def _derive(self, event: ChangeEvent) -> DerivationResult:
        context = TemplateContext.from_event(event)
        keys = self.key_resolver.resolve(event)

        issue: Optional[DerivationError] = None
        if not keys.primary_keys:
            message = (
                f"Unable to retrieve primary keys for table {context.schema}.{context.table} "
                f"in stream {context.stream}. Not performing merge-based consolidation."
            )
            logger.warning(message)
            self._record_foregone()
            return DerivationResult(
                error=DerivationError(DerivationErrorKind.UNMERGEABLE_EVENT, message, str(event.raw()))
            )
        if not keys.sort_keys:
            # merge info is still emitted; ordering of same-key changes is undefined
            message = (
                f"Unable to retrieve sort keys for table {context.schema}.{context.table} "
                f"in stream {context.stream}. Not performing merge-based consolidation."
            )
            logger.warning(message)
            self._record_foregone()
            issue = DerivationError(DerivationErrorKind.DEGRADED_ORDERING, message, str(event.raw()))

        destination_dataset = format_name(self.destination_dataset, context)
        destination_table = format_name(self.destination_table, context)
        merge_info = MergeInfo(
            project_id=self.project_id,
            primary_keys=keys.primary_keys,
            sort_keys=keys.sort_keys,
            delete_field=METADATA_DELETED,
            staging_table=TableId(
                self.project_id,
                format_name(self.staging_dataset, context),
                format_name(self.staging_table, context),
            ),
            destination_table=TableId(self.project_id, destination_dataset, destination_table),
            job_id=new_job_id(
                self.project_id, destination_dataset, destination_table, prefix=self.job_id_prefix
            ),
        )
        return DerivationResult(merge_info=merge_info, error=issue)

    def derive(self, event: ChangeEvent) -> List[MergeInfo]:
        """Zero or one MergeInfo for the event."""
        return self.try_derive(event).to_list()

    __call__ = derive

    def derive_all(self, events: Iterable[ChangeEvent]) -> Iterator[MergeInfo]:
        for event in events:
            yield from self.derive(event)
