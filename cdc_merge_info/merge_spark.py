"""
Spark Integration for Merge Info Derivation

Runs MergeInfoDeriver over a DataFrame of CDC rows (e.g. the staging table or an
Auto Loader stream's micro-batch) and turns the resulting MergeInfo stream into
a DataFrame the merge coordinator can consume.

Usage in notebook:
    from cdc_merge_info import MergeInfoDeriver, AccumulatorMergeMetrics
    from cdc_merge_info.merge_spark import derive_merge_infos, merge_infos_to_dataframe

    metrics = AccumulatorMergeMetrics(spark)
    deriver = MergeInfoDeriver(..., metrics=metrics)

    merge_infos = derive_merge_infos(spark.read.table(staging_table_fqn), deriver)
    merge_infos_df = merge_infos_to_dataframe(spark, merge_infos)
    print(f"Merges foregone: {metrics.foregone}")

The deriver (including its key resolver and metrics) is shipped to executors,
so it must be picklable: use RowMetadataKeyResolver / StaticKeyResolver (or
CockroachDBKeyResolver.to_static()) and AccumulatorMergeMetrics.
"""

from typing import Iterable, Optional, Tuple

from pyspark.sql.types import ArrayType, StringType, StructField, StructType

from .merge_event import ChangeEvent
from .merge_info import MergeInfo

MERGE_INFO_SCHEMA = StructType([
    StructField("project_id", StringType(), False),
    StructField("primary_keys", ArrayType(StringType(), False), False),
    StructField("sort_keys", ArrayType(StringType(), False), False),
    StructField("delete_field", StringType(), False),
    StructField("staging_table", StringType(), False),
    StructField("destination_table", StringType(), False),
    StructField("job_id", StringType(), False),
])


def change_events_from_rows(rows: Iterable, project: str) -> Iterable[ChangeEvent]:
    """
    Convert Spark Rows (or dicts) to ChangeEvents; table identity comes from row metadata.

    Args:
        rows: Spark Rows or column -> value mappings
        project: Project / catalog for the table identity
    """
    for row in rows:
        values = row.asDict(recursive=True) if hasattr(row, "asDict") else dict(row)
        yield ChangeEvent.from_row(values, project)


def derive_merge_infos(df, deriver, project: Optional[str] = None):
    """
    Derive merge infos for every row of a DataFrame.

    Args:
        df: DataFrame of CDC rows carrying the _metadata_* columns
        deriver: MergeInfoDeriver
        project: Project for the events' table identity (default: deriver.project_id)

    Returns:
        RDD of MergeInfo (lazy; the foregone counter is only updated once an action runs)
    """
    project = project or deriver.project_id

    def _derive_partition(rows):
        for event in change_events_from_rows(rows, project):
            yield from deriver.derive(event)

    return df.rdd.mapPartitions(_derive_partition)


def _as_tuple(merge_info: MergeInfo) -> Tuple:
    values = merge_info.as_dict()
    return tuple(values[f.name] for f in MERGE_INFO_SCHEMA.fields)


def merge_infos_to_dataframe(spark, merge_infos):
    """
    Build a DataFrame (MERGE_INFO_SCHEMA) from an RDD or a local iterable of MergeInfo.
    """
    if hasattr(merge_infos, "map"):
        data = merge_infos.map(_as_tuple)
    else:
        data = [_as_tuple(m) for m in merge_infos]
    return spark.createDataFrame(data, schema=MERGE_INFO_SCHEMA)


def key_by_destination(merge_infos):
    """
    Key an RDD of MergeInfo by destination table FQN.

    The merge coordinator must run at most one merge per destination at a time;
    keying by destination lets it group or serialize per table.
    """
    return merge_infos.keyBy(lambda m: m.destination_table.fqn)
