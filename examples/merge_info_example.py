"""
Merge Info Example

This example derives merge job descriptors for CDC rows landed in a staging
table, the way a Databricks job would before handing them to the merge step.

Prerequisites:
    1. A staging table with CockroachDB changefeed rows plus metadata columns:
       _metadata_schema, _metadata_table, _metadata_source_type ('cockroachdb'),
       _metadata_primary_keys, _metadata_deleted, __crdb__updated

    2. Databricks workspace environment with spark
"""

from cdc_merge_info import AccumulatorMergeMetrics, ChangeEvent, MergeInfoDeriver, MergeMetrics
from cdc_merge_info.merge_keys import StaticKeyResolver
from cdc_merge_info.merge_spark import derive_merge_infos, key_by_destination, merge_infos_to_dataframe


def example_single_event():
    """
    Example: Derive merge info for one change event (no Spark needed).
    """
    print("=" * 80)
    print("Example 1: Single change event")
    print("=" * 80)

    metrics = MergeMetrics()
    deriver = MergeInfoDeriver(
        project_id="main",
        staging_dataset="staging_{_metadata_schema}",
        staging_table="{_metadata_table}_log",
        destination_dataset="{_metadata_schema}",
        destination_table="{_metadata_table}",
        key_resolver=StaticKeyResolver({
            "sales.orders": {"primary_keys": ["order_id"], "sort_keys": ["update_ts"]},
        }),
        metrics=metrics,
    )

    event = ChangeEvent.from_row(
        {
            "order_id": 1001,
            "status": "shipped",
            "update_ts": "2024-05-01T13:45:09Z",
            "_metadata_schema": "sales",
            "_metadata_table": "orders",
            "_metadata_deleted": False,
        },
        project="main",
    )

    result = deriver.try_derive(event)
    if result.emitted:
        merge_info = result.merge_info
        print(f"   Staging:     {merge_info.staging_table}")
        print(f"   Destination: {merge_info.destination_table}")
        print(f"   Keys:        {list(merge_info.primary_keys)} ordered by {list(merge_info.sort_keys)}")
        print(f"   Job id:      {merge_info.job_id}")
    else:
        print(f"   Skipped: {result.error.kind.value} - {result.error.message}")
    print(f"   Merges foregone: {metrics.foregone}")


def example_staging_table(spark, staging_table_fqn: str = "main.staging_sales.orders_log"):
    """
    Example: Derive merge infos for every row of a staging table.
    """
    print("=" * 80)
    print("Example 2: Staging table")
    print("=" * 80)

    metrics = AccumulatorMergeMetrics(spark)
    deriver = MergeInfoDeriver(
        project_id="main",
        staging_dataset="staging_{_metadata_schema}",
        staging_table="{_metadata_table}_log",
        destination_dataset="{_metadata_schema}",
        destination_table="{_metadata_table}",
        metrics=metrics,
    )

    merge_infos = derive_merge_infos(spark.read.table(staging_table_fqn), deriver)
    merge_infos_df = merge_infos_to_dataframe(spark, merge_infos)
    merge_infos_df.show(truncate=False)

    per_destination = key_by_destination(merge_infos).countByKey()
    for destination, count in per_destination.items():
        print(f"   {destination}: {count} merge job(s)")
    print(f"   Merges foregone: {metrics.foregone}")


if __name__ == "__main__":
    example_single_event()
