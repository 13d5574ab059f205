"""
Tests for merge_info.py - MergeInfo derivation from CDC change events.

Run with: pytest cdc_merge_info/test_merge_info.py -v
"""

import logging
import typing
from concurrent.futures import ThreadPoolExecutor

import pytest

from cdc_merge_info.merge_event import ChangeEvent, TableId
from cdc_merge_info.merge_exceptions import DerivationErrorKind, DerivationResult
from cdc_merge_info.merge_info import MergeInfo, MergeInfoDeriver
from cdc_merge_info.merge_job_id import is_job_id
from cdc_merge_info.merge_keys import KeySet, RowMetadataKeyResolver, StaticKeyResolver
from cdc_merge_info.merge_metrics import MergeMetrics


def _event(schema="sales", table="orders", **extra):
    row = {
        "order_id": 42,
        "amount": 10.5,
        "_metadata_stream": "projects/p/locations/us/streams/orders-stream",
        "_metadata_schema": schema,
        "_metadata_table": table,
        "_metadata_deleted": False,
    }
    row.update(extra)
    return ChangeEvent.of(TableId("main", schema, table), row)


class _FixedKeys:
    def __init__(self, primary_keys=(), sort_keys=()):
        self.keys = KeySet.of(primary_keys, sort_keys)

    def resolve(self, event):
        return self.keys


class _ExplodingKeys:
    def resolve(self, event):
        raise RuntimeError("schema registry unavailable")


@pytest.fixture
def metrics():
    return MergeMetrics()


def _deriver(key_resolver, metrics, **templates):
    settings = {
        "staging_dataset": "staging_{_metadata_schema}",
        "staging_table": "{_metadata_table}_log",
        "destination_dataset": "{_metadata_schema}",
        "destination_table": "{_metadata_table}",
    }
    settings.update(templates)
    return MergeInfoDeriver(project_id="main", key_resolver=key_resolver, metrics=metrics, **settings)


class TestKeyValidation:
    """Primary/sort key handling and the foregone counter."""

    def test_no_primary_keys_emits_nothing(self, metrics):
        deriver = _deriver(_FixedKeys((), ("update_ts",)), metrics)

        result = deriver.try_derive(_event())

        assert deriver.derive(_event()) == []
        assert not result.emitted
        assert result.kind == DerivationErrorKind.UNMERGEABLE_EVENT
        assert metrics.foregone == 2

    def test_no_primary_keys_logs_warning(self, metrics, caplog):
        deriver = _deriver(_FixedKeys(), metrics)

        with caplog.at_level(logging.WARNING, logger="cdc_merge_info.merge_info"):
            deriver.derive(_event())

        assert "Unable to retrieve primary keys for table sales.orders" in caplog.text
        assert "orders-stream" in caplog.text
        assert all(r.levelno == logging.WARNING for r in caplog.records)

    def test_no_sort_keys_still_emits_and_counts(self, metrics):
        deriver = _deriver(_FixedKeys(("order_id",), ()), metrics)

        result = deriver.try_derive(_event())

        assert result.emitted
        assert result.kind == DerivationErrorKind.DEGRADED_ORDERING
        assert result.merge_info.sort_keys == ()
        assert result.merge_info.primary_keys == ("order_id",)
        assert metrics.foregone == 1

    def test_full_keys_emit_without_counting(self, metrics):
        deriver = _deriver(_FixedKeys(("order_id", "region"), ("update_ts",)), metrics)

        merge_infos = deriver.derive(_event())

        assert len(merge_infos) == 1
        assert merge_infos[0].primary_keys == ("order_id", "region")
        assert merge_infos[0].sort_keys == ("update_ts",)
        assert metrics.foregone == 0

    def test_metrics_optional(self):
        deriver = _deriver(_FixedKeys(), None)
        assert deriver.derive(_event()) == []


    @pytest.mark.parametrize("encoded", ["null", "{}", "[]"])
    def test_json_without_key_columns_is_unmergeable(self, metrics, encoded):
        deriver = _deriver(RowMetadataKeyResolver(), metrics)
        event = ChangeEvent.from_row(
            {"_metadata_schema": "sales", "_metadata_table": "audit_log", "_metadata_primary_keys": encoded},
            "main",
        )

        result = deriver.try_derive(event)

        assert result.merge_info is None
        assert result.kind == DerivationErrorKind.UNMERGEABLE_EVENT
        assert metrics.foregone == 1

class TestMergeInfoContents:

    def test_end_to_end_sales_orders(self, metrics):
        resolver = StaticKeyResolver({
            "sales.orders": {"primary_keys": ["order_id"], "sort_keys": ["update_ts"]},
        })
        deriver = _deriver(
            resolver,
            metrics,
            staging_dataset="staging_{_metadata_schema}",
            staging_table="{_metadata_table}_changes",
            destination_dataset="staging_{_metadata_schema}",
            destination_table="{_metadata_table}",
        )

        [merge_info] = deriver.derive(_event())

        assert merge_info.project_id == "main"
        assert merge_info.destination_table == TableId("main", "staging_sales", "orders")
        assert merge_info.staging_table == TableId("main", "staging_sales", "orders_changes")
        assert merge_info.delete_field == "_metadata_deleted"
        assert merge_info.job_id.startswith("datastream_")
        assert "staging_sales" in merge_info.job_id
        assert "orders" in merge_info.job_id
        assert is_job_id(merge_info.job_id, prefix="datastream")
        assert metrics.foregone == 0

    def test_stream_template_uses_last_path_segment(self, metrics):
        deriver = _deriver(
            _FixedKeys(("order_id",), ("update_ts",)),
            metrics,
            staging_table="{_metadata_stream}_{_metadata_table}",
        )

        [merge_info] = deriver.derive(_event())

        assert merge_info.staging_table.table == "orders_stream_orders"

    def test_custom_job_id_prefix(self, metrics):
        deriver = MergeInfoDeriver(
            "main", "stg", "{_metadata_table}", "dst", "{_metadata_table}",
            key_resolver=_FixedKeys(("order_id",), ("update_ts",)),
            metrics=metrics,
            job_id_prefix="cdcmerge",
        )

        [merge_info] = deriver.derive(_event())

        assert merge_info.job_id.startswith("cdcmerge_main_dst_orders_")

    def test_merge_info_requires_primary_keys(self):
        table = TableId("main", "sales", "orders")
        with pytest.raises(ValueError):
            MergeInfo("main", (), ("update_ts",), "_metadata_deleted", table, table, "job")

    def test_as_dict(self, metrics):
        deriver = _deriver(_FixedKeys(("order_id",), ("update_ts",)), metrics)

        [merge_info] = deriver.derive(_event())
        values = merge_info.as_dict()

        assert values["staging_table"] == "main.staging_sales.orders_log"
        assert values["destination_table"] == "main.sales.orders"
        assert values["primary_keys"] == ["order_id"]
        assert values["sort_keys"] == ["update_ts"]


class TestFailureIsolation:

    def test_missing_template_field_drops_event_and_continues(self, metrics, caplog):
        deriver = _deriver(_FixedKeys(("order_id",), ("update_ts",)), metrics)
        malformed = ChangeEvent.of(
            TableId("main", "sales", "orders"),
            {"order_id": 7, "_metadata_table": "orders"},  # no _metadata_schema
        )

        with caplog.at_level(logging.ERROR, logger="cdc_merge_info.merge_info"):
            results = [deriver.try_derive(e) for e in (malformed, _event())]

        assert results[0].kind == DerivationErrorKind.FORMAT_ERROR
        assert not results[0].emitted
        assert results[1].emitted
        assert "Merge Info Failure, skipping merge for" in caplog.text
        assert "'order_id': 7" in caplog.text

    def test_unexpected_failure_is_contained(self, metrics, caplog):
        deriver = _deriver(_ExplodingKeys(), metrics)

        with caplog.at_level(logging.ERROR, logger="cdc_merge_info.merge_info"):
            result = deriver.try_derive(_event())

        assert result.kind == DerivationErrorKind.UNEXPECTED_FAILURE
        assert isinstance(result.error.cause, RuntimeError)
        assert "schema registry unavailable" in caplog.text
        assert metrics.foregone == 0

    def test_derive_all_skips_bad_events(self, metrics):
        deriver = _deriver(StaticKeyResolver({
            "sales.orders": {"primary_keys": ["order_id"], "sort_keys": ["update_ts"]},
        }), metrics)
        events = [
            _event(),
            _event(table="no_keys"),
            ChangeEvent.of(TableId("main", "", ""), {}),
            _event(),
        ]

        merge_infos = list(deriver.derive_all(events))

        assert len(merge_infos) == 2
        assert merge_infos[0].job_id != merge_infos[1].job_id
        # no_keys table and the empty event both have no primary keys
        assert metrics.foregone == 2


def test_concurrent_derivation_counts_every_skip(metrics):
    deriver = _deriver(_FixedKeys(), metrics)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(deriver.derive, [_event() for _ in range(500)]))

    assert all(r == [] for r in results)
    assert metrics.foregone == 500


def test_derivation_result_annotation_resolves_to_merge_info():
    hints = typing.get_type_hints(DerivationResult, localns={"MergeInfo": MergeInfo})
    assert hints["merge_info"] == typing.Optional[MergeInfo]
