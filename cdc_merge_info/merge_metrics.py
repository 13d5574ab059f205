"""
Merge Info Metrics

The deriver reports one counter: merges foregone because keys were missing.
It is incremented when no primary keys were found (nothing emitted) and when
no sort keys were found (merge info still emitted, ordering degraded).

Two metrics contexts are provided; both are created explicitly by the caller
and handed to the deriver:

    MergeMetrics            - prometheus_client counter in its own registry,
                              for drivers, services and tests
    AccumulatorMergeMetrics - Spark accumulator, for derivation inside executors
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest

FOREGONE_METRIC = "cdc_merges_foregone"


class MergeMetrics:
    """
    Prometheus backed metrics context.

    Each instance owns a CollectorRegistry, so two pipelines (or two tests) never
    share a counter. Counter.inc() is thread safe.

    Example:
        >>> metrics = MergeMetrics()
        >>> deriver = MergeInfoDeriver(..., metrics=metrics)
        >>> metrics.foregone
        0
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = ""):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metric_name = f"{namespace}_{FOREGONE_METRIC}" if namespace else FOREGONE_METRIC
        self._foregone = Counter(
            self._metric_name,
            "Merges foregone due to missing primary or sort keys",
            registry=self.registry,
        )

    def inc_foregone(self, amount: int = 1) -> None:
        self._foregone.inc(amount)

    @property
    def foregone(self) -> int:
        value = self.registry.get_sample_value(f"{self._metric_name}_total")
        return int(value or 0)

    def export(self) -> bytes:
        """Prometheus text exposition of this context's registry."""
        return generate_latest(self.registry)


class AccumulatorMergeMetrics:
    """
    Spark accumulator backed metrics context.

    Executors can only add to the accumulator; read foregone on the driver after
    an action has run.

    Args:
        spark: SparkSession (or anything with a sparkContext)
    """

    def __init__(self, spark):
        self._accumulator = spark.sparkContext.accumulator(0)

    def inc_foregone(self, amount: int = 1) -> None:
        self._accumulator.add(amount)

    @property
    def foregone(self) -> int:
        return int(self._accumulator.value)
