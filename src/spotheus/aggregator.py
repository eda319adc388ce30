import asyncio
import time
from datetime import date
from typing import Callable, Sequence

import structlog

from spotheus.errors import MissingCacheEntryError
from spotheus.label_cache import LabelCache
from spotheus.metrics import (
    CostMetrics,
    ExporterMetrics,
    GaugeDescriptor,
    MetricBatch,
)
from spotheus.models import NON_WORKLOAD_KINDS, Cluster, CostRecord, ResourceKind
from spotheus.provider.base import BillingClient
from spotheus.reducer import reduce_cardinality
from spotheus.window import billing_window

logger = structlog.get_logger()

DEFAULT_GROUP_BY = "resource.label.app.kubernetes.io/name"


def bucket_records(
    records: "Sequence[CostRecord]",
) -> "dict[tuple[str, ResourceKind], list[CostRecord]]":
    """
    groups workload records by namespace and kind, dropping the
    synthetic non-workload kinds. Buckets keep encounter order.
    """
    buckets: "dict[tuple[str, ResourceKind], list[CostRecord]]" = {}
    for record in records:
        if record.kind in NON_WORKLOAD_KINDS:
            continue
        buckets.setdefault((record.namespace, record.kind), []).append(record)
    return buckets


class CostAggregator:
    """
    CostAggregator runs the cost collection pass of every cluster.
    It fetches the workload costs of the current billing window,
    reduces their cardinality, joins them with the cached labels and
    rolls them up into workload, namespace and cluster samples.

    Failures are isolated: a failing cluster or a missing label only
    drops the affected samples for this pass.
    """

    name = "cluster_costs"

    def __init__(
        self,
        clusters: "Sequence[Cluster]",
        client: "BillingClient",
        label_cache: "LabelCache",
        cost_metrics: "CostMetrics",
        exporter_metrics: "ExporterMetrics | None" = None,
        group_by: "str" = DEFAULT_GROUP_BY,
        today: "Callable[[], date]" = date.today,
        cluster_timeout: "float | None" = None,
    ) -> "None":
        self._clusters = list(clusters)
        self._client = client
        self._label_cache = label_cache
        self._metrics = cost_metrics
        self._exporter_metrics = exporter_metrics
        self._group_by = group_by
        self._today = today
        self._cluster_timeout = cluster_timeout

    @property
    def descriptors(self) -> "list[GaugeDescriptor]":
        return self._metrics.descriptors

    async def collect(self) -> "MetricBatch":
        """
        runs one collection pass over all clusters. Clusters are
        collected concurrently, each with its own namespace totals and
        its own deadline, so a hung cluster only drops its own samples.
        """
        cycle_start = time.monotonic()
        batch = self._metrics.new_batch()

        results = await asyncio.gather(
            *(self._collect_with_deadline(cluster, batch) for cluster in self._clusters)
        )

        if self._exporter_metrics is not None:
            self._exporter_metrics.observe_collection_duration(
                self.name, time.monotonic() - cycle_start
            )
            if all(results):
                self._exporter_metrics.set_last_collection_success(
                    self.name, time.time()
                )

        return batch

    def _inc_error(self, stage: "str") -> "None":
        if self._exporter_metrics is not None:
            self._exporter_metrics.inc_collection_error(self.name, stage)

    async def _collect_with_deadline(
        self, cluster: "Cluster", batch: "MetricBatch"
    ) -> "bool":
        try:
            return await asyncio.wait_for(
                self.collect_cluster(cluster, batch), timeout=self._cluster_timeout
            )
        except TimeoutError:
            logger.error(
                "cluster_collection_timeout",
                collector=self.name,
                ocean_id=cluster.id,
                timeout=self._cluster_timeout,
            )
            self._inc_error("timeout")
            return False

    async def collect_cluster(
        self, cluster: "Cluster", batch: "MetricBatch"
    ) -> "bool":
        """
        collects the costs of a single cluster into the batch. Returns
        False if anything had to be skipped.
        """
        start_date, end_date = billing_window(self._today())

        try:
            cost = await self._client.get_cluster_aggregated_cost(
                cluster.id, start_date, end_date, self._group_by
            )
        except Exception:
            logger.exception("cluster_cost_fetch_error", ocean_id=cluster.id)
            self._inc_error("cluster_cost")
            return False

        self._metrics.add_cluster_cost(batch, cluster, cost.total)

        complete = True
        # the namespace totals are summed up from the workloads since
        # the billing data is grouped by workload, not by namespace
        namespace_costs: "dict[str, float]" = {}

        for bucket in bucket_records(cost.records).values():
            for record in reduce_cardinality(bucket):
                namespace_costs[record.namespace] = (
                    namespace_costs.get(record.namespace, 0.0) + record.total
                )

                try:
                    labels = self._label_cache.get_label_for(
                        record.kind, record.namespace, cluster.id, record.name
                    )
                except MissingCacheEntryError:
                    logger.warning(
                        "label_cache_miss",
                        ocean_id=cluster.id,
                        namespace=record.namespace,
                        kind=record.kind.value,
                        name=record.name,
                    )
                    self._inc_error("label_lookup")
                    complete = False
                    continue

                self._metrics.add_workload_cost(batch, cluster, record, labels)

        for namespace, namespace_cost in namespace_costs.items():
            try:
                labels = self._label_cache.get_label_for(
                    ResourceKind.NAMESPACE, namespace, cluster.id, namespace
                )
            except MissingCacheEntryError:
                logger.warning(
                    "label_cache_miss",
                    ocean_id=cluster.id,
                    namespace=namespace,
                    kind=ResourceKind.NAMESPACE.value,
                    name=namespace,
                )
                self._inc_error("label_lookup")
                complete = False
                continue

            self._metrics.add_namespace_cost(
                batch, cluster, namespace, labels, namespace_cost
            )

        rolled_up = sum(namespace_costs.values())
        if rolled_up > cost.total:
            logger.warning(
                "namespace_costs_exceed_cluster_total",
                ocean_id=cluster.id,
                namespace_total=rolled_up,
                cluster_total=cost.total,
            )

        return complete
