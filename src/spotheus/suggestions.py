import asyncio
import time
from typing import Sequence

import structlog

from spotheus.metrics import (
    ExporterMetrics,
    GaugeDescriptor,
    MetricBatch,
    SuggestionMetrics,
)
from spotheus.models import Cluster
from spotheus.provider.base import SuggestionsClient

logger = structlog.get_logger()


class SuggestionsAggregator:
    """
    SuggestionsAggregator exports the right-sizing suggestions of
    every cluster's workloads and containers, one gauge per field.
    """

    name = "resource_suggestions"

    def __init__(
        self,
        clusters: "Sequence[Cluster]",
        client: "SuggestionsClient",
        suggestion_metrics: "SuggestionMetrics",
        exporter_metrics: "ExporterMetrics | None" = None,
        cluster_timeout: "float | None" = None,
    ) -> "None":
        self._clusters = list(clusters)
        self._client = client
        self._metrics = suggestion_metrics
        self._exporter_metrics = exporter_metrics
        self._cluster_timeout = cluster_timeout

    @property
    def descriptors(self) -> "list[GaugeDescriptor]":
        return self._metrics.descriptors

    async def collect(self) -> "MetricBatch":
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
                self._collect_cluster(cluster, batch), timeout=self._cluster_timeout
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

    async def _collect_cluster(
        self, cluster: "Cluster", batch: "MetricBatch"
    ) -> "bool":
        try:
            suggestions = await self._client.list_resource_suggestions(cluster.id)
        except Exception:
            logger.exception("resource_suggestions_fetch_error", ocean_id=cluster.id)
            self._inc_error("suggestions")
            return False

        for suggestion in suggestions:
            self._metrics.add_suggestion(batch, cluster, suggestion)

        return True
