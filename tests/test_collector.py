import asyncio
import threading
from typing import Iterator

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from spotheus.aggregator import CostAggregator
from spotheus.collector import OceanCollector
from spotheus.label_cache import LabelCache
from spotheus.metrics import CostMetrics, ExporterMetrics, MetricBatch
from spotheus.models import Cluster, ClusterCost


class StaticAggregator:
    """
    An aggregator reporting a fixed cluster cost.
    """

    name = "static"

    def __init__(self, cluster: "Cluster", total: "float") -> "None":
        self._metrics = CostMetrics()
        self._cluster = cluster
        self._total = total
        self.passes = 0

    @property
    def descriptors(self):
        return self._metrics.descriptors

    async def collect(self) -> "MetricBatch":
        self.passes += 1
        batch = self._metrics.new_batch()
        self._metrics.add_cluster_cost(batch, self._cluster, self._total)
        return batch


class FailingAggregator(StaticAggregator):
    name = "failing"

    async def collect(self) -> "MetricBatch":
        raise RuntimeError("collection failed")


class HangingAggregator(StaticAggregator):
    name = "hanging"

    async def collect(self) -> "MetricBatch":
        await asyncio.sleep(10)
        return await super().collect()


class PartlyHangingBillingClient:
    """
    A billing client that reports a fixed total for every cluster
    but never answers for the hanging ones.
    """

    def __init__(self, hanging: "set[str]") -> "None":
        self._hanging = hanging

    async def get_cluster_aggregated_cost(
        self,
        cluster_id: "str",
        start_date: "str",
        end_date: "str",
        group_by: "str",
    ) -> "ClusterCost":
        if cluster_id in self._hanging:
            await asyncio.sleep(60)
        return ClusterCost(total=42)


class NoLabelSource:
    async def get_cluster_resources(
        self,
        cluster: "Cluster",
        start_date: "str",
        end_date: "str",
    ) -> "list":
        return []


@pytest.fixture()
def background_loop() -> "Iterator[asyncio.AbstractEventLoop]":
    """
    event loop running in its own thread, like the exporter's main
    loop while the HTTP server thread serves scrapes.
    """
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


class TestOceanCollector:
    def test_registering_does_not_collect(
        self,
        registry: "CollectorRegistry",
        background_loop: "asyncio.AbstractEventLoop",
        cluster: "Cluster",
    ) -> "None":
        aggregator = StaticAggregator(cluster, 200)
        registry.register(OceanCollector([aggregator], background_loop))

        assert aggregator.passes == 0

    def test_every_scrape_runs_a_pass(
        self,
        registry: "CollectorRegistry",
        background_loop: "asyncio.AbstractEventLoop",
        cluster: "Cluster",
    ) -> "None":
        aggregator = StaticAggregator(cluster, 200)
        registry.register(OceanCollector([aggregator], background_loop))

        value = registry.get_sample_value(
            "spotinst_ocean_aws_cluster_cost",
            {"ocean_id": "o-foo", "ocean_name": "ocean-foo"},
        )
        registry.get_sample_value("spotinst_ocean_aws_cluster_cost")

        assert value == 200
        assert aggregator.passes == 2

    def test_failing_aggregator_is_isolated(
        self,
        registry: "CollectorRegistry",
        background_loop: "asyncio.AbstractEventLoop",
        cluster: "Cluster",
    ) -> "None":
        exporter_metrics = ExporterMetrics(registry)
        collector = OceanCollector(
            [FailingAggregator(cluster, 1), StaticAggregator(cluster, 200)],
            background_loop,
            exporter_metrics,
        )

        families = list(collector.collect())

        assert len(families) == 4
        assert registry.get_sample_value(
            "spotheus_collection_errors_total",
            {"collector": "failing", "stage": "collect"},
        ) == 1.0

    def test_timed_out_aggregator_is_skipped(
        self,
        registry: "CollectorRegistry",
        background_loop: "asyncio.AbstractEventLoop",
        cluster: "Cluster",
    ) -> "None":
        exporter_metrics = ExporterMetrics(registry)
        collector = OceanCollector(
            [HangingAggregator(cluster, 1)],
            background_loop,
            exporter_metrics,
            scrape_timeout=0.05,
        )

        assert list(collector.collect()) == []
        assert registry.get_sample_value(
            "spotheus_collection_errors_total",
            {"collector": "hanging", "stage": "timeout"},
        ) == 1.0

    def test_empty_pass_renders_valid_exposition(
        self,
        registry: "CollectorRegistry",
        background_loop: "asyncio.AbstractEventLoop",
    ) -> "None":
        class EmptyAggregator(StaticAggregator):
            async def collect(self) -> "MetricBatch":
                return self._metrics.new_batch()

        registry.register(
            OceanCollector(
                [EmptyAggregator(Cluster("o-x", "ocean-x"), 0)], background_loop
            )
        )

        output = generate_latest(registry).decode()

        assert "# TYPE spotinst_ocean_aws_cluster_cost gauge" in output
        assert "spotinst_ocean_aws_cluster_cost{" not in output

    def test_hung_cluster_keeps_healthy_clusters_in_scrape(
        self,
        registry: "CollectorRegistry",
        background_loop: "asyncio.AbstractEventLoop",
    ) -> "None":
        healthy = Cluster(id="o-ok", name="ocean-ok")
        hung = Cluster(id="o-hung", name="ocean-hung")
        clusters = [healthy, hung]
        aggregator = CostAggregator(
            clusters,
            PartlyHangingBillingClient({hung.id}),
            LabelCache(clusters, source=NoLabelSource()),
            CostMetrics(),
            cluster_timeout=0.1,
        )
        registry.register(
            OceanCollector([aggregator], background_loop, scrape_timeout=5)
        )

        output = generate_latest(registry).decode()

        assert 'ocean_id="o-ok"' in output
        assert 'ocean_id="o-hung"' not in output
