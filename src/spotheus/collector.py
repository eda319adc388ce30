import asyncio
import concurrent.futures
from typing import Iterator, Protocol, Sequence

import structlog
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from spotheus.metrics import ExporterMetrics, GaugeDescriptor, MetricBatch

logger = structlog.get_logger()


class Aggregator(Protocol):
    """
    Aggregator is a source of gauge samples that is collected
    once per scrape.
    """

    @property
    def name(self) -> "str": ...

    @property
    def descriptors(self) -> "list[GaugeDescriptor]": ...

    async def collect(self) -> "MetricBatch": ...


class OceanCollector(Collector):
    """
    OceanCollector is the prometheus collector serving the Ocean
    metrics. Every scrape runs one collection pass of each aggregator.

    Scrapes are served from the HTTP server thread while the API
    clients live on the asyncio event loop, so passes are submitted
    to that loop and waited for up to the scrape timeout. A failing
    or timed out aggregator only leaves its metrics empty.
    """

    def __init__(
        self,
        aggregators: "Sequence[Aggregator]",
        loop: "asyncio.AbstractEventLoop",
        exporter_metrics: "ExporterMetrics | None" = None,
        scrape_timeout: "float" = 30.0,
    ) -> "None":
        self._aggregators = list(aggregators)
        self._loop = loop
        self._exporter_metrics = exporter_metrics
        self._timeout = scrape_timeout

    def describe(self) -> "Iterator[GaugeMetricFamily]":
        """
        yields empty families so that registering the collector
        doesn't trigger a collection pass.
        """
        for aggregator in self._aggregators:
            for descriptor in aggregator.descriptors:
                yield descriptor.family()

    def collect(self) -> "Iterator[GaugeMetricFamily]":
        futures = [
            (
                aggregator,
                asyncio.run_coroutine_threadsafe(aggregator.collect(), self._loop),
            )
            for aggregator in self._aggregators
        ]

        for aggregator, future in futures:
            try:
                batch = future.result(timeout=self._timeout)
            except concurrent.futures.TimeoutError:
                future.cancel()
                logger.error(
                    "collection_timeout",
                    collector=aggregator.name,
                    timeout=self._timeout,
                )
                self._inc_error(aggregator.name, "timeout")
                continue
            except Exception:
                logger.exception("collection_error", collector=aggregator.name)
                self._inc_error(aggregator.name, "collect")
                continue

            yield from batch.families()

    def _inc_error(self, collector: "str", stage: "str") -> "None":
        if self._exporter_metrics is not None:
            self._exporter_metrics.inc_collection_error(collector, stage)
