import asyncio
import signal

import structlog
from prometheus_client import REGISTRY, start_http_server

from spotheus.aggregator import CostAggregator
from spotheus.cli import parse_args
from spotheus.collector import OceanCollector
from spotheus.config import Config
from spotheus.errors import LabelMappingError
from spotheus.label_cache import LabelCache
from spotheus.logging import setup_logging
from spotheus.metrics import CostMetrics, ExporterMetrics, SuggestionMetrics
from spotheus.provider.base import MetadataClient
from spotheus.provider.kubernetes import KubernetesMetadataClient, load_kube_config
from spotheus.provider.spotinst import SpotinstClient
from spotheus.suggestions import SuggestionsAggregator

logger = structlog.get_logger()

# share of the scrape timeout a single cluster may take, the rest is
# left for rendering what was collected
CLUSTER_TIMEOUT_RATIO = 0.8


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':8080' or '0.0.0.0:8080'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _metadata_client(config: "Config") -> "MetadataClient | None":
    if config.label_source != "kubernetes":
        return None

    load_kube_config()
    return KubernetesMetadataClient()


async def _run(config: "Config") -> "None":
    client = SpotinstClient(
        token=config.spotinst_token,
        account_id=config.spotinst_account,
    )

    try:
        try:
            clusters = await client.list_clusters()
        except Exception:
            logger.exception("cluster_list_error")
            raise SystemExit(1)
        logger.info("clusters_discovered", count=len(clusters))

        try:
            cost_metrics = CostMetrics(config.label_mappings)
        except LabelMappingError as e:
            raise SystemExit(f"invalid label mappings: {e}")

        exporter_metrics = ExporterMetrics()
        label_cache = LabelCache(
            clusters,
            source=client,
            metadata_client=_metadata_client(config),
            ttl_seconds=config.label_ttl,
            interval_seconds=config.label_refresh_interval,
            exporter_metrics=exporter_metrics,
        )
        cluster_timeout = config.scrape_timeout * CLUSTER_TIMEOUT_RATIO
        aggregators = [
            CostAggregator(
                clusters,
                client,
                label_cache,
                cost_metrics,
                exporter_metrics,
                group_by=config.group_by,
                cluster_timeout=cluster_timeout,
            ),
            SuggestionsAggregator(
                clusters,
                client,
                SuggestionMetrics(),
                exporter_metrics,
                cluster_timeout=cluster_timeout,
            ),
        ]

        loop = asyncio.get_running_loop()
        REGISTRY.register(
            OceanCollector(
                aggregators,
                loop,
                exporter_metrics,
                scrape_timeout=config.scrape_timeout,
            )
        )

        # for SIGINT and SIGTERM, stop the label cache loop
        # gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, label_cache.stop)

        host, port = _parse_listen_address(config.listen_address)
        start_http_server(port, addr=host)
        logger.info("metrics_server_started", host=host, port=port)

        await label_cache.run()
    finally:
        logger.info("shutting_down")
        await client.close()
        logger.info("shutdown_complete")


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)

    if not config.spotinst_token:
        raise SystemExit("No credentials configured. Set SPOTINST_TOKEN.")

    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
