import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Sequence

import structlog

from spotheus.errors import MissingCacheEntryError
from spotheus.metrics import ExporterMetrics
from spotheus.models import CacheKey, Cluster, LabelledResource, ResourceKind
from spotheus.provider.base import ClusterLabelSource, MetadataClient
from spotheus.reducer import normalize_name
from spotheus.window import billing_window

logger = structlog.get_logger()

# keep labels for 1 hour by default
DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True, slots=True)
class _Entry:
    labels: "dict[str, str]"
    # absolute unix timestamp
    expires_at: "float"


class LabelCache:
    """
    LabelCache: Is a thread-safe, TTL bounded store for the labels
    of namespaces and workloads, keyed by (cluster, kind, namespace,
    identifier).

    Looking up labels is slow and rate limited, so the cache is filled
    by its own population loop (see run()) independently of metric
    collection. Readers never block on the network. They get a
    MissingCacheEntryError for entries that aren't populated yet or
    have expired, and have to treat the labels as unknown for now.

    Identifiers are stored normalized (see reducer.normalize_name) so
    that they match the names of cardinality reduced cost records.
    """

    def __init__(
        self,
        clusters: "Sequence[Cluster]",
        source: "ClusterLabelSource",
        metadata_client: "MetadataClient | None" = None,
        ttl_seconds: "float" = DEFAULT_TTL_SECONDS,
        interval_seconds: "float" = 600,
        clock: "Callable[[], float]" = time.time,
        today: "Callable[[], date]" = date.today,
        exporter_metrics: "ExporterMetrics | None" = None,
    ) -> "None":
        if interval_seconds <= 0:
            raise ValueError("label cache refresh interval must be > 0")

        self._clusters = list(clusters)
        self._source = source
        self._metadata_client = metadata_client
        self._ttl = ttl_seconds
        self._interval = interval_seconds
        self._clock = clock
        self._today = today
        self._exporter_metrics = exporter_metrics
        self._lock: "threading.Lock" = threading.Lock()
        self._entries: "dict[CacheKey, _Entry]" = {}
        self._stop_event: "asyncio.Event" = asyncio.Event()
        self.last_population: "float" = 0.0

    def __len__(self) -> "int":
        with self._lock:
            return len(self._entries)

    def set(self, key: "CacheKey", labels: "dict[str, str]") -> "None":
        """
        stores a copy of the labels under the key, replacing any
        existing entry.
        """
        entry = _Entry(labels=dict(labels), expires_at=self._clock() + self._ttl)
        with self._lock:
            self._entries[key] = entry

    def get_label_for(
        self,
        kind: "ResourceKind",
        namespace: "str",
        cluster: "str",
        identifier: "str",
    ) -> "dict[str, str]":
        """
        returns the labels stored for a resource. Raises
        MissingCacheEntryError if there is no live entry.
        """
        key = CacheKey(cluster, kind, namespace, identifier)
        with self._lock:
            entry = self._entries.get(key)

        if entry is None or entry.expires_at <= self._clock():
            raise MissingCacheEntryError(key)

        return dict(entry.labels)

    def evict_expired(self) -> "int":
        """
        removes all expired entries. Returns the number of
        evicted entries.
        """
        now = self._clock()
        with self._lock:
            to_remove = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in to_remove:
                del self._entries[k]
            return len(to_remove)

    async def populate_once(self) -> "int":
        """
        fetches the resources of every cluster for the current billing
        window and stores their labels. A failing cluster is skipped.
        Returns the number of entries written.
        """
        start_date, end_date = billing_window(self._today())
        written = 0

        for cluster in self._clusters:
            try:
                resources = await self._source.get_cluster_resources(
                    cluster, start_date, end_date
                )
            except Exception:
                logger.exception("label_population_error", ocean_id=cluster.id)
                continue

            for resource in resources:
                if await self._store(cluster, resource):
                    written += 1

        self.last_population = self._clock()
        if self._exporter_metrics is not None:
            self._exporter_metrics.set_label_cache_state(
                len(self), self.last_population
            )
        logger.info("label_cache_populated", entries=written)
        return written

    async def _store(
        self, cluster: "Cluster", resource: "LabelledResource"
    ) -> "bool":
        labels = resource.labels
        if self._metadata_client is not None:
            try:
                labels = await self._metadata_client.get_labels_for(
                    resource.kind, resource.namespace, resource.name
                )
            except Exception:
                logger.exception(
                    "label_lookup_error",
                    ocean_id=cluster.id,
                    kind=resource.kind.value,
                    namespace=resource.namespace,
                    name=resource.name,
                )
                return False

        identifier = (
            resource.name
            if resource.kind is ResourceKind.NAMESPACE
            else normalize_name(resource.name)
        )
        key = CacheKey(cluster.id, resource.kind, resource.namespace, identifier)
        self.set(key, labels or {})
        return True

    def stop(self) -> "None":
        """
        signals the population loop to stop after the current pass.
        """
        self._stop_event.set()

    async def run(self) -> "None":
        """
        runs the population loop. Populates right away, then once
        every interval until stop() is called.
        """
        while not self._stop_event.is_set():
            evicted = self.evict_expired()
            if evicted:
                logger.debug("label_cache_evicted", count=evicted)

            await self.populate_once()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
