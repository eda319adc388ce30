import asyncio
from datetime import date

import pytest
from prometheus_client import CollectorRegistry

from spotheus.errors import MissingCacheEntryError
from spotheus.label_cache import LabelCache
from spotheus.metrics import ExporterMetrics
from spotheus.models import CacheKey, Cluster, LabelledResource, ResourceKind


class FakeClock:
    def __init__(self, now: "float" = 1000.0) -> "None":
        self.now = now

    def __call__(self) -> "float":
        return self.now


class FakeLabelSource:
    """
    A label source returning pre-configured resources per cluster.
    Clusters mapped to an exception fail.
    """

    def __init__(
        self,
        resources: "dict[str, list[LabelledResource] | Exception]",
    ) -> "None":
        self._resources = resources
        self.calls: "list[tuple[str, str, str]]" = []

    async def get_cluster_resources(
        self,
        cluster: "Cluster",
        start_date: "str",
        end_date: "str",
    ) -> "list[LabelledResource]":
        self.calls.append((cluster.id, start_date, end_date))
        result = self._resources[cluster.id]
        if isinstance(result, Exception):
            raise result
        return result


class FakeMetadataClient:
    def __init__(self, labels: "dict[str, dict[str, str]]") -> "None":
        self._labels = labels
        self.calls: "list[tuple[ResourceKind, str, str]]" = []

    async def get_labels_for(
        self,
        kind: "ResourceKind",
        namespace: "str",
        identifier: "str",
    ) -> "dict[str, str]":
        self.calls.append((kind, namespace, identifier))
        if identifier not in self._labels:
            raise RuntimeError(f"{identifier} not found")
        return self._labels[identifier]


def make_cache(
    clusters: "list[Cluster] | None" = None,
    source: "FakeLabelSource | None" = None,
    **kwargs: "object",
) -> "LabelCache":
    return LabelCache(
        clusters or [],
        source=source or FakeLabelSource({}),
        today=lambda: date(2024, 3, 15),
        **kwargs,
    )


class TestLabelCacheLookup:
    def test_returns_stored_labels(self) -> "None":
        cache = make_cache(clock=FakeClock())
        key = CacheKey("o-foo", ResourceKind.DEPLOYMENT, "foo-ns", "foo")
        cache.set(key, {"team": "foo-team"})

        labels = cache.get_label_for(ResourceKind.DEPLOYMENT, "foo-ns", "o-foo", "foo")

        assert labels == {"team": "foo-team"}

    def test_missing_entry_raises(self) -> "None":
        cache = make_cache(clock=FakeClock())

        with pytest.raises(MissingCacheEntryError) as exc_info:
            cache.get_label_for(ResourceKind.DEPLOYMENT, "foo-ns", "o-foo", "foo")

        assert exc_info.value.key == CacheKey(
            "o-foo", ResourceKind.DEPLOYMENT, "foo-ns", "foo"
        )

    def test_expired_entry_is_a_miss(self) -> "None":
        clock = FakeClock()
        cache = make_cache(clock=clock, ttl_seconds=60)
        cache.set(
            CacheKey("o-foo", ResourceKind.NAMESPACE, "foo-ns", "foo-ns"),
            {"team": "foo-team"},
        )

        clock.now += 59
        assert cache.get_label_for(
            ResourceKind.NAMESPACE, "foo-ns", "o-foo", "foo-ns"
        ) == {"team": "foo-team"}

        clock.now += 1
        with pytest.raises(MissingCacheEntryError):
            cache.get_label_for(ResourceKind.NAMESPACE, "foo-ns", "o-foo", "foo-ns")

    def test_keys_do_not_collide_on_separators(self) -> "None":
        cache = make_cache(clock=FakeClock())
        cache.set(CacheKey("a:b", ResourceKind.JOB, "c", "d"), {"x": "1"})

        with pytest.raises(MissingCacheEntryError):
            cache.get_label_for(ResourceKind.JOB, "c", "a", "b:d")

    def test_readers_get_a_copy(self) -> "None":
        cache = make_cache(clock=FakeClock())
        key = CacheKey("o-foo", ResourceKind.DEPLOYMENT, "foo-ns", "foo")
        cache.set(key, {"team": "foo-team"})

        labels = cache.get_label_for(ResourceKind.DEPLOYMENT, "foo-ns", "o-foo", "foo")
        labels["team"] = "changed"

        assert cache.get_label_for(
            ResourceKind.DEPLOYMENT, "foo-ns", "o-foo", "foo"
        ) == {"team": "foo-team"}

    def test_evicts_expired_entries(self) -> "None":
        clock = FakeClock()
        cache = make_cache(clock=clock, ttl_seconds=60)
        cache.set(CacheKey("o-foo", ResourceKind.JOB, "ns", "old"), {})
        clock.now += 30
        cache.set(CacheKey("o-foo", ResourceKind.JOB, "ns", "new"), {})
        clock.now += 30

        assert cache.evict_expired() == 1
        assert len(cache) == 1

    def test_rejects_non_positive_interval(self) -> "None":
        with pytest.raises(ValueError):
            make_cache(interval_seconds=0)


class TestLabelCachePopulation:
    @pytest.mark.asyncio
    async def test_stores_inline_labels(self, cluster: "Cluster") -> "None":
        source = FakeLabelSource(
            {
                cluster.id: [
                    LabelledResource(
                        ResourceKind.DEPLOYMENT, "foo-ns", "foo", {"team": "foo-team"}
                    ),
                    LabelledResource(
                        ResourceKind.JOB, "foo-ns", "foo-job-27752145", {"team": "t"}
                    ),
                    LabelledResource(
                        ResourceKind.NAMESPACE, "foo-ns", "foo-ns", {"team": "foo-team"}
                    ),
                    LabelledResource(ResourceKind.DAEMON_SET, "foo-ns", "agent", None),
                ]
            }
        )
        cache = make_cache([cluster], source)

        written = await cache.populate_once()

        assert written == 4
        assert source.calls == [(cluster.id, "2024-03-01", "2024-04-01")]
        assert cache.get_label_for(
            ResourceKind.DEPLOYMENT, "foo-ns", cluster.id, "foo"
        ) == {"team": "foo-team"}
        # job identifiers are stored under their normalized name
        assert cache.get_label_for(
            ResourceKind.JOB, "foo-ns", cluster.id, "foo-job"
        ) == {"team": "t"}
        assert cache.get_label_for(
            ResourceKind.NAMESPACE, "foo-ns", cluster.id, "foo-ns"
        ) == {"team": "foo-team"}
        assert cache.get_label_for(
            ResourceKind.DAEMON_SET, "foo-ns", cluster.id, "agent"
        ) == {}
        assert cache.last_population > 0

    @pytest.mark.asyncio
    async def test_failing_cluster_is_skipped(self) -> "None":
        broken = Cluster(id="o-broken", name="ocean-broken")
        healthy = Cluster(id="o-healthy", name="ocean-healthy")
        source = FakeLabelSource(
            {
                broken.id: RuntimeError("billing unavailable"),
                healthy.id: [
                    LabelledResource(ResourceKind.DEPLOYMENT, "ns", "app", {"a": "b"}),
                ],
            }
        )
        cache = make_cache([broken, healthy], source)

        assert await cache.populate_once() == 1
        assert cache.get_label_for(
            ResourceKind.DEPLOYMENT, "ns", healthy.id, "app"
        ) == {"a": "b"}

    @pytest.mark.asyncio
    async def test_publishes_cache_state(
        self,
        cluster: "Cluster",
        registry: "CollectorRegistry",
    ) -> "None":
        source = FakeLabelSource(
            {
                cluster.id: [
                    LabelledResource(ResourceKind.DEPLOYMENT, "ns", "app", {}),
                    LabelledResource(ResourceKind.NAMESPACE, "ns", "ns", {}),
                ]
            }
        )
        cache = make_cache(
            [cluster],
            source,
            clock=FakeClock(1234.0),
            exporter_metrics=ExporterMetrics(registry),
        )

        await cache.populate_once()

        assert registry.get_sample_value("spotheus_label_cache_entries") == 2.0
        assert registry.get_sample_value(
            "spotheus_label_cache_last_population_timestamp_seconds"
        ) == 1234.0

    @pytest.mark.asyncio
    async def test_overwrites_existing_entries(self, cluster: "Cluster") -> "None":
        key = CacheKey(cluster.id, ResourceKind.DEPLOYMENT, "ns", "app")
        source = FakeLabelSource(
            {cluster.id: [LabelledResource(key.kind, "ns", "app", {"v": "new"})]}
        )
        cache = make_cache([cluster], source)
        cache.set(key, {"v": "old"})

        await cache.populate_once()

        assert cache.get_label_for(key.kind, "ns", cluster.id, "app") == {"v": "new"}

    @pytest.mark.asyncio
    async def test_uses_metadata_client(self, cluster: "Cluster") -> "None":
        source = FakeLabelSource(
            {
                cluster.id: [
                    LabelledResource(ResourceKind.JOB, "ns", "sync-27752145"),
                    LabelledResource(ResourceKind.DEPLOYMENT, "ns", "gone"),
                    LabelledResource(ResourceKind.NAMESPACE, "ns", "ns"),
                ]
            }
        )
        metadata = FakeMetadataClient(
            {"sync-27752145": {"team": "sync"}, "ns": {"team": "ns-team"}}
        )
        cache = make_cache([cluster], source, metadata_client=metadata)

        assert await cache.populate_once() == 2
        # the metadata source is asked for the real resource name
        assert (ResourceKind.JOB, "ns", "sync-27752145") in metadata.calls
        assert cache.get_label_for(ResourceKind.JOB, "ns", cluster.id, "sync") == {
            "team": "sync"
        }
        with pytest.raises(MissingCacheEntryError):
            cache.get_label_for(ResourceKind.DEPLOYMENT, "ns", cluster.id, "gone")


class TestLabelCacheLoop:
    @pytest.mark.asyncio
    async def test_populates_until_stopped(self, cluster: "Cluster") -> "None":
        cache: "LabelCache"

        class StoppingSource(FakeLabelSource):
            async def get_cluster_resources(
                self,
                cluster: "Cluster",
                start_date: "str",
                end_date: "str",
            ) -> "list[LabelledResource]":
                resources = await super().get_cluster_resources(
                    cluster, start_date, end_date
                )
                cache.stop()
                return resources

        source = StoppingSource(
            {cluster.id: [LabelledResource(ResourceKind.NAMESPACE, "ns", "ns", {})]}
        )
        cache = make_cache([cluster], source, interval_seconds=3600)

        await asyncio.wait_for(cache.run(), timeout=1)

        assert len(source.calls) == 1
        assert len(cache) == 1
