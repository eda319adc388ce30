from dataclasses import dataclass
from typing import Iterator, Mapping, Sequence

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram
from prometheus_client.core import GaugeMetricFamily

from spotheus.errors import LabelMappingError
from spotheus.labels import LabelMappings
from spotheus.models import Cluster, CostRecord, ResourceSuggestion

NAMESPACE = "spotinst_ocean_aws"

CLUSTER_LABELS: "list[str]" = ["ocean_id", "ocean_name"]
NAMESPACE_LABELS: "list[str]" = [*CLUSTER_LABELS, "namespace"]
WORKLOAD_LABELS: "list[str]" = [*NAMESPACE_LABELS, "name", "workload"]
RESOURCE_LABELS: "list[str]" = [*WORKLOAD_LABELS, "resource"]


@dataclass(frozen=True, slots=True)
class GaugeDescriptor:
    name: "str"
    documentation: "str"
    label_names: "tuple[str, ...]"

    def family(self) -> "GaugeMetricFamily":
        return GaugeMetricFamily(
            self.name, self.documentation, labels=list(self.label_names)
        )


class MetricBatch:
    """
    MetricBatch accumulates the gauge samples of one collection pass.
    Label values must be given in the order the descriptor declares
    its label names.
    """

    def __init__(self, descriptors: "Sequence[GaugeDescriptor]") -> "None":
        self._descriptors = list(descriptors)
        self._samples: "dict[str, list[tuple[list[str], float]]]" = {
            d.name: [] for d in self._descriptors
        }

    def add(
        self,
        descriptor: "GaugeDescriptor",
        label_values: "Sequence[str]",
        value: "float",
    ) -> "None":
        if len(label_values) != len(descriptor.label_names):
            raise ValueError(
                f"{descriptor.name} expects {len(descriptor.label_names)} "
                f"label values, got {len(label_values)}"
            )
        self._samples[descriptor.name].append((list(label_values), value))

    def samples(self, name: "str") -> "list[tuple[list[str], float]]":
        return list(self._samples[name])

    def __len__(self) -> "int":
        return sum(len(s) for s in self._samples.values())

    def families(self) -> "Iterator[GaugeMetricFamily]":
        """
        builds one gauge family per descriptor. Descriptors without
        samples still yield an empty family.
        """
        for descriptor in self._descriptors:
            family = descriptor.family()
            for label_values, value in self._samples[descriptor.name]:
                family.add_metric(label_values, value)
            yield family


def _cluster_label_values(cluster: "Cluster") -> "list[str]":
    return [cluster.id, cluster.name]


class CostMetrics:
    """
    declares the four cost metric families. Namespace and workload
    metrics carry the mapped resource labels after the built-in ones:
     - cluster_cost: total reported by the billing source.
     - namespace_cost: sum of the workload costs of a namespace.
     - workload_cost: total cost of a workload.
     - workload_resource_cost: storage, compute and network cost of
     a workload, told apart by the resource label.
    """

    def __init__(self, mappings: "LabelMappings | None" = None) -> "None":
        self._mappings = mappings or LabelMappings()
        mapped = self._mappings.label_names()

        clashes = set(mapped) & set(RESOURCE_LABELS)
        if clashes or len(set(mapped)) != len(mapped):
            raise LabelMappingError(
                f"mapped label names must be unique and must not clash "
                f"with {RESOURCE_LABELS}: {mapped}"
            )

        self.cluster_cost = GaugeDescriptor(
            f"{NAMESPACE}_cluster_cost",
            "Total cost of an ocean cluster",
            tuple(CLUSTER_LABELS),
        )
        self.namespace_cost = GaugeDescriptor(
            f"{NAMESPACE}_namespace_cost",
            "Total cost of a namespace",
            (*NAMESPACE_LABELS, *mapped),
        )
        self.workload_cost = GaugeDescriptor(
            f"{NAMESPACE}_workload_cost",
            "Total cost of a workload",
            (*WORKLOAD_LABELS, *mapped),
        )
        self.resource_cost = GaugeDescriptor(
            f"{NAMESPACE}_workload_resource_cost",
            "Total cost for the given resource of a workload",
            (*RESOURCE_LABELS, *mapped),
        )

    @property
    def descriptors(self) -> "list[GaugeDescriptor]":
        return [
            self.cluster_cost,
            self.namespace_cost,
            self.workload_cost,
            self.resource_cost,
        ]

    def new_batch(self) -> "MetricBatch":
        return MetricBatch(self.descriptors)

    def add_cluster_cost(
        self, batch: "MetricBatch", cluster: "Cluster", value: "float"
    ) -> "None":
        batch.add(self.cluster_cost, _cluster_label_values(cluster), value)

    def add_namespace_cost(
        self,
        batch: "MetricBatch",
        cluster: "Cluster",
        namespace: "str",
        labels: "Mapping[str, str]",
        value: "float",
    ) -> "None":
        label_values = [
            *_cluster_label_values(cluster),
            namespace,
            *self._mappings.label_values(labels),
        ]
        batch.add(self.namespace_cost, label_values, value)

    def add_workload_cost(
        self,
        batch: "MetricBatch",
        cluster: "Cluster",
        record: "CostRecord",
        labels: "Mapping[str, str]",
    ) -> "None":
        """
        adds the workload total and its storage, compute and network
        breakdown. All four samples share the same identifying labels.
        """
        base = [
            *_cluster_label_values(cluster),
            record.namespace,
            record.name,
            record.kind.value.lower(),
        ]
        mapped = self._mappings.label_values(labels)

        batch.add(self.workload_cost, [*base, *mapped], record.total)
        for resource, value in (
            ("storage", record.storage),
            ("compute", record.compute),
            ("network", record.network),
        ):
            batch.add(self.resource_cost, [*base, resource, *mapped], value)


class SuggestionMetrics:
    """
    declares the right-sizing metric families. Values are passed
    through in the units reported by the Ocean API.
    """

    def __init__(self) -> "None":
        workload_labels = ("ocean_id", "ocean_name", "workload", "namespace", "name")
        container_labels = (*workload_labels, "container")

        def gauge(
            name: "str", doc: "str", labels: "tuple[str, ...]"
        ) -> "GaugeDescriptor":
            return GaugeDescriptor(f"{NAMESPACE}_{name}", doc, labels)

        self.requested_workload_cpu = gauge(
            "workload_cpu_requested",
            "The number of actual CPU units requested by a workload",
            workload_labels,
        )
        self.suggested_workload_cpu = gauge(
            "workload_cpu_suggested",
            "The number of CPU units suggested for a workload",
            workload_labels,
        )
        self.requested_workload_memory = gauge(
            "workload_memory_requested",
            "The number of actual memory units requested by a workload",
            workload_labels,
        )
        self.suggested_workload_memory = gauge(
            "workload_memory_suggested",
            "The number of memory units suggested for a workload",
            workload_labels,
        )
        self.requested_container_cpu = gauge(
            "workload_container_cpu_requested",
            "The number of actual CPU units requested by a workload's container",
            container_labels,
        )
        self.suggested_container_cpu = gauge(
            "workload_container_cpu_suggested",
            "The number of CPU units suggested for a workload's container",
            container_labels,
        )
        self.requested_container_memory = gauge(
            "workload_container_memory_requested",
            "The number of actual memory units requested by a workload's container",
            container_labels,
        )
        self.suggested_container_memory = gauge(
            "workload_container_memory_suggested",
            "The number of memory units suggested for a workload's container",
            container_labels,
        )

    @property
    def descriptors(self) -> "list[GaugeDescriptor]":
        return [
            self.requested_workload_cpu,
            self.suggested_workload_cpu,
            self.requested_workload_memory,
            self.suggested_workload_memory,
            self.requested_container_cpu,
            self.suggested_container_cpu,
            self.requested_container_memory,
            self.suggested_container_memory,
        ]

    def new_batch(self) -> "MetricBatch":
        return MetricBatch(self.descriptors)

    def add_suggestion(
        self,
        batch: "MetricBatch",
        cluster: "Cluster",
        suggestion: "ResourceSuggestion",
    ) -> "None":
        label_values = [
            *_cluster_label_values(cluster),
            suggestion.kind.lower(),
            suggestion.namespace,
            suggestion.name,
        ]
        batch.add(self.requested_workload_cpu, label_values, suggestion.requested_cpu)
        batch.add(self.suggested_workload_cpu, label_values, suggestion.suggested_cpu)
        batch.add(
            self.requested_workload_memory, label_values, suggestion.requested_memory
        )
        batch.add(
            self.suggested_workload_memory, label_values, suggestion.suggested_memory
        )

        for container in suggestion.containers:
            container_values = [*label_values, container.name]
            batch.add(
                self.requested_container_cpu, container_values, container.requested_cpu
            )
            batch.add(
                self.suggested_container_cpu, container_values, container.suggested_cpu
            )
            batch.add(
                self.requested_container_memory,
                container_values,
                container.requested_memory,
            )
            batch.add(
                self.suggested_container_memory,
                container_values,
                container.suggested_memory,
            )


class ExporterMetrics:
    """
    self-observability metrics of the exporter: collection timings,
    errors and the state of the label cache.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._collection_duration: "Histogram" = Histogram(
            "spotheus_collection_duration_seconds",
            "Duration of collection passes",
            ["collector"],
            registry=registry,
        )
        self._collection_errors: "Counter" = Counter(
            "spotheus_collection_errors_total",
            "Total number of collection errors by collector and stage",
            ["collector", "stage"],
            registry=registry,
        )
        self._last_collection_success: "Gauge" = Gauge(
            "spotheus_last_collection_success_timestamp_seconds",
            "Unix timestamp of the last collection pass without errors",
            ["collector"],
            registry=registry,
        )
        self._label_cache_entries: "Gauge" = Gauge(
            "spotheus_label_cache_entries",
            "Number of entries in the label cache",
            registry=registry,
        )
        self._label_cache_last_population: "Gauge" = Gauge(
            "spotheus_label_cache_last_population_timestamp_seconds",
            "Unix timestamp of the last label cache population",
            registry=registry,
        )

    def observe_collection_duration(
        self, collector: "str", duration_seconds: "float"
    ) -> "None":
        self._collection_duration.labels(collector=collector).observe(
            duration_seconds
        )

    def inc_collection_error(self, collector: "str", stage: "str") -> "None":
        self._collection_errors.labels(collector=collector, stage=stage).inc()

    def set_last_collection_success(
        self, collector: "str", timestamp: "float"
    ) -> "None":
        self._last_collection_success.labels(collector=collector).set(timestamp)

    def set_label_cache_state(
        self, entries: "int", last_population: "float"
    ) -> "None":
        self._label_cache_entries.set(entries)
        self._label_cache_last_population.set(last_population)
