from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple


class ResourceKind(str, Enum):
    """
    ResourceKind enumerates the resource types reported by
    the billing source and the label cache.
    """

    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    DAEMON_SET = "DaemonSet"
    JOB = "Job"
    NAMESPACE = "Namespace"
    # synthetic kind for cost the billing source can't attribute
    # to any workload (e.g. detached volumes)
    UNATTRIBUTED_STORAGE = "UnattributedStorage"


WORKLOAD_KINDS: "frozenset[ResourceKind]" = frozenset(
    {
        ResourceKind.DEPLOYMENT,
        ResourceKind.STATEFUL_SET,
        ResourceKind.DAEMON_SET,
        ResourceKind.JOB,
    }
)

NON_WORKLOAD_KINDS: "frozenset[ResourceKind]" = frozenset(
    {ResourceKind.UNATTRIBUTED_STORAGE}
)


@dataclass(frozen=True, slots=True)
class Cluster:
    """
    Cluster represents a single Ocean cluster. Fetched
    once at startup.
    """

    id: "str"
    name: "str"
    # the id of the cluster controller, used by the per namespace
    # costs endpoint
    controller_cluster_id: "str" = ""


@dataclass(frozen=True, slots=True)
class CostRecord:
    """
    CostRecord is one row of billing data for a single
    workload instance of a namespace, for one billing window.
    """

    kind: "ResourceKind"
    name: "str"
    namespace: "str"
    total: "float"
    storage: "float" = 0.0
    compute: "float" = 0.0

    @property
    def network(self) -> "float":
        """
        network cost isn't reported by the billing source, it's
        whatever remains after storage and compute.
        """
        return self.total - self.storage - self.compute


@dataclass(frozen=True, slots=True)
class ClusterCost:
    """
    ClusterCost holds the aggregated costs of one cluster
    for one billing window.
    """

    # top-level total as reported by the billing source
    total: "float"
    records: "list[CostRecord]" = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class LabelledResource:
    """
    LabelledResource is a namespace or workload discovered
    while populating the label cache.
    """

    kind: "ResourceKind"
    namespace: "str"
    name: "str"
    # None when the billing payload doesn't carry labels inline
    labels: "dict[str, str] | None" = None


class CacheKey(NamedTuple):
    cluster: "str"
    kind: "ResourceKind"
    namespace: "str"
    identifier: "str"


@dataclass(frozen=True, slots=True)
class ContainerSuggestion:
    name: "str"
    requested_cpu: "float"
    suggested_cpu: "float"
    requested_memory: "float"
    suggested_memory: "float"


@dataclass(frozen=True, slots=True)
class ResourceSuggestion:
    """
    ResourceSuggestion is a right-sizing suggestion for a
    workload. CPU is in millicores and memory in MiB, as
    reported by the Ocean API.
    """

    kind: "str"
    namespace: "str"
    name: "str"
    requested_cpu: "float"
    suggested_cpu: "float"
    requested_memory: "float"
    suggested_memory: "float"
    containers: "list[ContainerSuggestion]" = field(default_factory=list)
