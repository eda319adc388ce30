from typing import Protocol, Sequence

from spotheus.models import (
    Cluster,
    ClusterCost,
    LabelledResource,
    ResourceKind,
    ResourceSuggestion,
)


class BillingClient(Protocol):
    """
    BillingClient fetches per workload costs of a cluster,
    grouped by a resource label. Dates are `YYYY-MM-DD`
    strings, the end date is exclusive.
    """

    async def get_cluster_aggregated_cost(
        self,
        cluster_id: "str",
        start_date: "str",
        end_date: "str",
        group_by: "str",
    ) -> "ClusterCost": ...


class ClusterLabelSource(Protocol):
    """
    ClusterLabelSource lists the namespaces and workloads
    found in a cluster's billing data, along with their labels
    when the payload carries them.
    """

    async def get_cluster_resources(
        self,
        cluster: "Cluster",
        start_date: "str",
        end_date: "str",
    ) -> "Sequence[LabelledResource]": ...


class MetadataClient(Protocol):
    """
    MetadataClient looks up the labels of a single resource.
    """

    async def get_labels_for(
        self,
        kind: "ResourceKind",
        namespace: "str",
        identifier: "str",
    ) -> "dict[str, str]": ...


class SuggestionsClient(Protocol):
    async def list_resource_suggestions(
        self,
        cluster_id: "str",
    ) -> "Sequence[ResourceSuggestion]": ...
