from typing import Any

import httpx
import structlog

from spotheus.errors import SpotinstAPIError
from spotheus.models import (
    Cluster,
    ClusterCost,
    ContainerSuggestion,
    CostRecord,
    LabelledResource,
    ResourceKind,
    ResourceSuggestion,
)

logger = structlog.get_logger()

SPOTINST_BASE_URL = "https://api.spotinst.io"

# each tuple is (payload_key, resource_kind) for the workloads
# listed under a namespace by the per namespace costs endpoint
NAMESPACE_WORKLOAD_KEYS: "list[tuple[str, ResourceKind]]" = [
    ("deployments", ResourceKind.DEPLOYMENT),
    ("statefulSets", ResourceKind.STATEFUL_SET),
    ("daemonSets", ResourceKind.DAEMON_SET),
    ("jobs", ResourceKind.JOB),
]

_KINDS_BY_NAME: "dict[str, ResourceKind]" = {
    kind.value.lower(): kind for kind in ResourceKind
}


def parse_kind(value: "str | None") -> "ResourceKind | None":
    """
    resolves a resource type reported by the API, ignoring case.
    Returns None for types we don't know about.
    """
    if not value:
        return None
    return _KINDS_BY_NAME.get(value.lower())


def _float(value: "Any") -> "float":
    # the API reports null for components without cost
    return float(value or 0.0)


def _component_total(resource: "dict[str, Any]", component: "str") -> "float":
    return _float((resource.get(component) or {}).get("total"))


class SpotinstClient:
    """
    SpotinstClient talks to the Spot API. It implements the
    BillingClient, ClusterLabelSource and SuggestionsClient
    protocols for Ocean clusters on AWS.
    """

    def __init__(
        self,
        token: "str",
        account_id: "str" = "",
        base_url: "str" = SPOTINST_BASE_URL,
        timeout: "float" = 30.0,
    ) -> "None":
        params: "dict[str, str]" = {}
        if account_id:
            params["accountId"] = account_id
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            params=params,
        )

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def _items(self, method: "str", path: "str", **kwargs: "Any") -> "list":
        """
        sends a request and unwraps the items of the Spot
        response envelope.
        """
        logger.debug("spotinst_request", method=method, path=path)
        resp = await self._client.request(method, path, **kwargs)
        resp.raise_for_status()

        items = (resp.json().get("response") or {}).get("items")
        if not isinstance(items, list):
            raise SpotinstAPIError(f"unexpected response payload for {path}")
        return items

    async def list_clusters(self) -> "list[Cluster]":
        """
        lists the Ocean clusters of the account.
        """
        items = await self._items("GET", "/ocean/aws/k8s/cluster")
        return [
            Cluster(
                id=item["id"],
                name=item.get("name") or "",
                controller_cluster_id=item.get("controllerClusterId") or "",
            )
            for item in items
        ]

    async def get_cluster_aggregated_cost(
        self,
        cluster_id: "str",
        start_date: "str",
        end_date: "str",
        group_by: "str",
    ) -> "ClusterCost":
        """
        fetches the costs of a cluster for the given window, with
        the detailed costs grouped by the given resource label.
        """
        items = await self._items(
            "POST",
            f"/ocean/aws/k8s/cluster/{cluster_id}/aggregatedCosts",
            json={"startTime": start_date, "endTime": end_date, "groupBy": group_by},
        )
        # the aggregation yields exactly one result
        if not items:
            raise SpotinstAPIError(f"no aggregated costs for cluster {cluster_id}")

        total_for_duration = (items[0].get("result") or {}).get(
            "totalForDuration"
        ) or {}
        total = _float((total_for_duration.get("summary") or {}).get("total"))
        aggregations = (total_for_duration.get("detailedCosts") or {}).get(
            "aggregations"
        ) or {}

        records: "list[CostRecord]" = []
        for aggregation in aggregations.values():
            # usually there is only one resource per group, unless the
            # same workload exists in multiple namespaces
            for resource in aggregation.get("resources") or []:
                metadata = resource.get("metadata") or {}
                kind = parse_kind(metadata.get("type"))
                if kind is None:
                    logger.warning(
                        "spotinst_unknown_resource_type",
                        ocean_id=cluster_id,
                        type=metadata.get("type"),
                        name=metadata.get("name"),
                    )
                    continue

                records.append(
                    CostRecord(
                        kind=kind,
                        name=metadata.get("name") or "",
                        namespace=metadata.get("namespace") or "",
                        total=_float(resource.get("total")),
                        storage=_component_total(resource, "storage"),
                        compute=_component_total(resource, "compute"),
                    )
                )

        logger.debug(
            "spotinst_aggregated_costs_done",
            ocean_id=cluster_id,
            record_count=len(records),
        )
        return ClusterCost(total=total, records=records)

    async def get_cluster_resources(
        self,
        cluster: "Cluster",
        start_date: "str",
        end_date: "str",
    ) -> "list[LabelledResource]":
        """
        lists the namespaces and workloads found in the per namespace
        costs of a cluster. That payload embeds the resource labels.
        """
        items = await self._items(
            "GET",
            f"/mcs/kubernetes/cluster/{cluster.controller_cluster_id}/costs",
            params={"fromDate": start_date, "toDate": end_date},
        )

        resources: "list[LabelledResource]" = []
        for cluster_cost in items:
            for namespace in cluster_cost.get("namespaces") or []:
                namespace_name = namespace.get("namespace") or ""

                for key, kind in NAMESPACE_WORKLOAD_KEYS:
                    for workload in namespace.get(key) or []:
                        resources.append(
                            LabelledResource(
                                kind=kind,
                                namespace=namespace_name,
                                name=workload.get("name") or "",
                                labels=workload.get("labels"),
                            )
                        )

                resources.append(
                    LabelledResource(
                        kind=ResourceKind.NAMESPACE,
                        namespace=namespace_name,
                        name=namespace_name,
                        labels=namespace.get("labels"),
                    )
                )

        return resources

    async def list_resource_suggestions(
        self,
        cluster_id: "str",
    ) -> "list[ResourceSuggestion]":
        """
        lists the right-sizing suggestions of a cluster's workloads.
        """
        items = await self._items(
            "POST",
            f"/ocean/aws/k8s/cluster/{cluster_id}/rightSizing/suggestion",
            json={},
        )
        return [
            ResourceSuggestion(
                kind=item.get("resourceType") or "",
                namespace=item.get("namespace") or "",
                name=item.get("resourceName") or "",
                requested_cpu=_float(item.get("requestedCPU")),
                suggested_cpu=_float(item.get("suggestedCPU")),
                requested_memory=_float(item.get("requestedMemory")),
                suggested_memory=_float(item.get("suggestedMemory")),
                containers=[
                    ContainerSuggestion(
                        name=container.get("name") or "",
                        requested_cpu=_float(container.get("requestedCPU")),
                        suggested_cpu=_float(container.get("suggestedCPU")),
                        requested_memory=_float(container.get("requestedMemory")),
                        suggested_memory=_float(container.get("suggestedMemory")),
                    )
                    for container in item.get("containers") or []
                ],
            )
            for item in items
        ]
