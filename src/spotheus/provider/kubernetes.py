import asyncio
from typing import Any, Callable

import structlog
from kubernetes import client, config

from spotheus.models import ResourceKind

logger = structlog.get_logger()


def load_kube_config() -> "None":
    """
    loads the in-cluster configuration, falling back to the
    local kubeconfig when running outside of a cluster.
    """
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class KubernetesMetadataClient:
    """
    KubernetesMetadataClient implements the MetadataClient protocol
    by reading resource labels from the Kubernetes API. The kubernetes
    client is blocking, so reads run in a worker thread.
    """

    def __init__(self, api_client: "client.ApiClient | None" = None) -> "None":
        self._core = client.CoreV1Api(api_client)
        self._apps = client.AppsV1Api(api_client)
        self._batch = client.BatchV1Api(api_client)

    def _reader(self, kind: "ResourceKind") -> "Callable[..., Any]":
        readers: "dict[ResourceKind, Callable[..., Any]]" = {
            ResourceKind.DEPLOYMENT: self._apps.read_namespaced_deployment,
            ResourceKind.STATEFUL_SET: self._apps.read_namespaced_stateful_set,
            ResourceKind.DAEMON_SET: self._apps.read_namespaced_daemon_set,
            ResourceKind.JOB: self._batch.read_namespaced_job,
        }
        if kind not in readers:
            raise ValueError(f"no kubernetes reader for resource kind {kind.value}")
        return readers[kind]

    async def get_labels_for(
        self,
        kind: "ResourceKind",
        namespace: "str",
        identifier: "str",
    ) -> "dict[str, str]":
        """
        fetches the labels of a namespace or workload.
        """
        if kind is ResourceKind.NAMESPACE:
            resource = await asyncio.to_thread(self._core.read_namespace, identifier)
        else:
            resource = await asyncio.to_thread(
                self._reader(kind), identifier, namespace
            )

        logger.debug(
            "kubernetes_labels_fetched",
            kind=kind.value,
            namespace=namespace,
            name=identifier,
        )
        return dict(resource.metadata.labels or {})
