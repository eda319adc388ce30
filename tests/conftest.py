import pytest
from prometheus_client import CollectorRegistry

from spotheus.models import Cluster


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def cluster() -> "Cluster":
    return Cluster(id="o-foo", name="ocean-foo", controller_cluster_id="foo")
