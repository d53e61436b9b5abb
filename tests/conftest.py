"""Pytest configuration and fixtures for kube-deployer tests."""

from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client import (
    V1ContainerState,
    V1ContainerStateRunning,
    V1ContainerStateTerminated,
    V1ContainerStateWaiting,
    V1ContainerStatus,
    V1LoadBalancerIngress,
    V1LoadBalancerStatus,
    V1ObjectMeta,
    V1OwnerReference,
    V1Pod,
    V1PodCondition,
    V1PodStatus,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1ServiceStatus,
)

from kube_deployer import (
    ClusterApi,
    ClusterApiError,
    DeployerSettings,
    DeploymentRequest,
    ResourceKind,
    StatusUnavailableError,
    create_labels,
)
from kube_deployer.cluster import CLUSTER_SCOPED_KINDS


class InMemoryClusterApi(ClusterApi):
    """ClusterApi fake keeping resources in a dict."""

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace
        self.resources: dict[tuple[ResourceKind, str, str], Any] = {}
        self.created: list[tuple[ResourceKind, str]] = []
        self.deleted: list[tuple[ResourceKind, str]] = []
        self.failures: dict[tuple[str, ResourceKind], ClusterApiError] = {}
        self.unavailable = False

    def _key(self, kind: ResourceKind, name: str, namespace: Optional[str]) -> tuple:
        scope = "" if kind in CLUSTER_SCOPED_KINDS else (namespace or self.namespace)
        return (kind, scope, name)

    def fail(self, operation: str, kind: ResourceKind, status: int = 500, reason: str = "Internal"):
        self.failures[(operation, kind)] = ClusterApiError(operation, kind.value, None, status, reason)

    def _check(self, operation: str, kind: ResourceKind):
        if (operation, kind) in self.failures:
            raise self.failures[(operation, kind)]

    def create(self, kind, body, namespace=None):
        self._check("create", kind)
        key = self._key(kind, body.metadata.name, namespace)
        if key in self.resources:
            raise ClusterApiError("create", kind.value, body.metadata.name, 409, "Conflict")
        self.resources[key] = body
        self.created.append((kind, body.metadata.name))
        return body

    def add(self, kind: ResourceKind, body: Any, namespace: Optional[str] = None):
        """Store an object as if the cluster created it."""
        self.resources[self._key(kind, body.metadata.name, namespace)] = body

    def get(self, kind, name, namespace=None):
        self._check("read", kind)
        return self.resources.get(self._key(kind, name, namespace))

    def delete(self, kind, name, namespace=None):
        self._check("delete", kind)
        removed = self.resources.pop(self._key(kind, name, namespace), None)
        if removed is None:
            return False
        self.deleted.append((kind, name))
        return True

    def list(self, kind, namespace=None, label_selector=None):
        if self.unavailable:
            raise StatusUnavailableError(f"namespace {namespace} not found")
        self._check("list", kind)
        scope = "" if kind in CLUSTER_SCOPED_KINDS else (namespace or self.namespace)
        selector = label_selector or {}
        return [
            body
            for (k, ns, _), body in self.resources.items()
            if k == kind
            and ns == scope
            and all((body.metadata.labels or {}).get(key) == value for key, value in selector.items())
        ]

    def get_version(self):
        return {"major": "1", "minor": "29", "git_version": "v1.29.0", "platform": "linux/amd64"}


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.config.namespace = "default"
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.storage_v1 = MagicMock(spec=client.StorageV1Api)
    return mock_conn


@pytest.fixture
def fake_cluster():
    """In-memory Cluster API."""
    return InMemoryClusterApi()


@pytest.fixture
def default_settings():
    """Deployer settings with built-in defaults only."""
    return DeployerSettings()


@pytest.fixture
def volume_settings():
    """Deployer settings with deployer-wide volumes and no mounts."""
    return DeployerSettings(
        volumes=[
            {"name": "testhostpath", "hostPath": {"path": "/test/hostPath"}},
            {"name": "testpvc", "persistentVolumeClaim": {"claimName": "testClaim", "readOnly": True}},
            {"name": "testnfs", "nfs": {"server": "10.0.0.1:111", "path": "/test/nfs"}},
        ],
    )


@pytest.fixture
def make_request():
    """Factory for deployment requests."""

    def _make(
        name: str = "app-test",
        properties: Optional[dict[str, str]] = None,
        app_properties: Optional[dict[str, str]] = None,
        **kwargs,
    ) -> DeploymentRequest:
        return DeploymentRequest(
            name=name,
            artifact="docker:example/test-app:latest",
            deployment_properties=properties or {},
            app_properties=app_properties or {},
            **kwargs,
        )

    return _make


@pytest.fixture
def make_pod():
    """Factory for observed pods."""

    def _make(
        name: str,
        deployment_id: str = "app-test",
        phase: str = "Running",
        ready: bool = False,
        waiting_reason: Optional[str] = None,
        exit_code: Optional[int] = None,
        restart_count: int = 0,
        owner_kind: Optional[str] = None,
        labels: Optional[dict[str, str]] = None,
        pod_ip: str = "10.1.0.5",
        last_exit_code: Optional[int] = None,
    ) -> V1Pod:
        if waiting_reason is not None:
            state = V1ContainerState(waiting=V1ContainerStateWaiting(reason=waiting_reason))
        elif exit_code is not None:
            state = V1ContainerState(
                terminated=V1ContainerStateTerminated(exit_code=exit_code, reason="Error")
            )
        else:
            state = V1ContainerState(running=V1ContainerStateRunning())

        last_state = None
        if last_exit_code is not None:
            last_state = V1ContainerState(
                terminated=V1ContainerStateTerminated(exit_code=last_exit_code, reason="Error")
            )

        owners = None
        if owner_kind is not None:
            owners = [
                V1OwnerReference(
                    api_version="apps/v1", kind=owner_kind, name=deployment_id, uid="owner-uid"
                )
            ]

        return V1Pod(
            api_version="v1",
            kind="Pod",
            metadata=V1ObjectMeta(
                name=name,
                namespace="default",
                uid=f"uid-{name}",
                labels={**create_labels(deployment_id), **(labels or {})},
                owner_references=owners,
            ),
            status=V1PodStatus(
                phase=phase,
                pod_ip=pod_ip,
                host_ip="192.168.0.10",
                conditions=[V1PodCondition(type="Ready", status="True" if ready else "False")],
                container_statuses=[
                    V1ContainerStatus(
                        name=deployment_id,
                        image="example/test-app:latest",
                        image_id="",
                        ready=ready,
                        restart_count=restart_count,
                        state=state,
                        last_state=last_state,
                    )
                ],
            ),
        )

    return _make


@pytest.fixture
def make_service():
    """Factory for observed services."""

    def _make(
        deployment_id: str = "app-test",
        cluster_ip: Optional[str] = "10.96.0.12",
        ingress_ip: Optional[str] = None,
        ingress_hostname: Optional[str] = None,
        port: int = 8080,
    ) -> V1Service:
        ingress = None
        if ingress_ip or ingress_hostname:
            ingress = [V1LoadBalancerIngress(ip=ingress_ip, hostname=ingress_hostname)]
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=V1ObjectMeta(
                name=deployment_id, namespace="default", labels=create_labels(deployment_id)
            ),
            spec=V1ServiceSpec(
                cluster_ip=cluster_ip,
                ports=[V1ServicePort(port=port)],
                type="LoadBalancer" if ingress else "ClusterIP",
            ),
            status=V1ServiceStatus(load_balancer=V1LoadBalancerStatus(ingress=ingress)),
        )

    return _make
