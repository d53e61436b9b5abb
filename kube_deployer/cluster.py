"""Cluster API access for the Kubernetes app deployer."""

import base64
import logging
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from kubernetes import client, config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, StorageV1Api
from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel

from .errors import ClusterApiError, StatusUnavailableError

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Resource kinds handled through the Cluster API."""

    POD = "Pod"
    SERVICE = "Service"
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    SERVICE_ACCOUNT = "ServiceAccount"
    STORAGE_CLASS = "StorageClass"


CLUSTER_SCOPED_KINDS = frozenset({ResourceKind.STORAGE_CLASS})


class ClusterConfig(BaseModel):
    """Cluster connection configuration."""

    name: str = "default"
    kubeconfig_path: Optional[str] = None
    kubeconfig_data: Optional[str] = None  # base64
    context: Optional[str] = None
    namespace: str = "default"


class ClusterApi(ABC):
    """
    Operations the deployer needs from a cluster.

    ``namespace`` is ignored for cluster-scoped kinds.
    """

    @abstractmethod
    def create(self, kind: ResourceKind, body: Any, namespace: Optional[str] = None) -> Any:
        """
        Create a resource.

        Raises:
            ClusterApiError: If the cluster rejects the resource
        """

    @abstractmethod
    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Optional[Any]:
        """
        Read a resource.

        Returns:
            The resource, or None if not found
        """

    @abstractmethod
    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        """
        Delete a resource.

        Returns:
            True if deleted, False if not found
        """

    @abstractmethod
    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[dict[str, str]] = None,
    ) -> list[Any]:
        """
        List resources matching a label selector.

        Raises:
            StatusUnavailableError: If the namespace does not exist
        """

    @abstractmethod
    def get_version(self) -> dict[str, Any]:
        """Cluster version information."""


class ClusterConnection:
    """
    API handles for one cluster.

    Inline kubeconfig data is written to a temporary file for the client
    loader. The file is removed on close, or as soon as loading fails.
    """

    def __init__(self, cluster_config: ClusterConfig):
        """
        Load the client configuration and create the API handles.

        Args:
            cluster_config: Cluster configuration

        Raises:
            ValueError: If no client configuration can be loaded
        """
        self.config = cluster_config
        self._temp_kubeconfig: Optional[Path] = None
        self._apis: dict[str, Any] = {}

        try:
            self._load_config()
            api_client = ApiClient()
        except Exception as e:
            self._remove_temp_kubeconfig()
            raise ValueError(
                f"Failed to initialize connection to cluster {cluster_config.name}: {e}"
            ) from e

        self._apis = {
            "api_client": api_client,
            "core_v1": CoreV1Api(api_client),
            "apps_v1": AppsV1Api(api_client),
            "storage_v1": StorageV1Api(api_client),
        }

    def _load_config(self) -> None:
        if self.config.kubeconfig_data:
            with tempfile.NamedTemporaryFile(mode="wb", suffix=".kubeconfig", delete=False) as f:
                self._temp_kubeconfig = Path(f.name)
                f.write(base64.b64decode(self.config.kubeconfig_data))
            config.load_kube_config(
                config_file=str(self._temp_kubeconfig), context=self.config.context
            )
        elif self.config.kubeconfig_path:
            config.load_kube_config(
                config_file=self.config.kubeconfig_path, context=self.config.context
            )
        else:
            config.load_incluster_config()
        logger.debug(f"Loaded client configuration for cluster {self.config.name}")

    def _remove_temp_kubeconfig(self) -> None:
        if self._temp_kubeconfig is not None:
            self._temp_kubeconfig.unlink(missing_ok=True)
            self._temp_kubeconfig = None

    def _api(self, name: str) -> Any:
        api = self._apis.get(name)
        if api is None:
            raise RuntimeError(f"Connection to cluster {self.config.name} is closed")
        return api

    @property
    def core_v1(self) -> CoreV1Api:
        return self._api("core_v1")

    @property
    def apps_v1(self) -> AppsV1Api:
        return self._api("apps_v1")

    @property
    def storage_v1(self) -> StorageV1Api:
        return self._api("storage_v1")

    @property
    def api_client(self) -> ApiClient:
        return self._api("api_client")

    def close(self):
        """Close the API client and remove any temporary kubeconfig."""
        api_client = self._apis.get("api_client")
        if api_client is not None:
            api_client.close()
        self._apis = {}
        self._remove_temp_kubeconfig()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# kind -> (api attribute, method suffix)
_OPERATIONS: dict[ResourceKind, tuple[str, str]] = {
    ResourceKind.POD: ("core_v1", "pod"),
    ResourceKind.SERVICE: ("core_v1", "service"),
    ResourceKind.SERVICE_ACCOUNT: ("core_v1", "service_account"),
    ResourceKind.DEPLOYMENT: ("apps_v1", "deployment"),
    ResourceKind.STATEFUL_SET: ("apps_v1", "stateful_set"),
    ResourceKind.STORAGE_CLASS: ("storage_v1", "storage_class"),
}


class KubernetesClusterApi(ClusterApi):
    """ClusterApi backed by the official Kubernetes client."""

    def __init__(self, cluster: ClusterConnection, namespace: Optional[str] = None):
        """
        Initialize the Cluster API adapter.

        Args:
            cluster: Cluster connection
            namespace: Namespace used when a call does not name one
        """
        self.cluster = cluster
        self.namespace = namespace or cluster.config.namespace

    def _method(self, kind: ResourceKind, verb: str):
        api_name, suffix = _OPERATIONS[kind]
        api = getattr(self.cluster, api_name)
        if kind in CLUSTER_SCOPED_KINDS:
            return getattr(api, f"{verb}_{suffix}")
        return getattr(api, f"{verb}_namespaced_{suffix}")

    def _scope(self, kind: ResourceKind, namespace: Optional[str]) -> dict[str, str]:
        if kind in CLUSTER_SCOPED_KINDS:
            return {}
        return {"namespace": namespace or self.namespace}

    def create(self, kind: ResourceKind, body: Any, namespace: Optional[str] = None) -> Any:
        name = body.metadata.name if body.metadata else None
        try:
            return self._method(kind, "create")(body=body, **self._scope(kind, namespace))
        except ApiException as e:
            logger.error(f"Failed to create {kind.value} {name}: {e.reason}", exc_info=True)
            raise ClusterApiError("create", kind.value, name, e.status, e.reason) from e

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Optional[Any]:
        try:
            return self._method(kind, "read")(name=name, **self._scope(kind, namespace))
        except ApiException as e:
            if e.status == 404:
                return None
            raise ClusterApiError("read", kind.value, name, e.status, e.reason) from e

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        try:
            self._method(kind, "delete")(
                name=name, propagation_policy="Background", **self._scope(kind, namespace)
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise ClusterApiError("delete", kind.value, name, e.status, e.reason) from e

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[dict[str, str]] = None,
    ) -> list[Any]:
        selector = None
        if label_selector:
            selector = ",".join([f"{k}={v}" for k, v in label_selector.items()])

        try:
            result = self._method(kind, "list")(
                label_selector=selector, **self._scope(kind, namespace)
            )
        except ApiException as e:
            if e.status == 404:
                raise StatusUnavailableError(
                    f"Cannot list {kind.value} in namespace {namespace or self.namespace}"
                ) from e
            raise ClusterApiError("list", kind.value, selector, e.status, e.reason) from e
        return result.items

    def get_version(self) -> dict[str, Any]:
        try:
            version_info = client.VersionApi(self.cluster.api_client).get_code()
        except ApiException as e:
            raise ClusterApiError("read", "Version", None, e.status, e.reason) from e
        return {
            "major": version_info.major,
            "minor": version_info.minor,
            "git_version": version_info.git_version,
            "platform": version_info.platform,
        }
