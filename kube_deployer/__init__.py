"""Kube Deployer - Deploys applications to Kubernetes and reports their state."""

from .artifacts import ArtifactResolver, DockerArtifactResolver
from .cluster import ClusterApi, ClusterConfig, ClusterConnection, KubernetesClusterApi, ResourceKind
from .config import DeployerSettings, StatefulSetSettings, VolumeClaimTemplateSettings
from .deployer import KubernetesAppDeployer
from .errors import (
    ClusterApiError,
    ConfigurationError,
    DeployerError,
    DeploymentNotFoundError,
    StatusUnavailableError,
)
from .identity import create_deployment_id, create_labels, create_selector
from .models import (
    AppStatus,
    DeploymentRequest,
    DeploymentState,
    EntryPointStyle,
    InstanceStatus,
    PodManagement,
    ResolvedSpec,
    ResourceSet,
    VolumeClaimTemplateSpec,
    VolumeMountSpec,
    VolumeSpec,
    WorkloadDescriptor,
    WorkloadShape,
)
from .properties import (
    COUNT_PROPERTY_KEY,
    GROUP_PROPERTY_KEY,
    INDEXED_PROPERTY_KEY,
    PROPERTY_PREFIX,
    PropertyResolver,
    format_key_value_pairs,
    normalize_storage_size,
    parse_key_value_pairs,
)
from .resources import ResourceBuilder, build_resource_set
from .shape import select_workload
from .status import StatusAggregator
from .waiter import ExternalAddressWaiter

__version__ = "0.1.0"

__all__ = [
    # Entry point
    "KubernetesAppDeployer",
    # Cluster access
    "ClusterApi",
    "ClusterConfig",
    "ClusterConnection",
    "KubernetesClusterApi",
    "ResourceKind",
    # Artifacts
    "ArtifactResolver",
    "DockerArtifactResolver",
    # Configuration
    "DeployerSettings",
    "StatefulSetSettings",
    "VolumeClaimTemplateSettings",
    "PropertyResolver",
    "PROPERTY_PREFIX",
    "GROUP_PROPERTY_KEY",
    "COUNT_PROPERTY_KEY",
    "INDEXED_PROPERTY_KEY",
    "parse_key_value_pairs",
    "format_key_value_pairs",
    "normalize_storage_size",
    # Building
    "select_workload",
    "ResourceBuilder",
    "build_resource_set",
    "create_deployment_id",
    "create_labels",
    "create_selector",
    # Status
    "StatusAggregator",
    "ExternalAddressWaiter",
    # Errors
    "DeployerError",
    "ConfigurationError",
    "ClusterApiError",
    "DeploymentNotFoundError",
    "StatusUnavailableError",
    # Models
    "DeploymentRequest",
    "ResolvedSpec",
    "WorkloadDescriptor",
    "WorkloadShape",
    "PodManagement",
    "EntryPointStyle",
    "ResourceSet",
    "VolumeSpec",
    "VolumeMountSpec",
    "VolumeClaimTemplateSpec",
    "DeploymentState",
    "InstanceStatus",
    "AppStatus",
]
