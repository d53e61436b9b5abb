"""Data models for the Kubernetes app deployer."""

from enum import Enum
from typing import Any, Optional, Union

from kubernetes.client import (
    V1ConfigMapVolumeSource,
    V1Deployment,
    V1EmptyDirVolumeSource,
    V1HostPathVolumeSource,
    V1NFSVolumeSource,
    V1PersistentVolumeClaimVolumeSource,
    V1Pod,
    V1SecretVolumeSource,
    V1Service,
    V1StatefulSet,
    V1Volume,
    V1VolumeMount,
)
from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntryPointStyle(str, Enum):
    """How application properties are handed to the container."""

    EXEC = "exec"
    SHELL = "shell"
    BOOT = "boot"


class WorkloadShape(str, Enum):
    """Kind of workload built for a deployment."""

    SIMPLE = "simple"
    SCALED = "scaled"
    INDEXED = "indexed"


class PodManagement(str, Enum):
    """Instance bring-up ordering."""

    NONE = "none"
    SEQUENTIAL = "sequential"


class DeploymentState(str, Enum):
    """Application deployment state."""

    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"
    PARTIAL = "partial"
    ERROR = "error"
    UNKNOWN = "unknown"


class DeploymentRequest(BaseModel):
    """Request to deploy one application."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    artifact: str = Field(..., min_length=1, description="Artifact reference, e.g. docker:repo/app:tag")
    app_properties: dict[str, str] = Field(default_factory=dict)
    deployment_properties: dict[str, str] = Field(default_factory=dict)
    command_line_arguments: list[str] = Field(default_factory=list)


class HostPathSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str
    type: Optional[str] = None


class ClaimSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    claim_name: str = Field(..., alias="claimName")
    read_only: Optional[bool] = Field(default=None, alias="readOnly")


class NfsSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    server: str
    path: str
    read_only: Optional[bool] = Field(default=None, alias="readOnly")


class EmptyDirSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    medium: Optional[str] = None
    size_limit: Optional[str] = Field(default=None, alias="sizeLimit")


class ConfigMapSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str


class SecretSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    secret_name: str = Field(..., alias="secretName")


_VOLUME_SOURCES = (
    "host_path",
    "persistent_volume_claim",
    "nfs",
    "empty_dir",
    "config_map",
    "secret",
)


class VolumeSpec(BaseModel):
    """
    Volume record.

    Accepts the camelCase field names used in Kubernetes manifests, e.g.
    ``{name: data, hostPath: {path: /var/data}}``. Exactly one source block
    must be given.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    host_path: Optional[HostPathSource] = Field(default=None, alias="hostPath")
    persistent_volume_claim: Optional[ClaimSource] = Field(default=None, alias="persistentVolumeClaim")
    nfs: Optional[NfsSource] = None
    empty_dir: Optional[EmptyDirSource] = Field(default=None, alias="emptyDir")
    config_map: Optional[ConfigMapSource] = Field(default=None, alias="configMap")
    secret: Optional[SecretSource] = None

    @model_validator(mode="after")
    def check_single_source(self) -> "VolumeSpec":
        sources = [s for s in _VOLUME_SOURCES if getattr(self, s) is not None]
        if len(sources) != 1:
            raise ValueError(
                f"Volume '{self.name}' must define exactly one source, found {len(sources)}"
            )
        return self

    def to_k8s(self) -> V1Volume:
        """Convert to a Kubernetes volume."""
        volume = V1Volume(name=self.name)
        if self.host_path:
            volume.host_path = V1HostPathVolumeSource(
                path=self.host_path.path, type=self.host_path.type
            )
        elif self.persistent_volume_claim:
            volume.persistent_volume_claim = V1PersistentVolumeClaimVolumeSource(
                claim_name=self.persistent_volume_claim.claim_name,
                read_only=self.persistent_volume_claim.read_only,
            )
        elif self.nfs:
            volume.nfs = V1NFSVolumeSource(
                server=self.nfs.server, path=self.nfs.path, read_only=self.nfs.read_only
            )
        elif self.empty_dir:
            volume.empty_dir = V1EmptyDirVolumeSource(
                medium=self.empty_dir.medium, size_limit=self.empty_dir.size_limit
            )
        elif self.config_map:
            volume.config_map = V1ConfigMapVolumeSource(name=self.config_map.name)
        elif self.secret:
            volume.secret = V1SecretVolumeSource(secret_name=self.secret.secret_name)
        return volume


class VolumeMountSpec(BaseModel):
    """Volume mount record, matched to a volume by name."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    mount_path: str = Field(..., alias="mountPath")
    read_only: bool = Field(default=False, alias="readOnly")
    sub_path: Optional[str] = Field(default=None, alias="subPath")

    def to_k8s(self) -> V1VolumeMount:
        """Convert to a Kubernetes volume mount."""
        return V1VolumeMount(
            name=self.name,
            mount_path=self.mount_path,
            read_only=self.read_only,
            sub_path=self.sub_path,
        )


class VolumeClaimTemplateSpec(BaseModel):
    """Per-instance storage claim settings for indexed workloads."""

    model_config = ConfigDict(frozen=True)

    storage: str = "10Mi"
    storage_class_name: Optional[str] = None
    access_mode: str = "ReadWriteOnce"
    mount_path: str = "/data"


class ProbeSpec(BaseModel):
    """HTTP probe settings."""

    model_config = ConfigDict(frozen=True)

    path: str
    initial_delay: int = Field(ge=0)
    period: int = Field(ge=1)
    timeout: int = Field(ge=1)


class ResolvedSpec(BaseModel):
    """Effective deployment options for one request."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    group: Optional[str] = None
    count: int = Field(default=1, ge=1)
    indexed: bool = False

    environment_variables: dict[str, str] = Field(default_factory=dict)
    volumes: tuple[VolumeSpec, ...] = ()
    volume_mounts: tuple[VolumeMountSpec, ...] = ()
    node_selector: dict[str, str] = Field(default_factory=dict)
    pod_annotations: dict[str, str] = Field(default_factory=dict)
    service_annotations: dict[str, str] = Field(default_factory=dict)

    image_pull_secret: Optional[str] = None
    image_pull_policy: str = "IfNotPresent"
    service_account_name: Optional[str] = None

    memory: str = "512Mi"
    cpu: str = "500m"
    liveness_probe: ProbeSpec
    readiness_probe: ProbeSpec

    container_port: int = 8080
    entry_point_style: EntryPointStyle = EntryPointStyle.SHELL
    host_network: bool = False

    create_load_balancer: bool = False
    minutes_to_wait_for_load_balancer: int = Field(default=5, ge=0)
    max_terminated_error_restarts: int = Field(default=2, ge=0)
    max_crash_loop_back_off_restarts: int = Field(default=4, ge=0)

    volume_claim_template: VolumeClaimTemplateSpec = Field(default_factory=VolumeClaimTemplateSpec)


class WorkloadDescriptor(BaseModel):
    """Shape of the workload selected for a deployment."""

    model_config = ConfigDict(frozen=True)

    shape: WorkloadShape
    count: int = Field(ge=1)
    pod_management: PodManagement = PodManagement.NONE
    volume_claim_template: Optional[VolumeClaimTemplateSpec] = None


Workload = Union[V1Pod, V1Deployment, V1StatefulSet]


class ResourceSet(BaseModel):
    """Cluster objects to create for one deployment."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    deployment_id: str
    namespace: str
    shape: WorkloadShape
    labels: dict[str, str]
    selector: dict[str, str]
    workload: Workload
    service: Optional[V1Service] = None

    @property
    def workload_kind(self) -> str:
        return self.workload.kind

    def objects(self) -> list[Any]:
        """Objects in creation order; the service goes first so stateful sets can refer to it."""
        if self.service is None:
            return [self.workload]
        return [self.service, self.workload]

    def claim_names(self) -> list[str]:
        """Names of the per-instance storage claims the workload will materialize."""
        if not isinstance(self.workload, V1StatefulSet):
            return []
        templates = self.workload.spec.volume_claim_templates or []
        replicas = self.workload.spec.replicas or 0
        return [
            f"{template.metadata.name}-{self.workload.metadata.name}-{ordinal}"
            for template in templates
            for ordinal in range(replicas)
        ]


class InstanceStatus(BaseModel):
    """Status of a single application instance."""

    instance_id: str
    state: DeploymentState
    attributes: dict[str, str] = Field(default_factory=dict)


class AppStatus(BaseModel):
    """Aggregate status of a deployment."""

    deployment_id: str
    state: DeploymentState
    instances: dict[str, InstanceStatus] = Field(default_factory=dict)
