"""Deployer-wide configuration for the Kubernetes app deployer."""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import EntryPointStyle, VolumeMountSpec, VolumeSpec


class VolumeClaimTemplateSettings(BaseModel):
    """Defaults for the per-instance claim of indexed workloads."""

    storage: str = "10Mi"
    storage_class_name: Optional[str] = None
    mount_path: str = "/data"


class StatefulSetSettings(BaseModel):
    """Stateful set defaults."""

    volume_claim_template: VolumeClaimTemplateSettings = Field(
        default_factory=VolumeClaimTemplateSettings
    )


class DeployerSettings(BaseSettings):
    """
    Deployer-wide defaults.

    Every value here can be overridden per deployment through the request's
    ``deployer.kubernetes.*`` properties. Values are read from
    ``KUBE_DEPLOYER_*`` environment variables (nested fields use ``__``,
    e.g. ``KUBE_DEPLOYER_STATEFUL_SET__VOLUME_CLAIM_TEMPLATE__STORAGE``).
    """

    model_config = SettingsConfigDict(
        env_prefix="KUBE_DEPLOYER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    namespace: str = "default"

    # Container environment, entries in key=value form
    environment_variables: list[str] = Field(default_factory=list)

    # Volumes are only attached when a mount with the same name exists
    volumes: list[VolumeSpec] = Field(default_factory=list)
    volume_mounts: list[VolumeMountSpec] = Field(default_factory=list)

    # key:value lists, see properties.parse_key_value_pairs
    node_selector: Optional[str] = None
    pod_annotations: Optional[str] = None
    service_annotations: Optional[str] = None

    image_pull_secret: Optional[str] = None
    image_pull_policy: str = "IfNotPresent"
    deployment_service_account_name: Optional[str] = None

    # Resources
    memory: str = "512Mi"
    cpu: str = "500m"

    # Probes
    liveness_probe_path: str = "/health"
    liveness_probe_delay: int = 10
    liveness_probe_period: int = 60
    liveness_probe_timeout: int = 2
    readiness_probe_path: str = "/info"
    readiness_probe_delay: int = 10
    readiness_probe_period: int = 10
    readiness_probe_timeout: int = 2

    default_port: int = 8080
    entry_point_style: EntryPointStyle = EntryPointStyle.SHELL
    host_network: bool = False

    # Load balancer
    create_load_balancer: bool = False
    minutes_to_wait_for_load_balancer: int = 5

    # Status thresholds
    max_terminated_error_restarts: int = 2
    max_crash_loop_back_off_restarts: int = 4

    stateful_set: StatefulSetSettings = Field(default_factory=StatefulSetSettings)
