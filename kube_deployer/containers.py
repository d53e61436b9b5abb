"""Container and pod spec construction."""

import json
import re
from typing import Optional

from kubernetes.client import (
    V1Container,
    V1ContainerPort,
    V1EnvVar,
    V1EnvVarSource,
    V1HTTPGetAction,
    V1LocalObjectReference,
    V1ObjectFieldSelector,
    V1PodSpec,
    V1Probe,
    V1ResourceRequirements,
    V1VolumeMount,
)

from .identity import POD_INDEX_LABEL
from .models import (
    DeploymentRequest,
    EntryPointStyle,
    ProbeSpec,
    ResolvedSpec,
    WorkloadDescriptor,
    WorkloadShape,
)

GROUP_ENV = "APPLICATION_GROUP"
INSTANCE_INDEX_ENV = "INSTANCE_INDEX"
APPLICATION_JSON_ENV = "APPLICATION_JSON"

_ENV_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")


def to_env_name(key: str) -> str:
    """Convert a property key such as ``server.port`` to ``SERVER_PORT``."""
    return _ENV_NAME_CHARS.sub("_", key).upper()


class ContainerBuilder:
    """Builds the application container and pod spec for a deployment."""

    def __init__(self, spec: ResolvedSpec, descriptor: WorkloadDescriptor):
        """
        Initialize the builder.

        Args:
            spec: Resolved deployment options
            descriptor: Selected workload shape
        """
        self.spec = spec
        self.descriptor = descriptor

    @property
    def indexed(self) -> bool:
        return self.descriptor.shape == WorkloadShape.INDEXED

    def build_env(self, request: DeploymentRequest) -> list[V1EnvVar]:
        """Environment entries for the container."""
        env: list[V1EnvVar] = []

        if self.spec.entry_point_style == EntryPointStyle.SHELL:
            env.extend(
                V1EnvVar(name=to_env_name(key), value=value)
                for key, value in request.app_properties.items()
            )
        elif self.spec.entry_point_style == EntryPointStyle.BOOT and request.app_properties:
            env.append(
                V1EnvVar(
                    name=APPLICATION_JSON_ENV,
                    value=json.dumps(request.app_properties, sort_keys=True),
                )
            )

        env.extend(
            V1EnvVar(name=name, value=value)
            for name, value in self.spec.environment_variables.items()
        )

        if self.spec.group:
            env.append(V1EnvVar(name=GROUP_ENV, value=self.spec.group))

        if self.indexed:
            env.append(
                V1EnvVar(
                    name=INSTANCE_INDEX_ENV,
                    value_from=V1EnvVarSource(
                        field_ref=V1ObjectFieldSelector(
                            field_path=f"metadata.labels['{POD_INDEX_LABEL}']"
                        )
                    ),
                )
            )
        return env

    def build_args(self, request: DeploymentRequest) -> Optional[list[str]]:
        """Entrypoint arguments; exec style also passes properties as --key=value."""
        args = list(request.command_line_arguments)
        if self.spec.entry_point_style == EntryPointStyle.EXEC:
            args.extend(f"--{key}={value}" for key, value in request.app_properties.items())
        return args or None

    def build_resources(self) -> V1ResourceRequirements:
        amounts = {"cpu": self.spec.cpu, "memory": self.spec.memory}
        return V1ResourceRequirements(limits=dict(amounts), requests=dict(amounts))

    def build_probe(self, probe: ProbeSpec) -> V1Probe:
        return V1Probe(
            http_get=V1HTTPGetAction(path=probe.path, port=self.spec.container_port),
            initial_delay_seconds=probe.initial_delay,
            period_seconds=probe.period,
            timeout_seconds=probe.timeout,
        )

    def build_volume_mounts(self, deployment_id: str) -> Optional[list[V1VolumeMount]]:
        mounts = [mount.to_k8s() for mount in self.spec.volume_mounts]
        template = self.descriptor.volume_claim_template
        if self.indexed and template is not None:
            mounts.append(V1VolumeMount(name=deployment_id, mount_path=template.mount_path))
        return mounts or None

    def build_container(
        self, deployment_id: str, image: str, request: DeploymentRequest
    ) -> V1Container:
        """
        Build the application container.

        Args:
            deployment_id: Deployment id, also used as container name
            image: Container image
            request: Deployment request

        Returns:
            V1Container
        """
        return V1Container(
            name=deployment_id,
            image=image,
            image_pull_policy=self.spec.image_pull_policy,
            args=self.build_args(request),
            env=self.build_env(request) or None,
            ports=[V1ContainerPort(container_port=self.spec.container_port)],
            resources=self.build_resources(),
            liveness_probe=self.build_probe(self.spec.liveness_probe),
            readiness_probe=self.build_probe(self.spec.readiness_probe),
            volume_mounts=self.build_volume_mounts(deployment_id),
        )

    def build_pod_spec(
        self, deployment_id: str, image: str, request: DeploymentRequest
    ) -> V1PodSpec:
        """
        Build the pod spec shared by every workload shape.

        Args:
            deployment_id: Deployment id
            image: Container image
            request: Deployment request

        Returns:
            V1PodSpec
        """
        pod_spec = V1PodSpec(
            containers=[self.build_container(deployment_id, image, request)],
            volumes=[volume.to_k8s() for volume in self.spec.volumes] or None,
            node_selector=dict(self.spec.node_selector) or None,
            host_network=self.spec.host_network or None,
            restart_policy="Always",
        )

        if self.spec.image_pull_secret:
            pod_spec.image_pull_secrets = [
                V1LocalObjectReference(name=self.spec.image_pull_secret)
            ]

        # Without an explicit account the namespace's default one is used
        if self.spec.service_account_name:
            pod_spec.service_account_name = self.spec.service_account_name

        return pod_spec
