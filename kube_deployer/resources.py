"""Kubernetes resource construction for a deployment."""

import logging
from typing import Optional

from kubernetes.client import (
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1Pod,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1VolumeResourceRequirements,
)

from .containers import ContainerBuilder
from .identity import (
    MAX_CRASH_LOOP_BACK_OFF_RESTARTS_ANNOTATION,
    MAX_TERMINATED_ERROR_RESTARTS_ANNOTATION,
    create_deployment_id,
    create_labels,
    create_selector,
)
from .models import (
    DeploymentRequest,
    PodManagement,
    ResolvedSpec,
    ResourceSet,
    VolumeClaimTemplateSpec,
    WorkloadDescriptor,
    WorkloadShape,
)

logger = logging.getLogger(__name__)

_POD_MANAGEMENT_POLICIES = {
    PodManagement.SEQUENTIAL: "OrderedReady",
    PodManagement.NONE: "Parallel",
}


class ResourceBuilder:
    """
    Builds the resource set for one deployment.

    The output depends only on the request, the resolved options and the
    selected shape, so a retried deploy produces identical objects.
    """

    def __init__(self, spec: ResolvedSpec, descriptor: WorkloadDescriptor):
        """
        Initialize the builder.

        Args:
            spec: Resolved deployment options
            descriptor: Selected workload shape
        """
        self.spec = spec
        self.descriptor = descriptor
        self.containers = ContainerBuilder(spec, descriptor)

    def _metadata(
        self, name: str, labels: dict[str, str], annotations: Optional[dict[str, str]] = None
    ) -> V1ObjectMeta:
        return V1ObjectMeta(
            name=name,
            namespace=self.spec.namespace,
            labels=dict(labels),
            annotations=dict(annotations) if annotations else None,
        )

    def _threshold_annotations(self) -> dict[str, str]:
        return {
            MAX_TERMINATED_ERROR_RESTARTS_ANNOTATION: str(self.spec.max_terminated_error_restarts),
            MAX_CRASH_LOOP_BACK_OFF_RESTARTS_ANNOTATION: str(
                self.spec.max_crash_loop_back_off_restarts
            ),
        }

    def _pod_template(self, labels: dict[str, str], pod_spec: V1PodSpec) -> V1PodTemplateSpec:
        return V1PodTemplateSpec(
            metadata=V1ObjectMeta(
                labels=dict(labels),
                annotations=dict(self.spec.pod_annotations) or None,
            ),
            spec=pod_spec,
        )

    def build_pod(self, deployment_id: str, labels: dict[str, str], pod_spec: V1PodSpec) -> V1Pod:
        return V1Pod(
            api_version="v1",
            kind="Pod",
            metadata=self._metadata(
                deployment_id, labels, {**self.spec.pod_annotations, **self._threshold_annotations()}
            ),
            spec=pod_spec,
        )

    def build_deployment(
        self,
        deployment_id: str,
        labels: dict[str, str],
        selector: dict[str, str],
        pod_spec: V1PodSpec,
    ) -> V1Deployment:
        return V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=self._metadata(deployment_id, labels, self._threshold_annotations()),
            spec=V1DeploymentSpec(
                replicas=self.descriptor.count,
                selector=V1LabelSelector(match_labels=dict(selector)),
                template=self._pod_template(labels, pod_spec),
            ),
        )

    def build_claim_template(
        self, deployment_id: str, labels: dict[str, str], template: VolumeClaimTemplateSpec
    ) -> V1PersistentVolumeClaim:
        """Per-instance claim template; storage is set on both limit and request."""
        return V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=V1ObjectMeta(name=deployment_id, labels=dict(labels)),
            spec=V1PersistentVolumeClaimSpec(
                access_modes=[template.access_mode],
                storage_class_name=template.storage_class_name,
                resources=V1VolumeResourceRequirements(
                    limits={"storage": template.storage},
                    requests={"storage": template.storage},
                ),
            ),
        )

    def build_stateful_set(
        self,
        deployment_id: str,
        labels: dict[str, str],
        selector: dict[str, str],
        pod_spec: V1PodSpec,
    ) -> V1StatefulSet:
        template = self.descriptor.volume_claim_template
        claim_templates = None
        if template is not None:
            claim_templates = [self.build_claim_template(deployment_id, labels, template)]

        return V1StatefulSet(
            api_version="apps/v1",
            kind="StatefulSet",
            metadata=self._metadata(deployment_id, labels, self._threshold_annotations()),
            spec=V1StatefulSetSpec(
                replicas=self.descriptor.count,
                service_name=deployment_id,
                pod_management_policy=_POD_MANAGEMENT_POLICIES[self.descriptor.pod_management],
                selector=V1LabelSelector(match_labels=dict(selector)),
                template=self._pod_template(labels, pod_spec),
                volume_claim_templates=claim_templates,
            ),
        )

    def build_service(
        self, deployment_id: str, labels: dict[str, str], selector: dict[str, str]
    ) -> V1Service:
        """
        Build the service in front of the deployment.

        A load balancer is only requested when asked for. Indexed workloads
        otherwise get a headless service so each instance has its own DNS name.
        """
        service_spec = V1ServiceSpec(
            selector=dict(selector),
            ports=[
                V1ServicePort(
                    name="port-" + str(self.spec.container_port),
                    port=self.spec.container_port,
                    target_port=self.spec.container_port,
                    protocol="TCP",
                )
            ],
        )
        if self.spec.create_load_balancer:
            service_spec.type = "LoadBalancer"
        elif self.descriptor.shape == WorkloadShape.INDEXED:
            service_spec.type = "ClusterIP"
            service_spec.cluster_ip = "None"
        else:
            service_spec.type = "ClusterIP"

        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=self._metadata(deployment_id, labels, self.spec.service_annotations),
            spec=service_spec,
        )

    def build(self, request: DeploymentRequest, image: str) -> ResourceSet:
        """
        Build every resource for the deployment.

        Args:
            request: Deployment request
            image: Resolved container image

        Returns:
            ResourceSet

        Raises:
            ConfigurationError: If the deployment id is invalid
        """
        deployment_id = create_deployment_id(request.name, self.spec.group)
        labels = create_labels(deployment_id, self.spec.group)
        selector = create_selector(deployment_id)
        pod_spec = self.containers.build_pod_spec(deployment_id, image, request)

        if self.descriptor.shape == WorkloadShape.INDEXED:
            workload = self.build_stateful_set(deployment_id, labels, selector, pod_spec)
        elif self.descriptor.shape == WorkloadShape.SCALED:
            workload = self.build_deployment(deployment_id, labels, selector, pod_spec)
        else:
            workload = self.build_pod(deployment_id, labels, pod_spec)

        resource_set = ResourceSet(
            deployment_id=deployment_id,
            namespace=self.spec.namespace,
            shape=self.descriptor.shape,
            labels=labels,
            selector=selector,
            workload=workload,
            service=self.build_service(deployment_id, labels, selector),
        )
        logger.debug(
            f"Built {workload.kind} {deployment_id} with {self.descriptor.count} instance(s)"
        )
        return resource_set


def build_resource_set(
    request: DeploymentRequest,
    spec: ResolvedSpec,
    descriptor: WorkloadDescriptor,
    image: str,
) -> ResourceSet:
    """Build the resource set for a request; see ResourceBuilder.build."""
    return ResourceBuilder(spec, descriptor).build(request, image)
