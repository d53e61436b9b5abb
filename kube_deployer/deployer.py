"""Kubernetes app deployer: deploy, status and undeploy."""

import logging
import re
from typing import Any, Optional

from .artifacts import ArtifactResolver, DockerArtifactResolver
from .cluster import ClusterApi, ResourceKind
from .config import DeployerSettings
from .errors import ClusterApiError, DeploymentNotFoundError, StatusUnavailableError
from .identity import (
    MAX_CRASH_LOOP_BACK_OFF_RESTARTS_ANNOTATION,
    MAX_TERMINATED_ERROR_RESTARTS_ANNOTATION,
    create_selector,
)
from .models import (
    AppStatus,
    DeploymentRequest,
    DeploymentState,
    ResolvedSpec,
    ResourceSet,
    WorkloadShape,
)
from .properties import PropertyResolver
from .resources import build_resource_set
from .shape import select_workload
from .status import StatusAggregator
from .waiter import ExternalAddressWaiter

logger = logging.getLogger(__name__)

_WORKLOAD_KINDS = (ResourceKind.STATEFUL_SET, ResourceKind.DEPLOYMENT)

# First release that labels stateful set pods with their ordinal
POD_INDEX_LABEL_MIN_VERSION = (1, 28)

_THRESHOLD_ANNOTATIONS = (
    MAX_TERMINATED_ERROR_RESTARTS_ANNOTATION,
    MAX_CRASH_LOOP_BACK_OFF_RESTARTS_ANNOTATION,
)

# Deletion order: workloads before the pods they own, service last
_UNDEPLOY_KINDS = (
    ResourceKind.STATEFUL_SET,
    ResourceKind.DEPLOYMENT,
    ResourceKind.POD,
    ResourceKind.SERVICE,
)


def _recorded_thresholds(objects: list[Any]) -> Optional[dict[str, str]]:
    """Annotations of the first object carrying restart thresholds."""
    for obj in objects:
        annotations = obj.metadata.annotations or {}
        if any(key in annotations for key in _THRESHOLD_ANNOTATIONS):
            return annotations
    return None


class KubernetesAppDeployer:
    """
    Deploys long-running applications to a Kubernetes cluster.

    Each call is computed from its inputs and the current cluster state; the
    deployer keeps no state between calls.
    """

    def __init__(
        self,
        settings: DeployerSettings,
        cluster: ClusterApi,
        artifact_resolver: Optional[ArtifactResolver] = None,
        waiter: Optional[ExternalAddressWaiter] = None,
    ):
        """
        Initialize the deployer.

        Args:
            settings: Deployer-wide defaults
            cluster: Cluster API
            artifact_resolver: Resolves artifact references to images
            waiter: Waits for load balancer addresses
        """
        self.settings = settings
        self.cluster = cluster
        self.artifact_resolver = artifact_resolver or DockerArtifactResolver()
        self.waiter = waiter or ExternalAddressWaiter(cluster)
        self.resolver = PropertyResolver(settings)

    @property
    def namespace(self) -> str:
        return self.settings.namespace

    def _plan(self, request: DeploymentRequest) -> tuple[ResolvedSpec, ResourceSet]:
        spec = self.resolver.resolve(request)
        descriptor = select_workload(spec)
        image = self.artifact_resolver.resolve_image(request.artifact)
        return spec, build_resource_set(request, spec, descriptor, image)

    def build(self, request: DeploymentRequest) -> ResourceSet:
        """
        Build the resources for a request without touching the cluster.

        Raises:
            ConfigurationError: If the request's options are malformed
        """
        return self._plan(request)[1]

    def deploy(self, request: DeploymentRequest) -> str:
        """
        Deploy an application.

        Resources are created service first. If a later create fails the
        earlier objects stay in place; call undeploy to clean up.

        Args:
            request: Deployment request

        Returns:
            Deployment id

        Raises:
            ConfigurationError: If the request's options are malformed
            ClusterApiError: If creating a resource fails
        """
        spec, resource_set = self._plan(request)
        deployment_id = resource_set.deployment_id

        logger.info(
            f"Deploying {request.name} as {resource_set.workload_kind} {deployment_id} "
            f"({spec.count} instance(s))"
        )
        if resource_set.shape == WorkloadShape.INDEXED:
            self._check_pod_index_label(deployment_id)
        for body in resource_set.objects():
            self.cluster.create(ResourceKind(body.kind), body, resource_set.namespace)
            logger.debug(f"Created {body.kind} {deployment_id}")

        if spec.create_load_balancer and spec.minutes_to_wait_for_load_balancer > 0:
            self._wait_for_load_balancer(deployment_id, spec.minutes_to_wait_for_load_balancer)

        return deployment_id

    def _check_pod_index_label(self, deployment_id: str) -> None:
        try:
            version = self.cluster.get_version()
        except ClusterApiError as e:
            logger.debug(f"Could not read cluster version: {e}")
            return

        # Providers report minors such as "27+"
        numbers = [re.match(r"\d+", str(version.get(part) or "")) for part in ("major", "minor")]
        if not all(numbers):
            return
        if tuple(int(n.group()) for n in numbers) < POD_INDEX_LABEL_MIN_VERSION:
            logger.warning(
                f"Cluster {version.get('git_version')} does not label pods with their ordinal; "
                f"INSTANCE_INDEX of {deployment_id} will be empty, the ordinal is the HOSTNAME suffix"
            )

    def _wait_for_load_balancer(self, deployment_id: str, minutes: int) -> None:
        # Address lookup failures do not fail the deploy
        try:
            self.waiter.wait_for_address(deployment_id, self.namespace, minutes)
        except ClusterApiError as e:
            logger.warning(f"Could not read load balancer for {deployment_id}: {e}", exc_info=True)

    def status(self, deployment_id: str) -> AppStatus:
        """
        Current status of a deployment.

        Args:
            deployment_id: Deployment id

        Returns:
            AppStatus; state is unknown when nothing is deployed

        Raises:
            ClusterApiError: If the cluster cannot be read
        """
        selector = create_selector(deployment_id)
        try:
            pods = self.cluster.list(ResourceKind.POD, self.namespace, selector)
            services = self.cluster.list(ResourceKind.SERVICE, self.namespace, selector)
            workloads = [
                workload
                for kind in _WORKLOAD_KINDS
                for workload in self.cluster.list(kind, self.namespace, selector)
            ]
        except StatusUnavailableError as e:
            logger.debug(f"Status of {deployment_id} unavailable: {e}")
            return AppStatus(deployment_id=deployment_id, state=DeploymentState.UNKNOWN)

        aggregator = StatusAggregator.from_annotations(
            _recorded_thresholds([*workloads, *pods]),
            self.settings.max_terminated_error_restarts,
            self.settings.max_crash_loop_back_off_restarts,
        )
        return aggregator.aggregate(deployment_id, pods, services, workloads)

    def undeploy(self, deployment_id: str) -> None:
        """
        Delete every resource of a deployment.

        Args:
            deployment_id: Deployment id

        Raises:
            DeploymentNotFoundError: If nothing is deployed under the id
            ClusterApiError: If a delete fails
        """
        selector = create_selector(deployment_id)
        logger.info(f"Undeploying {deployment_id}")

        deleted = 0
        owned_pods = False
        for kind in _UNDEPLOY_KINDS:
            try:
                resources = self.cluster.list(kind, self.namespace, selector)
            except StatusUnavailableError as e:
                raise DeploymentNotFoundError(deployment_id) from e

            if kind in _WORKLOAD_KINDS and resources:
                owned_pods = True
            for resource in resources:
                # Pods owned by a workload go away with it
                if kind == ResourceKind.POD and (owned_pods or resource.metadata.owner_references):
                    continue
                if self.cluster.delete(kind, resource.metadata.name, self.namespace):
                    deleted += 1
                    logger.debug(f"Deleted {kind.value} {resource.metadata.name}")

        if deleted == 0:
            raise DeploymentNotFoundError(deployment_id)

    def environment_info(self) -> dict[str, Any]:
        """Information about the deployer and the target cluster."""
        return {
            "deployer": "kube-deployer",
            "namespace": self.namespace,
            "cluster": self.cluster.get_version(),
        }
