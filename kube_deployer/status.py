"""Reduction of observed pod state to application deployment state."""

import logging
from typing import Any, Iterable, Optional

from kubernetes.client import V1ContainerStatus, V1Pod, V1Service

from .identity import (
    MAX_CRASH_LOOP_BACK_OFF_RESTARTS_ANNOTATION,
    MAX_TERMINATED_ERROR_RESTARTS_ANNOTATION,
    POD_INDEX_LABEL,
)
from .models import AppStatus, DeploymentState, InstanceStatus

logger = logging.getLogger(__name__)

# Waiting reasons the kubelet will not recover from without a new spec
UNRECOVERABLE_WAITING_REASONS = frozenset(
    {
        "ErrImagePull",
        "ImagePullBackOff",
        "InvalidImageName",
        "CreateContainerConfigError",
        "CreateContainerError",
    }
)
CRASH_LOOP_REASON = "CrashLoopBackOff"


def external_address(service: Optional[V1Service]) -> Optional[str]:
    """First load balancer ingress address of a service, if one is assigned."""
    if service is None or service.status is None or service.status.load_balancer is None:
        return None
    ingress = service.status.load_balancer.ingress
    if not ingress:
        return None
    return ingress[0].ip or ingress[0].hostname


def _ordinal(pod: V1Pod) -> Optional[str]:
    labels = pod.metadata.labels or {}
    if POD_INDEX_LABEL in labels:
        return labels[POD_INDEX_LABEL]
    for owner in pod.metadata.owner_references or []:
        if owner.kind == "StatefulSet":
            return pod.metadata.name.rsplit("-", 1)[-1]
    return None


def _is_ready(pod: V1Pod) -> bool:
    for condition in pod.status.conditions or []:
        if condition.type == "Ready":
            return condition.status == "True"
    statuses = pod.status.container_statuses or []
    return bool(statuses) and all(cs.ready for cs in statuses)


class StatusAggregator:
    """
    Derives application state from a snapshot of cluster objects.

    Evaluation is a pure function of the pods, services and workloads passed
    in; the aggregator never retries or sleeps. Callers poll again when the
    result is not terminal.
    """

    def __init__(
        self,
        max_terminated_error_restarts: int = 2,
        max_crash_loop_back_off_restarts: int = 4,
    ):
        """
        Initialize the aggregator.

        Args:
            max_terminated_error_restarts: Restarts after a non-zero exit before the
                instance counts as failed
            max_crash_loop_back_off_restarts: Restarts in CrashLoopBackOff before the
                instance counts as failed
        """
        self.max_terminated_error_restarts = max_terminated_error_restarts
        self.max_crash_loop_back_off_restarts = max_crash_loop_back_off_restarts

    @classmethod
    def from_annotations(
        cls,
        annotations: Optional[dict[str, str]],
        max_terminated_error_restarts: int,
        max_crash_loop_back_off_restarts: int,
    ) -> "StatusAggregator":
        """Aggregator using the thresholds recorded on a workload, else the given ones."""
        annotations = annotations or {}

        def threshold(key: str, default: int) -> int:
            value = annotations.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                logger.warning(f"Ignoring annotation {key}={value!r}: not an integer")
                return default

        return cls(
            threshold(MAX_TERMINATED_ERROR_RESTARTS_ANNOTATION, max_terminated_error_restarts),
            threshold(MAX_CRASH_LOOP_BACK_OFF_RESTARTS_ANNOTATION, max_crash_loop_back_off_restarts),
        )

    def _container_state(self, container_status: V1ContainerStatus) -> Optional[DeploymentState]:
        state = container_status.state
        restart_count = container_status.restart_count or 0

        if state is not None and state.waiting is not None:
            reason = state.waiting.reason
            if reason in UNRECOVERABLE_WAITING_REASONS:
                return DeploymentState.ERROR
            if reason == CRASH_LOOP_REASON and restart_count >= self.max_crash_loop_back_off_restarts:
                return DeploymentState.FAILED

        # Once restarted, the previous exit is only visible in last_state
        terminated = state.terminated if state is not None else None
        if terminated is None and container_status.last_state is not None:
            terminated = container_status.last_state.terminated
        if terminated is not None:
            if terminated.exit_code != 0 and restart_count >= self.max_terminated_error_restarts:
                return DeploymentState.FAILED

        return None

    def instance_state(self, pod: V1Pod) -> DeploymentState:
        """State of a single instance."""
        if pod.status is None:
            return DeploymentState.DEPLOYING

        phase = pod.status.phase
        if phase == "Failed":
            return DeploymentState.FAILED
        if phase == "Unknown":
            return DeploymentState.UNKNOWN

        observed = [
            self._container_state(cs) for cs in pod.status.container_statuses or []
        ]
        if DeploymentState.FAILED in observed:
            return DeploymentState.FAILED
        if DeploymentState.ERROR in observed:
            return DeploymentState.ERROR

        if phase == "Running" and _is_ready(pod):
            return DeploymentState.DEPLOYED
        return DeploymentState.DEPLOYING

    def instance_attributes(self, pod: V1Pod, service: Optional[V1Service]) -> dict[str, str]:
        """Descriptive attributes of an instance, including a reachable address when known."""
        attributes: dict[str, str] = {"pod.name": pod.metadata.name}
        if pod.metadata.uid:
            attributes["guid"] = pod.metadata.uid
        if pod.status is not None:
            if pod.status.phase:
                attributes["phase"] = pod.status.phase
            if pod.status.pod_ip:
                attributes["pod.ip"] = pod.status.pod_ip
            if pod.status.host_ip:
                attributes["host.ip"] = pod.status.host_ip
            if pod.status.start_time:
                attributes["pod.starttime"] = str(pod.status.start_time)

        if service is None:
            return attributes

        attributes["service.name"] = service.metadata.name
        port = None
        if service.spec is not None and service.spec.ports:
            port = service.spec.ports[0].port

        host = external_address(service)
        if host is None:
            ordinal = _ordinal(pod)
            if ordinal is not None:
                attributes["instance.index"] = ordinal
                namespace = pod.metadata.namespace or service.metadata.namespace or "default"
                host = f"{pod.metadata.name}.{service.metadata.name}.{namespace}.svc.cluster.local"
            elif service.spec is not None and service.spec.cluster_ip not in (None, "None"):
                host = service.spec.cluster_ip

        if host is not None:
            attributes["host"] = host
            if port is not None:
                attributes["port"] = str(port)
                attributes["url"] = f"http://{host}:{port}"
        return attributes

    def expected_instances(self, workloads: Iterable[Any], pod_count: int) -> int:
        """Replica count declared by the workloads; falls back to the observed pods."""
        expected = 0
        found = False
        for workload in workloads:
            if workload.kind == "Pod":
                expected += 1
                found = True
            elif workload.spec is not None and workload.spec.replicas is not None:
                expected += workload.spec.replicas
                found = True
        return expected if found else pod_count

    def aggregate(
        self,
        deployment_id: str,
        pods: Iterable[V1Pod],
        services: Iterable[V1Service] = (),
        workloads: Iterable[Any] = (),
    ) -> AppStatus:
        """
        Aggregate instance states into an application status.

        Tie-breaks are applied in a fixed order: no instances is unknown, then
        any failed instance wins, then any error, then all expected instances
        deployed, then any still deploying, then some deployed (partial).

        Args:
            deployment_id: Deployment id
            pods: Pods of the deployment
            services: Services of the deployment
            workloads: Deployments, stateful sets or bare pods of the deployment

        Returns:
            AppStatus
        """
        pods = list(pods)
        service = next(iter(services), None)

        instances: dict[str, InstanceStatus] = {}
        for pod in sorted(pods, key=lambda p: p.metadata.name):
            instances[pod.metadata.name] = InstanceStatus(
                instance_id=pod.metadata.name,
                state=self.instance_state(pod),
                attributes=self.instance_attributes(pod, service),
            )

        states = [instance.state for instance in instances.values()]
        expected = self.expected_instances(workloads, len(pods))
        deployed = states.count(DeploymentState.DEPLOYED)

        if not states:
            state = DeploymentState.UNKNOWN
        elif DeploymentState.FAILED in states:
            state = DeploymentState.FAILED
        elif DeploymentState.ERROR in states:
            state = DeploymentState.ERROR
        elif deployed == len(states) and deployed >= expected:
            state = DeploymentState.DEPLOYED
        elif DeploymentState.DEPLOYING in states:
            state = DeploymentState.DEPLOYING
        elif deployed > 0:
            state = DeploymentState.PARTIAL
        else:
            state = DeploymentState.UNKNOWN

        logger.debug(
            f"Deployment {deployment_id}: {state.value} "
            f"({deployed}/{expected} instances deployed)"
        )
        return AppStatus(deployment_id=deployment_id, state=state, instances=instances)
