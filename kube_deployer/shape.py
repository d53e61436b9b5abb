"""Workload shape selection."""

from .models import PodManagement, ResolvedSpec, WorkloadDescriptor, WorkloadShape


def select_workload(spec: ResolvedSpec) -> WorkloadDescriptor:
    """
    Choose the workload shape for a resolved deployment.

    Indexed deployments always get a stateful workload, even with a single
    instance, so that scaling out later keeps ordinal identities. Otherwise
    more than one instance means a scaled stateless workload and one
    instance a single pod.

    Args:
        spec: Resolved deployment options

    Returns:
        WorkloadDescriptor for the deployment
    """
    if spec.indexed:
        return WorkloadDescriptor(
            shape=WorkloadShape.INDEXED,
            count=spec.count,
            pod_management=PodManagement.SEQUENTIAL,
            volume_claim_template=spec.volume_claim_template,
        )
    if spec.count > 1:
        return WorkloadDescriptor(shape=WorkloadShape.SCALED, count=spec.count)
    return WorkloadDescriptor(shape=WorkloadShape.SIMPLE, count=1)
