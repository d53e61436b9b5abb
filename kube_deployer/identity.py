"""Deployment ids, labels and label selectors."""

import re
from typing import Optional

from .errors import ConfigurationError

APP_ID_LABEL = "kube-deployer/app-id"
GROUP_ID_LABEL = "kube-deployer/group-id"
MARKER_LABEL = "app.kubernetes.io/managed-by"
MARKER_VALUE = "kube-deployer"

# Pods created by a stateful set carry their ordinal in this label
POD_INDEX_LABEL = "apps.kubernetes.io/pod-index"

# Status thresholds resolved at deploy time, read back by status()
MAX_TERMINATED_ERROR_RESTARTS_ANNOTATION = "kube-deployer/max-terminated-error-restarts"
MAX_CRASH_LOOP_BACK_OFF_RESTARTS_ANNOTATION = "kube-deployer/max-crash-loop-back-off-restarts"

MAX_NAME_LENGTH = 63

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]")


def create_deployment_id(name: str, group: Optional[str] = None) -> str:
    """
    Derive the deployment id for an application.

    Grouped applications are prefixed with their group. The result is
    lowercased and every character that is not allowed in a Kubernetes
    resource name becomes ``-``.

    Raises:
        ConfigurationError: If the id is not a valid resource name
    """
    raw = f"{group}-{name}" if group else name
    deployment_id = _INVALID_NAME_CHARS.sub("-", raw.strip().lower())

    if not deployment_id or not deployment_id[0].isalpha():
        raise ConfigurationError(
            f"Deployment id '{deployment_id}' must start with a letter"
        )
    if deployment_id.endswith("-"):
        raise ConfigurationError(
            f"Deployment id '{deployment_id}' must end with a letter or digit"
        )
    if len(deployment_id) > MAX_NAME_LENGTH:
        raise ConfigurationError(
            f"Deployment id '{deployment_id}' is longer than {MAX_NAME_LENGTH} characters"
        )
    return deployment_id


def create_selector(deployment_id: str) -> dict[str, str]:
    """Labels matching every resource of one deployment and nothing else."""
    return {APP_ID_LABEL: deployment_id, MARKER_LABEL: MARKER_VALUE}


def create_labels(deployment_id: str, group: Optional[str] = None) -> dict[str, str]:
    """Full label set attached to every resource of a deployment."""
    labels = create_selector(deployment_id)
    if group:
        labels[GROUP_ID_LABEL] = _INVALID_NAME_CHARS.sub("-", group.lower()).strip("-")[:MAX_NAME_LENGTH]
    return labels


def format_selector(selector: dict[str, str]) -> str:
    """Render a selector as a Kubernetes label selector string."""
    return ",".join(f"{key}={value}" for key, value in selector.items())
