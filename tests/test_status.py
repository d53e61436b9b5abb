"""Tests for status aggregation."""

import pytest
from kubernetes.client import (
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodTemplateSpec,
)

from kube_deployer import DeploymentState, StatusAggregator
from kube_deployer.status import external_address


def _deployment(replicas):
    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(name="app-test"),
        spec=V1DeploymentSpec(
            replicas=replicas, selector=V1LabelSelector(), template=V1PodTemplateSpec()
        ),
    )


@pytest.fixture
def aggregator():
    return StatusAggregator(max_terminated_error_restarts=2, max_crash_loop_back_off_restarts=4)


class TestInstanceState:
    """Test cases for single instance state."""

    def test_ready_is_deployed(self, aggregator, make_pod):
        assert aggregator.instance_state(make_pod("p", ready=True)) == DeploymentState.DEPLOYED

    def test_pending_is_deploying(self, aggregator, make_pod):
        assert aggregator.instance_state(make_pod("p", phase="Pending")) == DeploymentState.DEPLOYING

    def test_running_not_ready_is_deploying(self, aggregator, make_pod):
        assert aggregator.instance_state(make_pod("p")) == DeploymentState.DEPLOYING

    def test_failed_phase(self, aggregator, make_pod):
        assert aggregator.instance_state(make_pod("p", phase="Failed")) == DeploymentState.FAILED

    def test_unknown_phase(self, aggregator, make_pod):
        assert aggregator.instance_state(make_pod("p", phase="Unknown")) == DeploymentState.UNKNOWN

    @pytest.mark.parametrize("reason", ["ErrImagePull", "ImagePullBackOff", "InvalidImageName"])
    def test_unrecoverable_waiting_is_error(self, aggregator, make_pod, reason):
        """Test that waiting reasons the kubelet cannot recover from are errors."""
        pod = make_pod("p", phase="Pending", waiting_reason=reason)

        assert aggregator.instance_state(pod) == DeploymentState.ERROR

    def test_crash_loop_below_threshold(self, aggregator, make_pod):
        pod = make_pod("p", waiting_reason="CrashLoopBackOff", restart_count=3)

        assert aggregator.instance_state(pod) == DeploymentState.DEPLOYING

    def test_crash_loop_at_threshold(self, aggregator, make_pod):
        pod = make_pod("p", waiting_reason="CrashLoopBackOff", restart_count=4)

        assert aggregator.instance_state(pod) == DeploymentState.FAILED

    def test_terminated_error_restarts(self, aggregator, make_pod):
        """Test that repeated non-zero exits fail the instance."""
        assert aggregator.instance_state(make_pod("p", exit_code=1, restart_count=1)) == (
            DeploymentState.DEPLOYING
        )
        assert aggregator.instance_state(make_pod("p", exit_code=1, restart_count=2)) == (
            DeploymentState.FAILED
        )

    def test_clean_exit_is_not_failure(self, aggregator, make_pod):
        pod = make_pod("p", exit_code=0, restart_count=5)

        assert aggregator.instance_state(pod) == DeploymentState.DEPLOYING

    def test_previous_error_exit_after_restart(self, aggregator, make_pod):
        """Test that a running container's last non-zero exit counts toward failure."""
        assert aggregator.instance_state(make_pod("p", last_exit_code=1, restart_count=1)) == (
            DeploymentState.DEPLOYING
        )
        assert aggregator.instance_state(make_pod("p", last_exit_code=1, restart_count=10)) == (
            DeploymentState.FAILED
        )

    def test_previous_clean_exit_is_not_failure(self, aggregator, make_pod):
        pod = make_pod("p", ready=True, last_exit_code=0, restart_count=10)

        assert aggregator.instance_state(pod) == DeploymentState.DEPLOYED

    def test_thresholds_are_configurable(self, make_pod):
        strict = StatusAggregator(max_terminated_error_restarts=0, max_crash_loop_back_off_restarts=0)

        assert strict.instance_state(make_pod("p", exit_code=1)) == DeploymentState.FAILED


class TestFromAnnotations:
    """Test cases for thresholds recorded on a workload."""

    def test_recorded_thresholds_win(self):
        aggregator = StatusAggregator.from_annotations(
            {
                "kube-deployer/max-terminated-error-restarts": "7",
                "kube-deployer/max-crash-loop-back-off-restarts": "1",
            },
            2,
            4,
        )

        assert aggregator.max_terminated_error_restarts == 7
        assert aggregator.max_crash_loop_back_off_restarts == 1

    def test_missing_annotations_fall_back(self):
        aggregator = StatusAggregator.from_annotations(None, 2, 4)

        assert aggregator.max_terminated_error_restarts == 2
        assert aggregator.max_crash_loop_back_off_restarts == 4

    def test_invalid_value_falls_back(self):
        """Test that a non-integer annotation is ignored."""
        aggregator = StatusAggregator.from_annotations(
            {"kube-deployer/max-crash-loop-back-off-restarts": "many"}, 2, 4
        )

        assert aggregator.max_crash_loop_back_off_restarts == 4


class TestAggregate:
    """Test cases for application state."""

    def test_no_pods_is_unknown(self, aggregator):
        status = aggregator.aggregate("app-test", [])

        assert status.state == DeploymentState.UNKNOWN
        assert status.instances == {}

    def test_all_ready_is_deployed(self, aggregator, make_pod):
        pods = [make_pod(f"app-test-{i}", ready=True) for i in range(3)]

        status = aggregator.aggregate("app-test", pods, workloads=[_deployment(3)])

        assert status.state == DeploymentState.DEPLOYED
        assert sorted(status.instances) == ["app-test-0", "app-test-1", "app-test-2"]

    def test_missing_replicas_is_partial(self, aggregator, make_pod):
        """Test that ready pods below the declared replicas are partial."""
        pods = [make_pod(f"app-test-{i}", ready=True) for i in range(2)]

        status = aggregator.aggregate("app-test", pods, workloads=[_deployment(3)])

        assert status.state == DeploymentState.PARTIAL

    def test_deploying_outranks_partial(self, aggregator, make_pod):
        pods = [make_pod("app-test-0", ready=True), make_pod("app-test-1", phase="Pending")]

        status = aggregator.aggregate("app-test", pods, workloads=[_deployment(2)])

        assert status.state == DeploymentState.DEPLOYING

    def test_failed_outranks_error(self, aggregator, make_pod):
        pods = [
            make_pod("app-test-0", phase="Failed"),
            make_pod("app-test-1", phase="Pending", waiting_reason="ErrImagePull"),
            make_pod("app-test-2", ready=True),
        ]

        status = aggregator.aggregate("app-test", pods)

        assert status.state == DeploymentState.FAILED

    def test_error_outranks_deploying(self, aggregator, make_pod):
        pods = [
            make_pod("app-test-0", phase="Pending"),
            make_pod("app-test-1", phase="Pending", waiting_reason="ImagePullBackOff"),
        ]

        status = aggregator.aggregate("app-test", pods)

        assert status.state == DeploymentState.ERROR

    def test_unknown_instances_only(self, aggregator, make_pod):
        status = aggregator.aggregate("app-test", [make_pod("app-test-0", phase="Unknown")])

        assert status.state == DeploymentState.UNKNOWN

    def test_without_workloads_uses_pod_count(self, aggregator, make_pod):
        status = aggregator.aggregate("app-test", [make_pod("app-test", ready=True)])

        assert status.state == DeploymentState.DEPLOYED


class TestInstanceAttributes:
    """Test cases for instance attributes and addresses."""

    def test_pod_attributes(self, aggregator, make_pod):
        attributes = aggregator.instance_attributes(make_pod("app-test", pod_ip="10.1.0.7"), None)

        assert attributes["pod.name"] == "app-test"
        assert attributes["guid"] == "uid-app-test"
        assert attributes["pod.ip"] == "10.1.0.7"
        assert attributes["host.ip"] == "192.168.0.10"
        assert "url" not in attributes

    def test_cluster_ip_address(self, aggregator, make_pod, make_service):
        attributes = aggregator.instance_attributes(make_pod("app-test"), make_service())

        assert attributes["service.name"] == "app-test"
        assert attributes["url"] == "http://10.96.0.12:8080"

    def test_load_balancer_address(self, aggregator, make_pod, make_service):
        """Test that an assigned ingress address wins over the cluster address."""
        service = make_service(ingress_hostname="lb.example.com", port=80)

        attributes = aggregator.instance_attributes(make_pod("app-test"), service)

        assert attributes["host"] == "lb.example.com"
        assert attributes["url"] == "http://lb.example.com:80"

    def test_indexed_instance_address(self, aggregator, make_pod, make_service):
        """Test that indexed instances are addressed by their own DNS name."""
        pod = make_pod("app-test-1", owner_kind="StatefulSet")
        service = make_service(cluster_ip="None")

        attributes = aggregator.instance_attributes(pod, service)

        assert attributes["instance.index"] == "1"
        assert attributes["host"] == "app-test-1.app-test.default.svc.cluster.local"

    def test_pod_index_label(self, aggregator, make_pod, make_service):
        pod = make_pod("app-test-2", labels={"apps.kubernetes.io/pod-index": "2"})

        attributes = aggregator.instance_attributes(pod, make_service(cluster_ip="None"))

        assert attributes["instance.index"] == "2"

    def test_headless_without_ordinal_has_no_host(self, aggregator, make_pod, make_service):
        attributes = aggregator.instance_attributes(make_pod("app-test"), make_service(cluster_ip="None"))

        assert "host" not in attributes


class TestExternalAddress:
    """Test cases for external_address."""

    def test_none_service(self):
        assert external_address(None) is None

    def test_no_ingress(self, make_service):
        assert external_address(make_service()) is None

    def test_ingress_ip(self, make_service):
        assert external_address(make_service(ingress_ip="203.0.113.7")) == "203.0.113.7"
