"""Bounded wait for a load balancer address."""

import logging
import threading
import time
from typing import Callable, Optional

from tenacity import Retrying, retry_if_result, stop_after_attempt, stop_when_event_set, wait_fixed

from .cluster import ClusterApi, ResourceKind
from .status import external_address

logger = logging.getLogger(__name__)

POLLS_PER_MINUTE = 6


class ExternalAddressWaiter:
    """
    Polls a service until the cluster assigns it an external address.

    The wait is bounded: after ``minutes * 6`` polls, or as soon as the
    caller's cancel event is set, it returns None instead of raising.
    """

    def __init__(
        self,
        cluster: ClusterApi,
        interval_seconds: float = 60 / POLLS_PER_MINUTE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the waiter.

        Args:
            cluster: Cluster API
            interval_seconds: Pause between polls
            sleep: Sleep function used between polls when no cancel event is given
        """
        self.cluster = cluster
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    def poll_address(self, name: str, namespace: Optional[str] = None) -> Optional[str]:
        """Single read of the service's external address."""
        service = self.cluster.get(ResourceKind.SERVICE, name, namespace)
        return external_address(service)

    def wait_for_address(
        self,
        name: str,
        namespace: Optional[str] = None,
        minutes: float = 5,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[str]:
        """
        Wait for a service to receive an external address.

        Args:
            name: Service name
            namespace: Service namespace
            minutes: Maximum time to wait
            cancel_event: Event the caller sets to stop waiting early

        Returns:
            The address, or None if none was assigned in time

        Raises:
            ClusterApiError: If reading the service fails
        """
        attempts = max(int(minutes * POLLS_PER_MINUTE), 1)
        stop = stop_after_attempt(attempts)
        sleep = self._sleep
        if cancel_event is not None:
            stop = stop | stop_when_event_set(cancel_event)
            sleep = cancel_event.wait

        retryer = Retrying(
            stop=stop,
            wait=wait_fixed(self.interval_seconds),
            retry=retry_if_result(lambda address: address is None),
            sleep=sleep,
            retry_error_callback=lambda retry_state: None,
        )
        address = retryer(self.poll_address, name, namespace)

        if address is None:
            logger.warning(f"No external address for service {name} after {minutes} minute(s)")
        else:
            logger.info(f"Service {name} is reachable at {address}")
        return address
