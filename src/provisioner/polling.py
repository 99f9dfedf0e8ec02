"""Polling loops for asynchronous operations and resource states.

All loops share one cadence (the configured polling interval) and one
deadline policy: the deadline is checked after every observation, and sleeps
never extend past it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from .codec import unmarshal
from .deadline import Deadline
from .errors import InvalidStateError, OperationFailedError, OperationTimeoutError
from .models import (
    OPERATION_FAILED,
    OPERATION_IN_PROGRESS,
    OPERATION_SUCCEEDED,
    Deployment,
    Disk,
    GatewayInfo,
    Operation,
)
from .transport import ManagementTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Role instance statuses that will not recover on their own
BAD_ROLE_STATUSES: frozenset[str] = frozenset(
    {"FailedStartingRole", "FailedStartingVM", "UnresponsiveRole", "CyclingRole"}
)
ROLE_READY_STATUS = "ReadyRole"
DEPLOYMENT_RUNNING_STATUS = "Running"

# Gateway states
GATEWAY_NOT_PROVISIONED = "NotProvisioned"
GATEWAY_PROVISIONING = "Provisioning"
GATEWAY_PROVISIONED = "Provisioned"
GATEWAY_DEPROVISIONING = "Deprovisioning"


def await_state(
    fetch: Callable[[], T],
    is_done: Callable[[T], bool],
    deadline: Deadline,
    *,
    description: str,
    interval: float,
    check: Callable[[T], None] | None = None,
    describe: Callable[[T], object] = lambda state: state,
) -> T:
    """Poll `fetch` until `is_done` holds for the observed state.

    Args:
        fetch: Reads the current state from the provider.
        is_done: Predicate over the observed state.
        deadline: Absolute deadline for the whole wait.
        description: What is being waited for, used in logs and errors.
        interval: Seconds between observations.
        check: Optional hook that raises on states the wait cannot recover from.
        describe: Projects the state to the value reported on timeout.

    Returns:
        The first observed state satisfying `is_done`.

    Raises:
        OperationTimeoutError: With the last observed state once the deadline passes.
    """
    while True:
        state = fetch()
        if check is not None:
            check(state)
        if is_done(state):
            return state

        if deadline.expired:
            last = describe(state)
            raise OperationTimeoutError(
                f"Timed out waiting for {description}. Last state was: {last}",
                last_state=last,
            )

        logger.debug("Waiting for %s", description, extra={"last_state": str(describe(state))})
        deadline.bounded_sleep(interval)


class Poller:
    """Resource-state waits bound to one transport."""

    def __init__(self, transport: ManagementTransport) -> None:
        self._transport = transport

    @property
    def interval(self) -> float:
        return self._transport.polling_interval

    # =========================================================================
    # Operations
    # =========================================================================

    def get_operation(self, request_id: str, deadline: Deadline) -> Operation:
        response = self._transport.get(f"/operations/{request_id}", deadline)
        return unmarshal(response.body, Operation)

    def await_operation(self, request_id: str | None, deadline: Deadline) -> Operation | None:
        """Wait for an accepted request to reach a terminal status.

        Raises:
            OperationFailedError: If the operation reports Failed.
            OperationTimeoutError: If it is still in progress at the deadline.
        """
        if request_id is None:
            logger.debug("Request completed synchronously, no operation to await")
            return None

        def check(operation: Operation) -> None:
            if operation.status == OPERATION_FAILED:
                code = operation.error.code if operation.error else None
                message = operation.error.message if operation.error else None
                logger.error(
                    "Operation failed",
                    extra={"request_id": request_id, "error_code": code, "error_message": message},
                )
                raise OperationFailedError(request_id, code, message)
            if operation.status not in (OPERATION_IN_PROGRESS, OPERATION_SUCCEEDED):
                raise InvalidStateError(
                    f"Operation {request_id} reported unknown status {operation.status}",
                    state=operation.status,
                )

        return await_state(
            lambda: self.get_operation(request_id, deadline),
            lambda operation: operation.status == OPERATION_SUCCEEDED,
            deadline,
            description=f"operation {request_id} to finish",
            interval=self.interval,
            check=check,
            describe=lambda operation: operation.status,
        )

    # =========================================================================
    # Deployments and roles
    # =========================================================================

    def deployment_by_slot(self, service_name: str, slot: str, deadline: Deadline) -> Deployment | None:
        response = self._transport.get(
            f"/services/hostedservices/{service_name}/deploymentslots/{slot}",
            deadline,
            allow_not_found=True,
        )
        if response is None:
            return None
        deployment = unmarshal(response.body, Deployment)
        deployment.hosted_service_name = service_name
        return deployment

    def await_deployment_status(
        self, service_name: str, slot: str, status: str, deadline: Deadline
    ) -> Deployment:
        """Wait for the deployment in `slot` to report `status`."""
        deployment = await_state(
            lambda: self.deployment_by_slot(service_name, slot, deadline),
            lambda d: d is not None and d.status == status,
            deadline,
            description=f"deployment of {service_name} ({slot}) to be {status}",
            interval=self.interval,
            describe=lambda d: d.status if d is not None else None,
        )
        if deployment is None:
            raise InvalidStateError(f"Deployment of {service_name} ({slot}) not found")
        return deployment

    def await_role_status(
        self, service_name: str, slot: str, role_name: str, status: str, deadline: Deadline
    ) -> Deployment:
        """Wait for `role_name` to report `status`, failing fast on a bad status.

        Raises:
            InvalidStateError: If the role instance reports a status in BAD_ROLE_STATUSES.
        """

        def instance_status(deployment: Deployment | None) -> str | None:
            if deployment is None:
                return None
            instance = deployment.role_instance(role_name)
            return instance.instance_status if instance else None

        def check(deployment: Deployment | None) -> None:
            current = instance_status(deployment)
            if current in BAD_ROLE_STATUSES:
                logger.error(
                    "Virtual machine reached a failure status",
                    extra={"cloud_service": service_name, "role": role_name, "status": current},
                )
                raise InvalidStateError(
                    f"Virtual Machine {role_name} was provisioned but found in status {current}",
                    state=current,
                )

        deployment = await_state(
            lambda: self.deployment_by_slot(service_name, slot, deadline),
            lambda d: instance_status(d) == status,
            deadline,
            description=f"role {role_name} in {service_name} to be {status}",
            interval=self.interval,
            check=check,
            describe=instance_status,
        )
        if deployment is None:
            raise InvalidStateError(f"Deployment of {service_name} ({slot}) not found")
        return deployment

    # =========================================================================
    # Disks
    # =========================================================================

    def get_disk(self, disk_name: str, deadline: Deadline) -> Disk | None:
        response = self._transport.get(f"/services/disks/{disk_name}", deadline, allow_not_found=True)
        if response is None:
            return None
        return unmarshal(response.body, Disk)

    def await_disk_detached(self, disk_name: str, deadline: Deadline) -> Disk:
        """Wait until `disk_name` is no longer attached to any role.

        Raises:
            InvalidStateError: If the disk does not exist.
        """

        def fetch() -> Disk:
            disk = self.get_disk(disk_name, deadline)
            if disk is None:
                raise InvalidStateError(f"Disk {disk_name} does not exist")
            return disk

        return await_state(
            fetch,
            lambda d: d.attached_to is None,
            deadline,
            description=f"disk {disk_name} to detach",
            interval=self.interval,
            describe=lambda d: d.attached_to.role_name if d.attached_to else None,
        )

    # =========================================================================
    # Gateways
    # =========================================================================

    def get_gateway(self, virtual_network: str, deadline: Deadline) -> GatewayInfo | None:
        """Current gateway of `virtual_network`, or None if it has none."""
        response = self._transport.get(
            f"/services/networking/{virtual_network}/gateway", deadline, allow_not_found=True
        )
        if response is None:
            logger.warning("Network has no gateway", extra={"virtual_network": virtual_network})
            return None
        return unmarshal(response.body, GatewayInfo)

    def await_gateway_provisioned(self, virtual_network: str, deadline: Deadline) -> GatewayInfo:
        """Wait for the gateway to become Provisioned.

        Raises:
            InvalidStateError: If the gateway is missing or starts deprovisioning.
        """

        def fetch() -> GatewayInfo:
            gateway = self.get_gateway(virtual_network, deadline)
            if gateway is None:
                raise InvalidStateError(f"Gateway of {virtual_network} not found")
            return gateway

        def check(gateway: GatewayInfo) -> None:
            if gateway.state == GATEWAY_DEPROVISIONING:
                raise InvalidStateError(f"Gateway state error: {gateway.state}", state=gateway.state)

        return await_state(
            fetch,
            lambda g: g.state == GATEWAY_PROVISIONED,
            deadline,
            description=f"gateway of {virtual_network} to be provisioned",
            interval=self.interval,
            check=check,
            describe=lambda g: g.state,
        )

    def await_gateway_deprovisioned(self, virtual_network: str, deadline: Deadline) -> None:
        """Wait for the gateway to become NotProvisioned (or disappear).

        Raises:
            InvalidStateError: If the gateway starts provisioning again.
        """

        def check(gateway: GatewayInfo | None) -> None:
            if gateway is None:
                logger.warning(
                    "Gateway not found, it might be already deleted",
                    extra={"virtual_network": virtual_network},
                )
            elif gateway.state == GATEWAY_PROVISIONING:
                raise InvalidStateError(f"Gateway state error: {gateway.state}", state=gateway.state)

        await_state(
            lambda: self.get_gateway(virtual_network, deadline),
            lambda g: g is None or g.state == GATEWAY_NOT_PROVISIONED,
            deadline,
            description=f"gateway of {virtual_network} to be deleted",
            interval=self.interval,
            check=check,
            describe=lambda g: g.state if g else None,
        )
