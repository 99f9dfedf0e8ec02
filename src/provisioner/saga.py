"""Virtual machine provisioning and teardown workflows.

Provisioning is a saga without a single atomic commit:

    LOCK_WAIT -> RESOLVING -> SUBMITTING -> AWAITING_RUNNING
              -> AWAITING_ROLE_READY -> ATTACHING_DISK -> DONE

Any failure after LOCK_WAIT moves to CLEANUP, which deletes what the saga
itself created (the deployment and the cloud service, only when the cloud
service is new), and then to FAILED with the original error re-raised.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum

from .api import ManagementApi
from .builders import build_deployment, build_role, generate_name
from .config import ClientConfig
from .deadline import Deadline
from .descriptors import DeploymentDescriptor, RoleDetails
from .errors import InvalidStateError, ManagementError, ProvisioningError
from .lifecycle import LifecycleOperations
from .locks import LockDomain, ProvisioningLocks
from .models import Deployment, Disk
from .network import NetworkTopology
from .polling import DEPLOYMENT_RUNNING_STATUS, ROLE_READY_STATUS
from .storage import DataDiskOperations

logger = logging.getLogger(__name__)


class SagaState(str, Enum):
    LOCK_WAIT = "LockWait"
    RESOLVING = "Resolving"
    SUBMITTING = "Submitting"
    AWAITING_RUNNING = "AwaitingRunning"
    AWAITING_ROLE_READY = "AwaitingRoleReady"
    ATTACHING_DISK = "AttachingDisk"
    DONE = "Done"
    CLEANUP = "Cleanup"
    FAILED = "Failed"


@dataclass
class SagaProgress:
    """What one provisioning run has done so far."""

    state: SagaState = SagaState.LOCK_WAIT
    cloud_service_name: str | None = None
    deployment_name: str | None = None
    role_name: str | None = None
    add_to_existing_deployment: bool = False
    created_cloud_service: bool = False
    created_deployment: bool = False
    compensated: bool = False
    history: list[SagaState] = field(default_factory=lambda: [SagaState.LOCK_WAIT])

    def advance(self, state: SagaState) -> None:
        logger.debug(
            "Provisioning state changed",
            extra={
                "saga_state": state.value,
                "previous_state": self.state.value,
                "cloud_service": self.cloud_service_name,
                "thread": threading.current_thread().name,
            },
        )
        self.state = state
        self.history.append(state)


def public_ip_of(deployment: Deployment, role_name: str) -> str | None:
    """Virtual IP of the role's first declared input endpoint, if any."""
    role = deployment.role(role_name)
    if role is None:
        return None
    network = role.network_configuration()
    if network is None or not network.input_endpoints:
        return None
    return network.input_endpoints[0].vip


class VirtualMachineProvisioner:
    """Creates and deletes virtual machines and the resources dedicated to them."""

    def __init__(
        self,
        config: ClientConfig,
        api: ManagementApi,
        locks: ProvisioningLocks,
        lifecycle: LifecycleOperations,
        network: NetworkTopology,
        storage: DataDiskOperations,
        storage_accounts: set[str] | None = None,
    ) -> None:
        self.config = config
        self.api = api
        self.locks = locks
        self.lifecycle = lifecycle
        self.network = network
        self.storage = storage
        # Accounts to clean up with deleted machines; not synchronized
        self.storage_accounts: set[str] = storage_accounts if storage_accounts is not None else set()

    # =========================================================================
    # Provisioning
    # =========================================================================

    def create_virtual_machine_deployment(
        self,
        desc: DeploymentDescriptor,
        deadline: Deadline,
        progress: SagaProgress | None = None,
    ) -> RoleDetails:
        """Provision the machine described by `desc`.

        The general lock is held only while the target is resolved and the
        role submitted; waiting for the machine to boot happens outside it.
        Every step runs against a deadline that ends `cleanup_reserve_seconds`
        early, so that a run which times out still has time to delete the
        cloud service it created.

        Raises:
            LockTimeoutError: If the general lock could not be acquired in time,
                including when less than the boot headroom is left.
            ProvisioningError: If no requested static address is usable.
            OperationFailedError, OperationTimeoutError, InvalidStateError,
            ProviderError: From the provider, after compensating cleanup.
        """
        progress = progress if progress is not None else SagaProgress()
        work_deadline = deadline.reserve(self.config.cleanup_reserve_seconds)

        try:
            with self.locks.hold(LockDomain.GENERAL, work_deadline, headroom=self.config.vm_boot_headroom_seconds):
                try:
                    service_name, deployment_name = self._resolve_target(desc, work_deadline, progress)
                    self._reserve_static_address(desc, work_deadline)
                    self._submit(desc, service_name, deployment_name, work_deadline, progress)
                except Exception as e:
                    # Clean up before another thread can pick up the half-created service
                    self._compensate(progress, deadline, e)
                    raise

            progress.advance(SagaState.AWAITING_RUNNING)
            logger.info(
                "Waiting for the VM deployment, this will take a while",
                extra={"cloud_service": service_name, "role": desc.role_name},
            )
            self.api.poller.await_deployment_status(
                service_name, desc.deployment_slot, DEPLOYMENT_RUNNING_STATUS, work_deadline
            )

            progress.advance(SagaState.AWAITING_ROLE_READY)
            deployment = self.api.poller.await_role_status(
                service_name, desc.deployment_slot, desc.role_name, ROLE_READY_STATUS, work_deadline
            )

            if desc.data_disk_size is not None:
                progress.advance(SagaState.ATTACHING_DISK)
                self.storage.add_data_disk(
                    service_name,
                    deployment_name,
                    desc.role_name,
                    desc.storage_account_name,
                    desc.data_disk_size,
                    work_deadline,
                )
        except Exception:
            if progress.state == SagaState.LOCK_WAIT:
                # Nothing was created
                progress.advance(SagaState.FAILED)
            else:
                self._fail(progress, deadline)
            raise

        progress.advance(SagaState.DONE)
        instance = deployment.role_instance(desc.role_name)
        return RoleDetails(
            id=desc.role_name,
            cloud_service_name=service_name,
            deployment_name=deployment_name,
            private_ip=instance.ip_address if instance else None,
            public_ip=public_ip_of(deployment, desc.role_name),
        )

    def _resolve_target(
        self, desc: DeploymentDescriptor, deadline: Deadline, progress: SagaProgress
    ) -> tuple[str, str]:
        """Names of the cloud service and deployment the role goes into."""
        progress.advance(SagaState.RESOLVING)
        if desc.generate_cloud_service_name:
            name = generate_name(self.config.cloud_service_prefix)
        elif desc.hosted_service_name:
            name = desc.hosted_service_name
        else:
            raise ProvisioningError("Can't provision VM: no cloud service name given and none to be generated")
        progress.cloud_service_name = name

        service = self.api.get_hosted_service(name, deadline, embed_detail=True)
        if service is not None:
            existing = service.deployment_in_slot(desc.deployment_slot)
            if existing is not None:
                deployment_name = existing.name
                progress.add_to_existing_deployment = True
            else:
                deployment_name = name
            progress.deployment_name = deployment_name
            logger.info(
                "Using an already existing cloud service",
                extra={"cloud_service": name, "deployment": deployment_name},
            )
        else:
            progress.created_cloud_service = True
            self.lifecycle.ensure_cloud_service(name, desc.affinity_group, deadline)
            deployment_name = name
            progress.deployment_name = deployment_name

        desc.hosted_service_name = name
        desc.deployment_name = deployment_name
        return name, deployment_name

    def _reserve_static_address(self, desc: DeploymentDescriptor, deadline: Deadline) -> None:
        if not desc.ip_addresses:
            return
        if desc.network_name is None:
            raise ProvisioningError("Can't provision VM: static addresses require a virtual network")

        for address in desc.ip_addresses:
            availability = self.api.check_address_availability(desc.network_name, address, deadline)
            if not availability.is_available:
                logger.info(
                    "Static address not available",
                    extra={"address": address, "virtual_network": desc.network_name},
                )
                continue

            if not self.network.subnet_exists(desc.network_name, desc.subnet_name, deadline):
                message = (
                    f"The specified subnet '{desc.subnet_name}' doesn't exist "
                    f"in network '{desc.network_name}'"
                )
                logger.error(message)
                raise ProvisioningError(f"Can't provision VM: {message}")

            desc.available_ip = address
            return

        message = f"The specified IP addresses {desc.ip_addresses} are not available"
        logger.error(message)
        raise ProvisioningError(f"Can't provision VM: {message}")

    def _submit(
        self,
        desc: DeploymentDescriptor,
        service_name: str,
        deployment_name: str,
        deadline: Deadline,
        progress: SagaProgress,
    ) -> None:
        progress.advance(SagaState.SUBMITTING)
        progress.role_name = desc.role_name

        if progress.add_to_existing_deployment:
            logger.info(
                "Adding VM role to existing deployment",
                extra={"cloud_service": service_name, "deployment": deployment_name},
            )
            self.api.add_role(service_name, deployment_name, build_role(desc), deadline)
        else:
            logger.info(
                "Creating a new deployment for the VM role",
                extra={"cloud_service": service_name, "deployment": deployment_name},
            )
            progress.created_deployment = True
            self.api.create_deployment(service_name, build_deployment(desc), deadline)

    def _fail(self, progress: SagaProgress, deadline: Deadline) -> None:
        self._compensate(progress, deadline, None)
        progress.advance(SagaState.FAILED)

    def _compensate(self, progress: SagaProgress, deadline: Deadline, error: Exception | None) -> None:
        """Best-effort deletion of what this run created. Never raises."""
        if progress.compensated:
            return
        progress.compensated = True
        progress.advance(SagaState.CLEANUP)

        service_name = progress.cloud_service_name
        if not progress.created_cloud_service or service_name is None:
            logger.info(
                "Leaving pre-existing cloud service in place after failure",
                extra={"cloud_service": service_name, "error": str(error) if error else None},
            )
            return

        try:
            if progress.created_deployment and progress.deployment_name is not None:
                self.lifecycle.delete_deployment(service_name, progress.deployment_name, deadline)
            self.lifecycle.delete_cloud_service(service_name, deadline)
        except Exception as e:
            # Cleanup failures must not mask the original error
            logger.warning(
                "Failed deleting cloud service",
                extra={"cloud_service": service_name, "error": str(e)},
                exc_info=True,
            )

    # =========================================================================
    # Lookups
    # =========================================================================

    def find_deployment_by_ip(self, address: str, deadline: Deadline) -> Deployment | None:
        """The deployment holding a role with private address `address`.

        Only deployments in the configured virtual network are considered.
        """
        for summary in self.api.list_hosted_services(deadline):
            service = self.api.get_hosted_service(summary.service_name, deadline, embed_detail=True)
            if service is None:
                continue
            for deployment in service.deployments or []:
                if self.config.virtual_network and deployment.virtual_network_name != self.config.virtual_network:
                    continue
                if deployment.role_instance_by_ip(address) is not None:
                    return deployment
        logger.info("Could not find roles with address", extra={"address": address})
        return None

    def disks_attached_to(self, service_name: str, deadline: Deadline) -> list[Disk]:
        return [
            disk
            for disk in self.api.list_disks(deadline)
            if disk.attached_to is not None and disk.attached_to.hosted_service_name == service_name
        ]

    # =========================================================================
    # Teardown
    # =========================================================================

    def _delete_detached_disk(self, disk_name: str, role_name: str | None, deadline: Deadline) -> None:
        logger.debug("Waiting for disk to detach", extra={"disk": disk_name, "role": role_name})
        self.api.poller.await_disk_detached(disk_name, deadline)
        logger.info("Deleting disk", extra={"disk": disk_name, "role": role_name})
        self.lifecycle.delete_disk(disk_name, deadline, delete_blob=True)

    def delete_virtual_machine_by_ip(self, address: str, deadline: Deadline) -> None:
        """Delete the machine with private address `address` and its dedicated resources.

        Raises:
            ProvisioningError: If no machine with that address exists.
        """
        deployment = self.find_deployment_by_ip(address, deadline)
        if deployment is None:
            raise ProvisioningError(f"Could not find a deployment for Virtual Machine with IP {address}")

        instance = deployment.role_instance_by_ip(address)
        role = deployment.role(instance.role_name) if instance else None
        if role is None:
            raise ProvisioningError(f"Could not find role for Virtual Machine with IP {address}")

        service_name = deployment.hosted_service_name
        if service_name is None:
            raise ProvisioningError(
                f"Deployment {deployment.name} of Virtual Machine with IP {address} has no cloud service"
            )
        role_name = role.role_name

        if deployment.has_multiple_roles:
            self.lifecycle.delete_role(service_name, deployment.name, role_name, deadline)
        else:
            self.lifecycle.delete_deployment(service_name, deployment.name, deadline)

        # Refuses while other deployments remain
        self.lifecycle.delete_cloud_service(service_name, deadline)

        logger.debug("Cleaning resources for role", extra={"role": role_name, "address": address})
        disk_names: list[str] = []
        if role.os_virtual_hard_disk is not None and role.os_virtual_hard_disk.disk_name:
            disk_names.append(role.os_virtual_hard_disk.disk_name)
        disk_names.extend(d.disk_name for d in role.data_virtual_hard_disks or [] if d.disk_name)

        for disk_name in disk_names:
            try:
                self._delete_detached_disk(disk_name, role_name, deadline)
            except ManagementError as e:
                logger.warning(
                    "Failed deleting disk for role",
                    extra={"disk": disk_name, "role": role_name, "error": str(e)},
                )

        for account in sorted(self.storage_accounts):
            try:
                self.lifecycle.delete_storage_account(account, deadline)
            except ManagementError as e:
                logger.warning(
                    "Failed deleting storage account, it might be already in use",
                    extra={"storage_account": account, "error": str(e)},
                )
            else:
                self.storage_accounts.discard(account)

        logger.debug("Role resources cleaned", extra={"role": role_name})

    def delete_virtual_machine_by_deployment_name(
        self, service_name: str, deployment_name: str, deadline: Deadline
    ) -> None:
        """Delete a deployment, its cloud service and every disk it used.

        Raises:
            InvalidStateError: If no disk is attached to the cloud service.
        """
        disks = self.disks_attached_to(service_name, deadline)
        if not disks:
            raise InvalidStateError(
                f"Disk cannot be missing for an existing deployment {deployment_name} "
                f"in cloud service {service_name}"
            )
        attached = disks[0].attached_to
        role_name = attached.role_name if attached is not None else None

        logger.info("Deleting Virtual Machine", extra={"role": role_name, "cloud_service": service_name})
        self.lifecycle.delete_deployment(service_name, deployment_name, deadline)
        self.lifecycle.delete_cloud_service(service_name, deadline)

        for disk in disks:
            self._delete_detached_disk(disk.name, role_name, deadline)
