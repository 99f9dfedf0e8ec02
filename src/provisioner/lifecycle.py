"""Idempotent ensure-present / ensure-absent operations.

Every operation checks existence with a live provider call before mutating,
so repeating a call (including after a timeout) never fails because the
resource already exists or is already gone. Each method returns True when it
submitted a mutation and False when it was a no-op.
"""

from __future__ import annotations

import logging

from .api import ManagementApi
from .builders import build_create_affinity_group, build_create_cloud_service, build_create_storage_account
from .deadline import Deadline
from .errors import InvalidStateError
from .locks import LockDomain, ProvisioningLocks
from .models import DEPLOYMENT_SLOTS, HostedService
from .polling import await_state

logger = logging.getLogger(__name__)

CLOUD_SERVICE_CREATED_STATUS = "Created"


class LifecycleOperations:
    """Create/delete wrappers for each resource kind."""

    def __init__(self, api: ManagementApi, locks: ProvisioningLocks) -> None:
        self.api = api
        self.locks = locks

    # =========================================================================
    # Existence checks
    # =========================================================================

    def affinity_group_exists(self, name: str, deadline: Deadline) -> bool:
        return any(group.name == name for group in self.api.list_affinity_groups(deadline))

    def storage_account_exists(self, name: str, deadline: Deadline) -> bool:
        return any(s.service_name == name for s in self.api.list_storage_services(deadline))

    def cloud_service_exists(self, name: str, deadline: Deadline) -> bool:
        return any(s.service_name == name for s in self.api.list_hosted_services(deadline))

    def disk_exists(self, name: str, deadline: Deadline) -> bool:
        return any(disk.name == name for disk in self.api.list_disks(deadline))

    def deployment_exists(self, service_name: str, deployment_name: str, deadline: Deadline) -> bool:
        service = self.api.get_hosted_service(service_name, deadline, embed_detail=True)
        if service is None:
            return False
        return any(d.name == deployment_name for d in service.deployments or [])

    def cloud_service_has_deployments(self, name: str, deadline: Deadline) -> bool:
        for slot in DEPLOYMENT_SLOTS:
            if self.api.get_deployment_by_slot(name, slot, deadline) is not None:
                logger.debug(
                    "Existing deployment in cloud service",
                    extra={"cloud_service": name, "slot": slot},
                )
                return True
        return False

    # =========================================================================
    # Affinity groups
    # =========================================================================

    def ensure_affinity_group(self, name: str, location: str, deadline: Deadline) -> bool:
        if self.affinity_group_exists(name, deadline):
            logger.info("Using an already existing affinity group", extra={"affinity_group": name})
            return False

        logger.info("Creating affinity group", extra={"affinity_group": name, "location": location})
        self.api.create_affinity_group(build_create_affinity_group(name, location), deadline)
        logger.debug("Created affinity group", extra={"affinity_group": name})
        return True

    def delete_affinity_group(self, name: str, deadline: Deadline) -> bool:
        if not self.affinity_group_exists(name, deadline):
            return False

        logger.info("Deleting affinity group", extra={"affinity_group": name})
        self.api.delete_affinity_group(name, deadline)
        return True

    # =========================================================================
    # Storage accounts
    # =========================================================================

    def ensure_storage_account(self, affinity_group: str, name: str, deadline: Deadline) -> bool:
        if self.storage_account_exists(name, deadline):
            logger.info("Using an already existing storage account", extra={"storage_account": name})
            return False

        logger.info("Creating storage account", extra={"storage_account": name, "affinity_group": affinity_group})
        self.api.create_storage_service(build_create_storage_account(affinity_group, name), deadline)
        return True

    def delete_storage_account(self, name: str, deadline: Deadline) -> bool:
        if not self.storage_account_exists(name, deadline):
            return False

        logger.info("Deleting storage account", extra={"storage_account": name})
        self.api.delete_storage_service(name, deadline)
        return True

    # =========================================================================
    # Cloud services
    # =========================================================================

    def ensure_cloud_service(self, name: str, affinity_group: str, deadline: Deadline) -> bool:
        """Create the cloud service if missing and wait until it is usable.

        Operation success does not mean the service accepts deployments yet,
        so creation also waits for its status to become Created.
        """
        if self.cloud_service_exists(name, deadline):
            logger.info("Using an already existing cloud service", extra={"cloud_service": name})
            return False

        logger.info("Creating cloud service", extra={"cloud_service": name, "affinity_group": affinity_group})
        self.api.create_hosted_service(build_create_cloud_service(name, affinity_group), deadline)
        self.await_cloud_service_created(name, deadline)
        logger.info("Cloud service created", extra={"cloud_service": name})
        return True

    def await_cloud_service_created(self, name: str, deadline: Deadline) -> HostedService:
        def status(service: HostedService | None) -> str | None:
            if service is None or service.properties is None:
                return None
            return service.properties.status

        def check(service: HostedService | None) -> None:
            if service is not None and service.properties is None:
                raise InvalidStateError(f"Couldn't retrieve cloud service properties of {name}")

        service = await_state(
            lambda: self.api.get_hosted_service(name, deadline),
            lambda s: status(s) == CLOUD_SERVICE_CREATED_STATUS,
            deadline,
            description=f"cloud service {name} to be created",
            interval=self.api.poller.interval,
            check=check,
            describe=status,
        )
        if service is None:
            raise InvalidStateError(f"Cloud service {name} not found")
        return service

    def delete_cloud_service(self, name: str, deadline: Deadline) -> bool:
        """Delete the cloud service unless it still holds a deployment.

        A service with deployments in either slot is left in place with a
        warning; this is not an error.
        """
        if not self.cloud_service_exists(name, deadline):
            logger.info("Cloud service does not exist", extra={"cloud_service": name})
            return False

        if self.cloud_service_has_deployments(name, deadline):
            logger.warning(
                "Can't delete cloud service, it still contains deployment(s)",
                extra={"cloud_service": name},
            )
            return False

        logger.info("Deleting cloud service", extra={"cloud_service": name})
        self.api.delete_hosted_service(name, deadline)
        return True

    # =========================================================================
    # Deployments and roles
    # =========================================================================

    def delete_deployment(self, service_name: str, deployment_name: str, deadline: Deadline) -> bool:
        if not self.deployment_exists(service_name, deployment_name, deadline):
            logger.info(
                "Deployment does not exist",
                extra={"cloud_service": service_name, "deployment": deployment_name},
            )
            return False

        with self.locks.hold(LockDomain.GENERAL, deadline):
            logger.info(
                "Deleting deployment",
                extra={"cloud_service": service_name, "deployment": deployment_name},
            )
            self.api.delete_deployment(service_name, deployment_name, deadline)
        return True

    def delete_role(self, service_name: str, deployment_name: str, role_name: str, deadline: Deadline) -> bool:
        deployment = self.api.get_deployment(service_name, deployment_name, deadline)
        if deployment is None or deployment.role(role_name) is None:
            logger.info(
                "Role does not exist",
                extra={"cloud_service": service_name, "deployment": deployment_name, "role": role_name},
            )
            return False

        with self.locks.hold(LockDomain.GENERAL, deadline):
            logger.info(
                "Deleting role from deployment",
                extra={"cloud_service": service_name, "deployment": deployment_name, "role": role_name},
            )
            self.api.delete_role(service_name, deployment_name, role_name, deadline)
        return True

    # =========================================================================
    # Disks
    # =========================================================================

    def delete_disk(self, name: str, deadline: Deadline, *, delete_blob: bool = True) -> bool:
        if not self.disk_exists(name, deadline):
            logger.info("Disk does not exist", extra={"disk": name})
            return False

        logger.info("Deleting disk", extra={"disk": name, "delete_blob": delete_blob})
        self.api.delete_disk(name, deadline, delete_blob=delete_blob)
        return True
