"""Data disk operations, serialized by the storage lock."""

from __future__ import annotations

import logging

from .api import ManagementApi
from .builders import build_existing_data_disk, build_new_data_disk, data_disk_vhd_name
from .deadline import Deadline
from .descriptors import HOST_CACHING_MODES
from .errors import InvalidStateError
from .locks import LockDomain, ProvisioningLocks
from .models import DataVirtualHardDisk, Disk
from .polling import await_state

logger = logging.getLogger(__name__)

MIN_LUN = 0
MAX_LUN = 15

DEFAULT_DATA_DISK_LUN = 0

# Slot used to create a disk by attaching it and detaching it again
UNATTACHED_DISK_LUN = 15


def validate_lun(lun: int) -> int:
    if not (MIN_LUN <= lun <= MAX_LUN):
        raise ValueError(f"LUN must be between {MIN_LUN} and {MAX_LUN}: {lun}")
    return lun


def validate_host_caching(host_caching: str | None) -> str | None:
    if host_caching is not None and host_caching not in HOST_CACHING_MODES:
        raise ValueError(f"host caching must be one of {sorted(HOST_CACHING_MODES)}: {host_caching}")
    return host_caching


class DataDiskOperations:
    """Attach, detach and create data disks on virtual machine roles."""

    def __init__(self, api: ManagementApi, locks: ProvisioningLocks) -> None:
        self.api = api
        self.locks = locks

    def get_data_disk(
        self, service_name: str, deployment_name: str, role_name: str, lun: int, deadline: Deadline
    ) -> DataVirtualHardDisk | None:
        return self.api.get_data_disk(service_name, deployment_name, role_name, validate_lun(lun), deadline)

    def _await_attached(
        self, service_name: str, deployment_name: str, role_name: str, lun: int, deadline: Deadline
    ) -> DataVirtualHardDisk:
        disk = await_state(
            lambda: self.api.get_data_disk(service_name, deployment_name, role_name, lun, deadline),
            lambda d: d is not None,
            deadline,
            description=f"disk lun #{lun} to be attached to role {role_name}",
            interval=self.api.poller.interval,
        )
        if disk is None:
            raise InvalidStateError(f"Disk lun #{lun} of role {role_name} not found")
        return disk

    def add_data_disk(
        self,
        service_name: str,
        deployment_name: str,
        role_name: str,
        storage_account: str,
        size_gb: int,
        deadline: Deadline,
        *,
        lun: int = DEFAULT_DATA_DISK_LUN,
        vhd_filename: str | None = None,
        host_caching: str | None = None,
    ) -> DataVirtualHardDisk:
        """Create a new empty disk and attach it to the role at `lun`."""
        body = build_new_data_disk(
            storage_account,
            vhd_filename or data_disk_vhd_name(service_name, role_name),
            size_gb,
            validate_lun(lun),
            validate_host_caching(host_caching),
        )
        with self.locks.hold(LockDomain.STORAGE, deadline):
            logger.info(
                "Adding data disk",
                extra={"role": role_name, "lun": lun, "size_gb": size_gb, "media_link": body.media_link},
            )
            self.api.add_data_disk(service_name, deployment_name, role_name, body, deadline)
            disk = self._await_attached(service_name, deployment_name, role_name, lun, deadline)
        logger.debug("Added a data disk", extra={"role": role_name, "disk": disk.disk_name})
        return disk

    def attach_existing_disk(
        self,
        service_name: str,
        deployment_name: str,
        role_name: str,
        disk_name: str,
        lun: int,
        deadline: Deadline,
        *,
        host_caching: str | None = None,
    ) -> DataVirtualHardDisk:
        body = build_existing_data_disk(disk_name, validate_lun(lun), validate_host_caching(host_caching))
        with self.locks.hold(LockDomain.STORAGE, deadline):
            logger.info("Attaching existing disk", extra={"role": role_name, "disk": disk_name, "lun": lun})
            self.api.add_data_disk(service_name, deployment_name, role_name, body, deadline)
            return self._await_attached(service_name, deployment_name, role_name, lun, deadline)

    def detach_data_disk(
        self, service_name: str, deployment_name: str, role_name: str, lun: int, deadline: Deadline
    ) -> str | None:
        """Detach the disk at `lun` and wait until the provider reports it unattached.

        Returns:
            The name of the detached disk, or None if nothing was attached there.
        """
        disk = self.get_data_disk(service_name, deployment_name, role_name, lun, deadline)
        if disk is None:
            logger.warning("No data disk attached at LUN", extra={"role": role_name, "lun": lun})
            return None
        if disk.disk_name is None:
            raise InvalidStateError(f"Data disk at LUN {lun} of role {role_name} has no name")

        self.api.remove_data_disk(service_name, deployment_name, role_name, lun, deadline)
        self.api.poller.await_disk_detached(disk.disk_name, deadline)
        logger.debug("Removed data disk", extra={"role": role_name, "disk": disk.disk_name})
        return disk.disk_name

    def create_unattached_disk(
        self,
        service_name: str,
        deployment_name: str,
        role_name: str,
        storage_account: str,
        vhd_filename: str,
        size_gb: int,
        deadline: Deadline,
    ) -> str:
        """Create a data disk that is not attached to any role.

        The provider has no call to create a standalone disk, so the disk is
        attached to the given role at UNATTACHED_DISK_LUN and detached again
        right away. Revisit if a direct creation call becomes available.
        """
        with self.locks.hold(LockDomain.STORAGE, deadline):
            disk = self.add_data_disk(
                service_name,
                deployment_name,
                role_name,
                storage_account,
                size_gb,
                deadline,
                lun=UNATTACHED_DISK_LUN,
                vhd_filename=vhd_filename,
            )
            detached = self.detach_data_disk(
                service_name, deployment_name, role_name, UNATTACHED_DISK_LUN, deadline
            )
        disk_name = detached or disk.disk_name
        if disk_name is None:
            raise InvalidStateError(f"Created data disk {vhd_filename} has no name")
        logger.info("Created unattached data disk", extra={"disk": disk_name})
        return disk_name

    def update_disk_label(self, disk_name: str, label: str, deadline: Deadline) -> None:
        self.api.update_disk(Disk(name=disk_name, label=label), deadline)
