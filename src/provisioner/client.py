"""Provisioning client: one session of transport, locks and workflows.

Every public operation takes an absolute Deadline. Callers that think in
timeouts convert once at entry with `client.deadline(seconds)`.
"""

from __future__ import annotations

import logging
from typing import Any

from .api import ManagementApi
from .config import ClientConfig
from .deadline import Deadline
from .descriptors import DeploymentDescriptor, NetworkChange, RoleDetails
from .lifecycle import LifecycleOperations
from .locks import ProvisioningLocks
from .models import (
    AffinityGroup,
    DataVirtualHardDisk,
    Deployment,
    Disk,
    HostedService,
    StorageService,
    VirtualNetworkSite,
)
from .network import NetworkTopology
from .polling import Poller
from .saga import SagaProgress, VirtualMachineProvisioner
from .security import build_auth_policies
from .storage import DataDiskOperations
from .transport import ManagementTransport

logger = logging.getLogger(__name__)


class ProvisioningClient:
    """Classic Service Management provisioning for one subscription.

    The client is safe to share between threads. The HTTP pipeline and the
    three lock domains are the only state shared across calls.
    """

    def __init__(self, config: ClientConfig, transport: ManagementTransport | None = None) -> None:
        self.config = config
        if transport is None:
            policies, bundle = build_auth_policies(config)
            transport = ManagementTransport(
                config,
                auth_policies=policies,
                connection_cert=bundle.as_connection_cert() if bundle else None,
            )
        self.transport = transport
        self.api = ManagementApi(transport, Poller(transport))
        self.locks = ProvisioningLocks()
        self.lifecycle = LifecycleOperations(self.api, self.locks)
        self.network = NetworkTopology(self.api, self.locks)
        self.storage = DataDiskOperations(self.api, self.locks)
        self.storage_accounts: set[str] = set()
        self.provisioner = VirtualMachineProvisioner(
            config,
            self.api,
            self.locks,
            self.lifecycle,
            self.network,
            self.storage,
            self.storage_accounts,
        )
        logger.info(
            "Provisioning client initialized",
            extra={"subscription_id": config.subscription_id, "auth_mode": config.auth_mode.value},
        )

    def deadline(self, timeout_seconds: float | None = None) -> Deadline:
        """An absolute deadline `timeout_seconds` from now (configured default if None)."""
        return Deadline.after(timeout_seconds if timeout_seconds is not None else self.config.default_timeout_seconds)

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> ProvisioningClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # Listings
    # =========================================================================

    def list_affinity_groups(self, deadline: Deadline) -> list[AffinityGroup]:
        return self.api.list_affinity_groups(deadline)

    def list_storage_accounts(self, deadline: Deadline) -> list[StorageService]:
        return self.api.list_storage_services(deadline)

    def list_cloud_services(self, deadline: Deadline) -> list[HostedService]:
        return self.api.list_hosted_services(deadline)

    def list_disks(self, deadline: Deadline) -> list[Disk]:
        return self.api.list_disks(deadline)

    def list_os_images(self, deadline: Deadline) -> str:
        return self.api.list_os_images(deadline)

    def list_virtual_network_sites(self, deadline: Deadline) -> list[VirtualNetworkSite]:
        return self.network.list_sites(deadline)

    def get_deployment_by_slot(self, service_name: str, slot: str, deadline: Deadline) -> Deployment | None:
        return self.api.get_deployment_by_slot(service_name, slot, deadline)

    def get_deployment(self, service_name: str, deployment_name: str, deadline: Deadline) -> Deployment | None:
        return self.api.get_deployment(service_name, deployment_name, deadline)

    def get_deployment_by_ip(self, address: str, deadline: Deadline) -> Deployment | None:
        return self.provisioner.find_deployment_by_ip(address, deadline)

    # =========================================================================
    # Resource lifecycle
    # =========================================================================

    def ensure_affinity_group(self, name: str, location: str, deadline: Deadline) -> bool:
        return self.lifecycle.ensure_affinity_group(name, location, deadline)

    def delete_affinity_group(self, name: str, deadline: Deadline) -> bool:
        return self.lifecycle.delete_affinity_group(name, deadline)

    def ensure_storage_account(self, affinity_group: str, name: str, deadline: Deadline) -> bool:
        """Create the storage account if missing and track it for machine teardown."""
        created = self.lifecycle.ensure_storage_account(affinity_group, name, deadline)
        self.storage_accounts.add(name)
        return created

    def delete_storage_account(self, name: str, deadline: Deadline) -> bool:
        deleted = self.lifecycle.delete_storage_account(name, deadline)
        self.storage_accounts.discard(name)
        return deleted

    def ensure_cloud_service(self, name: str, affinity_group: str, deadline: Deadline) -> bool:
        return self.lifecycle.ensure_cloud_service(name, affinity_group, deadline)

    def delete_cloud_service(self, name: str, deadline: Deadline) -> bool:
        return self.lifecycle.delete_cloud_service(name, deadline)

    def delete_disk(self, name: str, deadline: Deadline, *, delete_blob: bool = True) -> bool:
        return self.lifecycle.delete_disk(name, deadline, delete_blob=delete_blob)

    # =========================================================================
    # Network topology
    # =========================================================================

    def merge_network_change(self, change: NetworkChange, deadline: Deadline) -> bool:
        return self.network.merge_network_change(change, deadline)

    def ensure_virtual_network_site(
        self, address_space: str, affinity_group: str, site_name: str, deadline: Deadline
    ) -> bool:
        return self.network.ensure_virtual_network_site(address_space, affinity_group, site_name, deadline)

    def add_subnet(self, site_name: str, subnet_name: str, address_prefix: str, deadline: Deadline) -> bool:
        return self.network.add_subnet(site_name, subnet_name, address_prefix, deadline)

    def remove_subnet(self, site_name: str, subnet_name: str, deadline: Deadline) -> bool:
        return self.network.remove_subnet(site_name, subnet_name, deadline)

    def delete_virtual_network_site(self, site_name: str, deadline: Deadline) -> bool:
        return self.network.delete_virtual_network_site(site_name, deadline)

    def subnet_exists(self, site_name: str, subnet_name: str, deadline: Deadline) -> bool:
        return self.network.subnet_exists(site_name, subnet_name, deadline)

    # =========================================================================
    # Data disks
    # =========================================================================

    def add_data_disk(
        self,
        service_name: str,
        deployment_name: str,
        role_name: str,
        storage_account: str,
        size_gb: int,
        deadline: Deadline,
        **kwargs: Any,
    ) -> DataVirtualHardDisk:
        return self.storage.add_data_disk(
            service_name, deployment_name, role_name, storage_account, size_gb, deadline, **kwargs
        )

    def attach_existing_disk(
        self,
        service_name: str,
        deployment_name: str,
        role_name: str,
        disk_name: str,
        lun: int,
        deadline: Deadline,
        **kwargs: Any,
    ) -> DataVirtualHardDisk:
        return self.storage.attach_existing_disk(
            service_name, deployment_name, role_name, disk_name, lun, deadline, **kwargs
        )

    def detach_data_disk(
        self, service_name: str, deployment_name: str, role_name: str, lun: int, deadline: Deadline
    ) -> str | None:
        return self.storage.detach_data_disk(service_name, deployment_name, role_name, lun, deadline)

    def get_data_disk(
        self, service_name: str, deployment_name: str, role_name: str, lun: int, deadline: Deadline
    ) -> DataVirtualHardDisk | None:
        return self.storage.get_data_disk(service_name, deployment_name, role_name, lun, deadline)

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
        return self.storage.create_unattached_disk(
            service_name, deployment_name, role_name, storage_account, vhd_filename, size_gb, deadline
        )

    def update_disk_label(self, disk_name: str, label: str, deadline: Deadline) -> None:
        self.storage.update_disk_label(disk_name, label, deadline)

    # =========================================================================
    # Virtual machines
    # =========================================================================

    def create_virtual_machine_deployment(
        self, desc: DeploymentDescriptor, deadline: Deadline, progress: SagaProgress | None = None
    ) -> RoleDetails:
        return self.provisioner.create_virtual_machine_deployment(desc, deadline, progress)

    def delete_virtual_machine_by_ip(self, address: str, deadline: Deadline) -> None:
        self.provisioner.delete_virtual_machine_by_ip(address, deadline)

    def delete_virtual_machine_by_deployment_name(
        self, service_name: str, deployment_name: str, deadline: Deadline
    ) -> None:
        self.provisioner.delete_virtual_machine_by_deployment_name(service_name, deployment_name, deadline)
