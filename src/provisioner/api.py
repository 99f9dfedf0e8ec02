"""Typed access to Service Management resource paths.

Reads return parsed documents (None where absence is a normal outcome).
Mutations submit a request and wait for its operation to reach a terminal
status before returning; no mutation is complete before that.
"""

from __future__ import annotations

import logging

from .codec import marshal, unmarshal, unmarshal_list
from .deadline import Deadline
from .models import (
    AddressAvailability,
    AffinityGroup,
    CreateAffinityGroup,
    CreateGatewayParameters,
    CreateHostedService,
    CreateStorageServiceInput,
    DataVirtualHardDisk,
    Deployment,
    Disk,
    GatewayInfo,
    HostedService,
    NetworkConfiguration,
    Role,
    SharedKey,
    StorageService,
    WireModel,
)
from .polling import Poller
from .transport import TEXT_CONTENT_TYPE, ManagementResponse, ManagementTransport

logger = logging.getLogger(__name__)

HOSTED_SERVICES = "/services/hostedservices"
STORAGE_SERVICES = "/services/storageservices"
AFFINITY_GROUPS = "/affinitygroups"
DISKS = "/services/disks"
NETWORK_MEDIA = "/services/networking/media"


def _deployment_path(service_name: str, deployment_name: str) -> str:
    return f"{HOSTED_SERVICES}/{service_name}/deployments/{deployment_name}"


def _data_disks_path(service_name: str, deployment_name: str, role_name: str) -> str:
    return f"{_deployment_path(service_name, deployment_name)}/roles/{role_name}/DataDisks"


class ManagementApi:
    """One method per provider call used by the lifecycle workflows."""

    def __init__(self, transport: ManagementTransport, poller: Poller | None = None) -> None:
        self.transport = transport
        self.poller = poller or Poller(transport)

    def _read(self, path: str, deadline: Deadline) -> ManagementResponse:
        return self.transport.get(path, deadline)

    def _find(self, path: str, deadline: Deadline) -> ManagementResponse | None:
        return self.transport.get(path, deadline, allow_not_found=True)

    def _submit(self, response: ManagementResponse, deadline: Deadline) -> None:
        self.poller.await_operation(response.request_id, deadline)

    def _post(self, path: str, body: WireModel, deadline: Deadline) -> None:
        self._submit(self.transport.post(path, marshal(body), deadline), deadline)

    def _delete(self, path: str, deadline: Deadline) -> None:
        self._submit(self.transport.delete(path, deadline), deadline)

    # =========================================================================
    # Affinity groups
    # =========================================================================

    def list_affinity_groups(self, deadline: Deadline) -> list[AffinityGroup]:
        response = self._read(AFFINITY_GROUPS, deadline)
        return unmarshal_list(response.body, AffinityGroup)

    def create_affinity_group(self, body: CreateAffinityGroup, deadline: Deadline) -> None:
        self._post(AFFINITY_GROUPS, body, deadline)

    def delete_affinity_group(self, name: str, deadline: Deadline) -> None:
        self._delete(f"{AFFINITY_GROUPS}/{name}", deadline)

    # =========================================================================
    # Storage accounts
    # =========================================================================

    def list_storage_services(self, deadline: Deadline) -> list[StorageService]:
        response = self._read(STORAGE_SERVICES, deadline)
        return unmarshal_list(response.body, StorageService)

    def create_storage_service(self, body: CreateStorageServiceInput, deadline: Deadline) -> None:
        self._post(STORAGE_SERVICES, body, deadline)

    def delete_storage_service(self, name: str, deadline: Deadline) -> None:
        self._delete(f"{STORAGE_SERVICES}/{name}", deadline)

    # =========================================================================
    # Cloud services, deployments, roles
    # =========================================================================

    def list_hosted_services(self, deadline: Deadline) -> list[HostedService]:
        response = self._read(HOSTED_SERVICES, deadline)
        return unmarshal_list(response.body, HostedService)

    def get_hosted_service(
        self, name: str, deadline: Deadline, *, embed_detail: bool = False
    ) -> HostedService | None:
        path = f"{HOSTED_SERVICES}/{name}"
        if embed_detail:
            path += "?embed-detail=true"
        response = self._find(path, deadline)
        if response is None:
            return None
        service = unmarshal(response.body, HostedService)
        for deployment in service.deployments or []:
            deployment.hosted_service_name = name
        return service

    def create_hosted_service(self, body: CreateHostedService, deadline: Deadline) -> None:
        self._post(HOSTED_SERVICES, body, deadline)

    def delete_hosted_service(self, name: str, deadline: Deadline) -> None:
        self._delete(f"{HOSTED_SERVICES}/{name}", deadline)

    def get_deployment_by_slot(self, service_name: str, slot: str, deadline: Deadline) -> Deployment | None:
        return self.poller.deployment_by_slot(service_name, slot, deadline)

    def get_deployment(self, service_name: str, deployment_name: str, deadline: Deadline) -> Deployment | None:
        response = self._find(_deployment_path(service_name, deployment_name), deadline)
        if response is None:
            return None
        deployment = unmarshal(response.body, Deployment)
        deployment.hosted_service_name = service_name
        return deployment

    def create_deployment(self, service_name: str, body: Deployment, deadline: Deadline) -> None:
        self._post(f"{HOSTED_SERVICES}/{service_name}/deployments", body, deadline)

    def delete_deployment(self, service_name: str, deployment_name: str, deadline: Deadline) -> None:
        self._delete(_deployment_path(service_name, deployment_name), deadline)

    def add_role(self, service_name: str, deployment_name: str, body: Role, deadline: Deadline) -> None:
        self._post(f"{_deployment_path(service_name, deployment_name)}/roles", body, deadline)

    def delete_role(self, service_name: str, deployment_name: str, role_name: str, deadline: Deadline) -> None:
        self._delete(f"{_deployment_path(service_name, deployment_name)}/roles/{role_name}", deadline)

    # =========================================================================
    # Disks
    # =========================================================================

    def list_disks(self, deadline: Deadline) -> list[Disk]:
        response = self._read(DISKS, deadline)
        return unmarshal_list(response.body, Disk)

    def get_disk(self, name: str, deadline: Deadline) -> Disk | None:
        return self.poller.get_disk(name, deadline)

    def update_disk(self, body: Disk, deadline: Deadline) -> None:
        response = self.transport.put(f"{DISKS}/{body.name}", marshal(body), deadline)
        self._submit(response, deadline)

    def delete_disk(self, name: str, deadline: Deadline, *, delete_blob: bool = False) -> None:
        path = f"{DISKS}/{name}"
        if delete_blob:
            path += "?comp=media"
        self._delete(path, deadline)

    def get_data_disk(
        self, service_name: str, deployment_name: str, role_name: str, lun: int, deadline: Deadline
    ) -> DataVirtualHardDisk | None:
        response = self._find(f"{_data_disks_path(service_name, deployment_name, role_name)}/{lun}", deadline)
        if response is None:
            return None
        return unmarshal(response.body, DataVirtualHardDisk)

    def add_data_disk(
        self, service_name: str, deployment_name: str, role_name: str, body: DataVirtualHardDisk, deadline: Deadline
    ) -> None:
        self._post(_data_disks_path(service_name, deployment_name, role_name), body, deadline)

    def remove_data_disk(
        self, service_name: str, deployment_name: str, role_name: str, lun: int, deadline: Deadline
    ) -> None:
        self._delete(f"{_data_disks_path(service_name, deployment_name, role_name)}/{lun}", deadline)

    # =========================================================================
    # Networking
    # =========================================================================

    def get_network_configuration(self, deadline: Deadline) -> NetworkConfiguration | None:
        """The topology document, or None if the subscription has none yet."""
        response = self._find(NETWORK_MEDIA, deadline)
        if response is None:
            return None
        return unmarshal(response.body, NetworkConfiguration)

    def set_network_configuration(self, document: NetworkConfiguration, deadline: Deadline) -> None:
        response = self.transport.put(NETWORK_MEDIA, marshal(document), deadline, TEXT_CONTENT_TYPE)
        self._submit(response, deadline)

    def check_address_availability(
        self, virtual_network: str, address: str, deadline: Deadline
    ) -> AddressAvailability:
        response = self._read(
            f"/services/networking/{virtual_network}?op=checkavailability&address={address}", deadline
        )
        return unmarshal(response.body, AddressAvailability)

    def get_gateway(self, virtual_network: str, deadline: Deadline) -> GatewayInfo | None:
        return self.poller.get_gateway(virtual_network, deadline)

    def create_gateway(self, virtual_network: str, gateway_type: str, deadline: Deadline) -> None:
        self._post(
            f"/services/networking/{virtual_network}/gateway",
            CreateGatewayParameters(gateway_type=gateway_type),
            deadline,
        )

    def delete_gateway(self, virtual_network: str, deadline: Deadline) -> None:
        self._delete(f"/services/networking/{virtual_network}/gateway", deadline)

    def set_gateway_shared_key(
        self, virtual_network: str, local_site: str, key: str, deadline: Deadline
    ) -> None:
        self._post(
            f"/services/networking/{virtual_network}/gateway/connection/{local_site}/sharedkey",
            SharedKey(value=key),
            deadline,
        )

    # =========================================================================
    # Images
    # =========================================================================

    def list_os_images(self, deadline: Deadline) -> str:
        """The raw OS image list document."""
        response = self._read("/services/images", deadline)
        return response.body
