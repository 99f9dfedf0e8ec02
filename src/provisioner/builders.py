"""Request bodies for the Service Management API, built from caller intent."""

from __future__ import annotations

import base64
import uuid

from .descriptors import DeploymentDescriptor, ExtensionSpec
from .models import (
    CreateAffinityGroup,
    CreateHostedService,
    CreateStorageServiceInput,
    DataVirtualHardDisk,
    Deployment,
    InputEndpoint,
    LinuxProvisioningConfigurationSet,
    NetworkConfigurationSet,
    OSVirtualHardDisk,
    ResourceExtensionParameterValue,
    ResourceExtensionReference,
    Role,
    WindowsProvisioningConfigurationSet,
)

# Windows computer names are NetBIOS names
MAX_WINDOWS_COMPUTER_NAME_LENGTH = 15

OS_DISK_HOST_CACHING = "ReadWrite"
DATA_DISK_LABEL = "Data"


def encode_label(value: str) -> str:
    """Labels are sent base64 encoded."""
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def random_suffix(length: int = 8) -> str:
    return uuid.uuid4().hex[:length]


def generate_name(prefix: str, length: int = 8) -> str:
    """`prefix` followed by a random lowercase hex suffix."""
    return f"{prefix}{random_suffix(length)}"


def media_link(storage_account: str, vhd_filename: str) -> str:
    return f"https://{storage_account}.blob.core.windows.net/vhds/{vhd_filename}"


def data_disk_vhd_name(service_name: str, role_name: str) -> str:
    return f"{service_name}-{role_name}-data-{random_suffix(4)}.vhd"


# =============================================================================
# Affinity groups, storage, cloud services
# =============================================================================


def build_create_affinity_group(name: str, location: str) -> CreateAffinityGroup:
    return CreateAffinityGroup(
        name=name,
        label=encode_label(name),
        description=f"Affinity group {name}",
        location=location,
    )


def build_create_storage_account(affinity_group: str, name: str) -> CreateStorageServiceInput:
    return CreateStorageServiceInput(
        service_name=name,
        label=encode_label(name),
        description=f"Storage account {name}",
        affinity_group=affinity_group,
        geo_replication_enabled=False,
    )


def build_create_cloud_service(name: str, affinity_group: str) -> CreateHostedService:
    return CreateHostedService(
        service_name=name,
        label=encode_label(name),
        description=f"Cloud service {name}",
        affinity_group=affinity_group,
    )


# =============================================================================
# Roles and deployments
# =============================================================================


def build_extension_references(extensions: list[ExtensionSpec]) -> list[ResourceExtensionReference] | None:
    if not extensions:
        return None
    references = []
    for extension in extensions:
        parameters = [
            ResourceExtensionParameterValue(key=key, value=value)
            for key, value in extension.parameters.items()
        ]
        references.append(
            ResourceExtensionReference(
                reference_name=extension.reference_name or extension.name,
                publisher=extension.publisher,
                name=extension.name,
                version=extension.version,
                parameter_values=parameters or None,
            )
        )
    return references


def _provisioning_configuration(
    desc: DeploymentDescriptor,
) -> LinuxProvisioningConfigurationSet | WindowsProvisioningConfigurationSet:
    if desc.is_windows:
        if desc.password is None:
            raise ValueError("password is required for Windows machines")
        return WindowsProvisioningConfigurationSet(
            computer_name=desc.role_name[:MAX_WINDOWS_COMPUTER_NAME_LENGTH],
            admin_password=desc.password,
            admin_username=desc.username,
        )
    return LinuxProvisioningConfigurationSet(
        host_name=desc.role_name,
        user_name=desc.username,
        user_password=desc.password,
        disable_ssh_password_authentication=desc.password is None,
    )


def _network_configuration(desc: DeploymentDescriptor) -> NetworkConfigurationSet:
    endpoints = [
        InputEndpoint(
            name=endpoint.name,
            protocol=endpoint.protocol,
            port=endpoint.port,
            local_port=endpoint.local_port or endpoint.port,
        )
        for endpoint in desc.input_endpoints
    ]
    return NetworkConfigurationSet(
        input_endpoints=endpoints or None,
        subnet_names=[desc.subnet_name] if desc.subnet_name else None,
        static_virtual_network_ip_address=desc.available_ip,
    )


def build_role(desc: DeploymentDescriptor) -> Role:
    """The role body for a machine described by `desc`.

    `desc.hosted_service_name` must already be resolved; it names the OS disk.
    """
    os_vhd = f"{desc.hosted_service_name}-{desc.role_name}-{random_suffix(4)}.vhd"
    extensions = build_extension_references(desc.extensions)
    return Role(
        role_name=desc.role_name,
        configuration_sets=[_provisioning_configuration(desc), _network_configuration(desc)],
        resource_extension_references=extensions,
        availability_set_name=desc.availability_set,
        os_virtual_hard_disk=OSVirtualHardDisk(
            host_caching=OS_DISK_HOST_CACHING,
            media_link=media_link(desc.storage_account_name, os_vhd),
            source_image_name=desc.image_name,
        ),
        role_size=desc.size,
        provision_guest_agent=True if extensions else None,
    )


def build_deployment(desc: DeploymentDescriptor) -> Deployment:
    """A new deployment holding the single role described by `desc`."""
    if desc.deployment_name is None:
        raise ValueError("deployment name must be resolved before building the deployment")
    return Deployment(
        name=desc.deployment_name,
        deployment_slot=desc.deployment_slot,
        label=encode_label(desc.deployment_name),
        role_list=[build_role(desc)],
        virtual_network_name=desc.network_name,
    )


# =============================================================================
# Data disks
# =============================================================================


def build_new_data_disk(
    storage_account: str, vhd_filename: str, size_gb: int, lun: int, host_caching: str | None = None
) -> DataVirtualHardDisk:
    return DataVirtualHardDisk(
        host_caching=host_caching,
        disk_label=DATA_DISK_LABEL,
        lun=lun,
        logical_disk_size_in_gb=size_gb,
        media_link=media_link(storage_account, vhd_filename),
    )


def build_existing_data_disk(disk_name: str, lun: int, host_caching: str | None = None) -> DataVirtualHardDisk:
    return DataVirtualHardDisk(host_caching=host_caching, disk_name=disk_name, lun=lun)
