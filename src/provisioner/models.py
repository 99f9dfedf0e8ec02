"""Pydantic models for Service Management documents.

Field aliases carry the element names used on the wire; aliases starting with
"@" are XML attributes. Field declaration order is the element order the
provider expects in request bodies.

These models provide:
1. Type-safe parsing of provider responses (through codec.unmarshal)
2. Request bodies built from typed values (through codec.marshal)
3. Small lookup helpers used by the lifecycle and topology code
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal, Self, Union

from pydantic import (
    BaseModel,
    Field,
    ModelWrapValidatorHandler,
    PrivateAttr,
    SerializerFunctionWrapHandler,
    model_serializer,
    model_validator,
)

WINDOWS_AZURE_NAMESPACE = "http://schemas.microsoft.com/windowsazure"
NETWORK_CONFIGURATION_NAMESPACE = (
    "http://schemas.microsoft.com/ServiceHosting/2011/07/NetworkConfiguration"
)

# Operation statuses
OPERATION_IN_PROGRESS = "InProgress"
OPERATION_SUCCEEDED = "Succeeded"
OPERATION_FAILED = "Failed"

# Deployment slots
PRODUCTION_SLOT = "Production"
STAGING_SLOT = "Staging"
DEPLOYMENT_SLOTS: tuple[str, ...] = (PRODUCTION_SLOT, STAGING_SLOT)


class WireModel(BaseModel):
    """Base for every document exchanged with the provider."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Root element name and namespace when the model is a whole document
    xml_tag: ClassVar[str | None] = None
    xml_namespace: ClassVar[str] = WINDOWS_AZURE_NAMESPACE


# =============================================================================
# Async envelope
# =============================================================================


class Error(WireModel):
    """Error document returned with any non-2xx response."""

    xml_tag: ClassVar[str | None] = "Error"

    code: str | None = Field(None, alias="Code")
    message: str | None = Field(None, alias="Message")


class Operation(WireModel):
    """Status of an asynchronous request, keyed by its request id."""

    xml_tag: ClassVar[str | None] = "Operation"

    id: str | None = Field(None, alias="ID")
    status: str = Field(alias="Status")
    http_status_code: int | None = Field(None, alias="HttpStatusCode")
    error: Error | None = Field(None, alias="Error")


# =============================================================================
# Affinity groups and storage
# =============================================================================


class AffinityGroup(WireModel):
    xml_tag: ClassVar[str | None] = "AffinityGroup"

    name: str = Field(alias="Name")
    label: str | None = Field(None, alias="Label")
    description: str | None = Field(None, alias="Description")
    location: str | None = Field(None, alias="Location")


class CreateAffinityGroup(WireModel):
    xml_tag: ClassVar[str | None] = "CreateAffinityGroup"

    name: str = Field(alias="Name")
    label: str = Field(alias="Label")
    description: str | None = Field(None, alias="Description")
    location: str = Field(alias="Location")


class StorageServiceProperties(WireModel):
    description: str | None = Field(None, alias="Description")
    affinity_group: str | None = Field(None, alias="AffinityGroup")
    location: str | None = Field(None, alias="Location")
    label: str | None = Field(None, alias="Label")
    status: str | None = Field(None, alias="Status")


class StorageService(WireModel):
    xml_tag: ClassVar[str | None] = "StorageService"

    url: str | None = Field(None, alias="Url")
    service_name: str = Field(alias="ServiceName")
    properties: StorageServiceProperties | None = Field(None, alias="StorageServiceProperties")


class CreateStorageServiceInput(WireModel):
    xml_tag: ClassVar[str | None] = "CreateStorageServiceInput"

    service_name: str = Field(alias="ServiceName")
    description: str | None = Field(None, alias="Description")
    label: str = Field(alias="Label")
    affinity_group: str = Field(alias="AffinityGroup")
    geo_replication_enabled: bool = Field(False, alias="GeoReplicationEnabled")


# =============================================================================
# Virtual machine roles
# =============================================================================


class InputEndpoint(WireModel):
    local_port: int | None = Field(None, alias="LocalPort")
    name: str = Field(alias="Name")
    port: int | None = Field(None, alias="Port")
    protocol: str = Field("tcp", alias="Protocol")
    vip: str | None = Field(None, alias="Vip")


class NetworkConfigurationSet(WireModel):
    configuration_set_type: Literal["NetworkConfiguration"] = Field(
        "NetworkConfiguration", alias="ConfigurationSetType"
    )
    input_endpoints: list[InputEndpoint] | None = Field(None, alias="InputEndpoints")
    subnet_names: list[str] | None = Field(None, alias="SubnetNames")
    static_virtual_network_ip_address: str | None = Field(
        None, alias="StaticVirtualNetworkIPAddress"
    )


class LinuxProvisioningConfigurationSet(WireModel):
    configuration_set_type: Literal["LinuxProvisioningConfiguration"] = Field(
        "LinuxProvisioningConfiguration", alias="ConfigurationSetType"
    )
    host_name: str = Field(alias="HostName")
    user_name: str = Field(alias="UserName")
    user_password: str | None = Field(None, alias="UserPassword")
    disable_ssh_password_authentication: bool = Field(
        False, alias="DisableSshPasswordAuthentication"
    )


class DomainJoinCredentials(WireModel):
    domain: str = Field(alias="Domain")
    username: str = Field(alias="Username")
    password: str = Field(alias="Password")


class DomainJoin(WireModel):
    credentials: DomainJoinCredentials = Field(alias="Credentials")
    join_domain: str = Field(alias="JoinDomain")
    machine_object_ou: str | None = Field(None, alias="MachineObjectOU")


class WindowsProvisioningConfigurationSet(WireModel):
    configuration_set_type: Literal["WindowsProvisioningConfiguration"] = Field(
        "WindowsProvisioningConfiguration", alias="ConfigurationSetType"
    )
    computer_name: str = Field(alias="ComputerName")
    admin_password: str = Field(alias="AdminPassword")
    enable_automatic_updates: bool = Field(True, alias="EnableAutomaticUpdates")
    time_zone: str | None = Field(None, alias="TimeZone")
    domain_join: DomainJoin | None = Field(None, alias="DomainJoin")
    admin_username: str = Field(alias="AdminUsername")


# One case per configuration-set kind, discriminated by ConfigurationSetType
ConfigurationSet = Annotated[
    Union[
        NetworkConfigurationSet,
        LinuxProvisioningConfigurationSet,
        WindowsProvisioningConfigurationSet,
    ],
    Field(discriminator="configuration_set_type"),
]


class ResourceExtensionParameterValue(WireModel):
    key: str = Field(alias="Key")
    value: str = Field(alias="Value")
    type: str = Field("Public", alias="Type")


class ResourceExtensionReference(WireModel):
    reference_name: str = Field(alias="ReferenceName")
    publisher: str = Field(alias="Publisher")
    name: str = Field(alias="Name")
    version: str = Field(alias="Version")
    parameter_values: list[ResourceExtensionParameterValue] | None = Field(
        None, alias="ResourceExtensionParameterValues"
    )
    state: str | None = Field(None, alias="State")


class DataVirtualHardDisk(WireModel):
    xml_tag: ClassVar[str | None] = "DataVirtualHardDisk"

    host_caching: str | None = Field(None, alias="HostCaching")
    disk_label: str | None = Field(None, alias="DiskLabel")
    disk_name: str | None = Field(None, alias="DiskName")
    lun: int | None = Field(None, alias="Lun")
    logical_disk_size_in_gb: int | None = Field(None, alias="LogicalDiskSizeInGB")
    media_link: str | None = Field(None, alias="MediaLink")


class OSVirtualHardDisk(WireModel):
    host_caching: str | None = Field(None, alias="HostCaching")
    disk_label: str | None = Field(None, alias="DiskLabel")
    disk_name: str | None = Field(None, alias="DiskName")
    media_link: str | None = Field(None, alias="MediaLink")
    source_image_name: str | None = Field(None, alias="SourceImageName")
    os: str | None = Field(None, alias="OS")


class Role(WireModel):
    """A virtual machine role; also the body of an add-role request."""

    xml_tag: ClassVar[str | None] = "PersistentVMRole"

    role_name: str = Field(alias="RoleName")
    role_type: str = Field("PersistentVMRole", alias="RoleType")
    configuration_sets: list[ConfigurationSet] = Field(
        default_factory=list, alias="ConfigurationSets"
    )
    resource_extension_references: list[ResourceExtensionReference] | None = Field(
        None, alias="ResourceExtensionReferences"
    )
    availability_set_name: str | None = Field(None, alias="AvailabilitySetName")
    data_virtual_hard_disks: list[DataVirtualHardDisk] | None = Field(
        None, alias="DataVirtualHardDisks"
    )
    os_virtual_hard_disk: OSVirtualHardDisk | None = Field(None, alias="OSVirtualHardDisk")
    role_size: str | None = Field(None, alias="RoleSize")
    provision_guest_agent: bool | None = Field(None, alias="ProvisionGuestAgent")

    def network_configuration(self) -> NetworkConfigurationSet | None:
        for configuration_set in self.configuration_sets:
            if isinstance(configuration_set, NetworkConfigurationSet):
                return configuration_set
        return None

    def data_disk_at(self, lun: int) -> DataVirtualHardDisk | None:
        for disk in self.data_virtual_hard_disks or []:
            if disk.lun == lun:
                return disk
        return None


class RoleInstance(WireModel):
    role_name: str = Field(alias="RoleName")
    instance_name: str | None = Field(None, alias="InstanceName")
    instance_status: str | None = Field(None, alias="InstanceStatus")
    ip_address: str | None = Field(None, alias="IpAddress")
    power_state: str | None = Field(None, alias="PowerState")
    host_name: str | None = Field(None, alias="HostName")


class Deployment(WireModel):
    """A deployment; also the body of a create-deployment request."""

    xml_tag: ClassVar[str | None] = "Deployment"

    name: str = Field(alias="Name")
    deployment_slot: str | None = Field(None, alias="DeploymentSlot")
    status: str | None = Field(None, alias="Status")
    label: str | None = Field(None, alias="Label")
    role_instance_list: list[RoleInstance] | None = Field(None, alias="RoleInstanceList")
    role_list: list[Role] | None = Field(None, alias="RoleList")
    virtual_network_name: str | None = Field(None, alias="VirtualNetworkName")

    # Not part of the document; filled in by whoever fetched the deployment
    hosted_service_name: str | None = Field(None, exclude=True)

    def role_instance(self, role_name: str) -> RoleInstance | None:
        for instance in self.role_instance_list or []:
            if instance.role_name == role_name:
                return instance
        return None

    def role_instance_by_ip(self, ip_address: str) -> RoleInstance | None:
        for instance in self.role_instance_list or []:
            if instance.ip_address == ip_address:
                return instance
        return None

    def role(self, role_name: str) -> Role | None:
        for role in self.role_list or []:
            if role.role_name == role_name:
                return role
        return None

    @property
    def has_multiple_roles(self) -> bool:
        return len(self.role_list or []) >= 2


# =============================================================================
# Hosted (cloud) services
# =============================================================================


class HostedServiceProperties(WireModel):
    description: str | None = Field(None, alias="Description")
    affinity_group: str | None = Field(None, alias="AffinityGroup")
    location: str | None = Field(None, alias="Location")
    label: str | None = Field(None, alias="Label")
    status: str | None = Field(None, alias="Status")


class HostedService(WireModel):
    xml_tag: ClassVar[str | None] = "HostedService"

    url: str | None = Field(None, alias="Url")
    service_name: str = Field(alias="ServiceName")
    properties: HostedServiceProperties | None = Field(None, alias="HostedServiceProperties")
    deployments: list[Deployment] | None = Field(None, alias="Deployments")

    def deployment_in_slot(self, slot: str) -> Deployment | None:
        for deployment in self.deployments or []:
            if deployment.deployment_slot == slot:
                return deployment
        return None


class CreateHostedService(WireModel):
    xml_tag: ClassVar[str | None] = "CreateHostedService"

    service_name: str = Field(alias="ServiceName")
    label: str = Field(alias="Label")
    description: str | None = Field(None, alias="Description")
    affinity_group: str | None = Field(None, alias="AffinityGroup")


# =============================================================================
# Disks
# =============================================================================


class AttachedTo(WireModel):
    hosted_service_name: str = Field(alias="HostedServiceName")
    deployment_name: str | None = Field(None, alias="DeploymentName")
    role_name: str | None = Field(None, alias="RoleName")


class Disk(WireModel):
    """A registered disk; also the body of an update-disk request."""

    xml_tag: ClassVar[str | None] = "Disk"

    attached_to: AttachedTo | None = Field(None, alias="AttachedTo")
    os: str | None = Field(None, alias="OS")
    label: str | None = Field(None, alias="Label")
    logical_disk_size_in_gb: int | None = Field(None, alias="LogicalDiskSizeInGB")
    media_link: str | None = Field(None, alias="MediaLink")
    name: str = Field(alias="Name")


# =============================================================================
# Networking
# =============================================================================


class AddressAvailability(WireModel):
    xml_tag: ClassVar[str | None] = "AddressAvailabilityResponse"

    is_available: bool = Field(alias="IsAvailable")
    available_addresses: list[str] | None = Field(None, alias="AvailableAddresses")


class GatewayInfo(WireModel):
    xml_tag: ClassVar[str | None] = "Gateway"

    state: str = Field(alias="State")
    vip_address: str | None = Field(None, alias="VIPAddress")
    gateway_type: str | None = Field(None, alias="GatewayType")


class CreateGatewayParameters(WireModel):
    xml_tag: ClassVar[str | None] = "CreateGatewayParameters"

    gateway_type: str = Field(alias="gatewayType")


class SharedKey(WireModel):
    xml_tag: ClassVar[str | None] = "SharedKey"

    value: str = Field(alias="Value")


def _merge_element_order(current: list[str], original: tuple[str, ...]) -> list[str]:
    """Keys of `current` in their `original` order.

    Keys that were not in the original document are placed right after the
    nearest key that precedes them in `current`.
    """
    present = set(current)
    result = [key for key in original if key in present]
    placed = set(result)
    for index, key in enumerate(current):
        if key in placed:
            continue
        position = 0
        for previous in reversed(current[:index]):
            if previous in placed:
                position = result.index(previous) + 1
                break
        result.insert(position, key)
        placed.add(key)
    return result


class TopologyModel(WireModel):
    """Base for the parts of the topology document.

    The document is written back whole, so elements and attributes that the
    models do not declare are kept as extra fields, and a parsed element is
    serialized with its children in the order they were read.
    """

    model_config = {"extra": "allow", "populate_by_name": True}

    _element_order: tuple[str, ...] = PrivateAttr(default=())

    @model_validator(mode="wrap")
    @classmethod
    def _remember_element_order(cls, data: Any, handler: ModelWrapValidatorHandler[Self]) -> Self:
        model = handler(data)
        if isinstance(data, dict):
            model._element_order = tuple(data)
        return model

    @model_serializer(mode="wrap")
    def _restore_element_order(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        if not self._element_order or not isinstance(data, dict):
            return data
        return {key: data[key] for key in _merge_element_order(list(data), self._element_order)}

    def __eq__(self, other: object) -> bool:
        # Element order is a wire detail, not part of the value
        if not isinstance(other, BaseModel):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.__dict__ == other.__dict__
            and self.__pydantic_extra__ == other.__pydantic_extra__
        )


class Subnet(TopologyModel):
    name: str = Field(alias="@name")
    address_prefix: str = Field(alias="AddressPrefix")


class DnsServer(TopologyModel):
    name: str = Field(alias="@name")
    ip_address: str = Field(alias="@IPAddress")


class DnsServerRef(TopologyModel):
    name: str = Field(alias="@name")


class Dns(TopologyModel):
    dns_servers: list[DnsServer] = Field(default_factory=list, alias="DnsServers")

    def has_server(self, name: str) -> bool:
        return any(server.name == name for server in self.dns_servers)


class LocalNetworkSite(TopologyModel):
    name: str = Field(alias="@name")
    address_space: list[str] = Field(default_factory=list, alias="AddressSpace")
    vpn_gateway_address: str | None = Field(None, alias="VPNGatewayAddress")


class Connection(TopologyModel):
    type: str = Field("IPsec", alias="@type")


class LocalNetworkSiteRef(TopologyModel):
    name: str = Field(alias="@name")
    connection: Connection = Field(default_factory=Connection, alias="Connection")


class Gateway(TopologyModel):
    vpn_client_address_pool: list[str] | None = Field(None, alias="VPNClientAddressPool")
    connections_to_local_network: list[LocalNetworkSiteRef] = Field(
        default_factory=list, alias="ConnectionsToLocalNetwork"
    )


class VirtualNetworkSite(TopologyModel):
    name: str = Field(alias="@name")
    affinity_group: str | None = Field(None, alias="@AffinityGroup")
    location: str | None = Field(None, alias="@Location")
    address_space: list[str] = Field(default_factory=list, alias="AddressSpace")
    subnets: list[Subnet] = Field(default_factory=list, alias="Subnets")
    dns_servers_ref: list[DnsServerRef] | None = Field(None, alias="DnsServersRef")
    gateway: Gateway | None = Field(None, alias="Gateway")

    def subnet(self, name: str) -> Subnet | None:
        for subnet in self.subnets:
            if subnet.name == name:
                return subnet
        return None

    def has_dns_ref(self, name: str) -> bool:
        return any(ref.name == name for ref in self.dns_servers_ref or [])

    def local_site_ref(self, name: str) -> LocalNetworkSiteRef | None:
        if self.gateway is None:
            return None
        for ref in self.gateway.connections_to_local_network:
            if ref.name == name:
                return ref
        return None


class VirtualNetworkConfiguration(TopologyModel):
    dns: Dns | None = Field(None, alias="Dns")
    local_network_sites: list[LocalNetworkSite] | None = Field(None, alias="LocalNetworkSites")
    virtual_network_sites: list[VirtualNetworkSite] | None = Field(
        None, alias="VirtualNetworkSites"
    )

    def site(self, name: str) -> VirtualNetworkSite | None:
        for site in self.virtual_network_sites or []:
            if site.name == name:
                return site
        return None

    def local_site(self, name: str) -> LocalNetworkSite | None:
        for site in self.local_network_sites or []:
            if site.name == name:
                return site
        return None


class NetworkConfiguration(TopologyModel):
    """The subscription-wide topology document (read and written whole)."""

    xml_tag: ClassVar[str | None] = "NetworkConfiguration"
    xml_namespace: ClassVar[str] = NETWORK_CONFIGURATION_NAMESPACE

    virtual_network_configuration: VirtualNetworkConfiguration = Field(
        default_factory=VirtualNetworkConfiguration, alias="VirtualNetworkConfiguration"
    )
