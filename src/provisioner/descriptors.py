"""Pydantic models for caller intent.

These models provide:
1. Type-safe YAML parsing of deployment and network descriptors
2. Validation at the boundary (fail fast, fail loudly)
3. A place for the provisioning saga to record the names it resolves
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import DEPLOYMENT_SLOTS, PRODUCTION_SLOT

# Maximum size of a single data disk in GB
MAX_DATA_DISK_SIZE_GB = 1023

HOST_CACHING_MODES: frozenset[str] = frozenset({"None", "ReadOnly", "ReadWrite"})


# =============================================================================
# Virtual machines
# =============================================================================


class InputEndpointSpec(BaseModel):
    """A public endpoint exposed through the cloud service."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    protocol: str = "tcp"
    port: Annotated[int, Field(ge=1, le=65535)]
    local_port: Annotated[int | None, Field(ge=1, le=65535, alias="localPort")] = None

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        if v.lower() not in {"tcp", "udp"}:
            raise ValueError("protocol must be tcp or udp")
        return v.lower()


class ExtensionSpec(BaseModel):
    """A VM extension to install on the role."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    publisher: Annotated[str, Field(min_length=1)]
    version: str = "*"
    reference_name: str | None = Field(None, alias="referenceName")
    parameters: dict[str, str] = Field(default_factory=dict)


class DeploymentDescriptor(BaseModel):
    """Intent for one virtual machine.

    The saga fills in `hosted_service_name`, `deployment_name` and
    `available_ip` as it resolves them; a descriptor is used for one
    provisioning request only.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    role_name: Annotated[str, Field(min_length=1, max_length=64, alias="roleName")]
    image_name: Annotated[str, Field(min_length=1, alias="imageName")]
    size: str = "Small"
    affinity_group: Annotated[str, Field(min_length=1, alias="affinityGroup")]
    storage_account_name: Annotated[str, Field(min_length=3, max_length=24, alias="storageAccountName")]

    # Either an explicit cloud service or a generated one
    hosted_service_name: str | None = Field(None, alias="cloudService")
    generate_cloud_service_name: bool = Field(False, alias="generateCloudServiceName")
    deployment_slot: str = Field(PRODUCTION_SLOT, alias="deploymentSlot")
    deployment_name: str | None = Field(None, alias="deploymentName")
    availability_set: str | None = Field(None, alias="availabilitySet")

    # Guest credentials
    is_windows: bool = Field(False, alias="windows")
    username: Annotated[str, Field(min_length=1)]
    password: str | None = None

    # Networking
    network_name: str | None = Field(None, alias="networkName")
    subnet_name: str | None = Field(None, alias="subnetName")
    ip_addresses: list[str] | None = Field(None, alias="ipAddresses")
    available_ip: str | None = Field(None, alias="availableIp")
    input_endpoints: list[InputEndpointSpec] = Field(default_factory=list, alias="inputEndpoints")

    extensions: list[ExtensionSpec] = Field(default_factory=list)
    data_disk_size: Annotated[
        int | None, Field(ge=1, le=MAX_DATA_DISK_SIZE_GB, alias="dataDiskSize")
    ] = None

    @field_validator("deployment_slot")
    @classmethod
    def validate_slot(cls, v: str) -> str:
        if v not in DEPLOYMENT_SLOTS:
            raise ValueError(f"deploymentSlot must be one of {DEPLOYMENT_SLOTS}")
        return v

    @model_validator(mode="after")
    def validate_target(self) -> DeploymentDescriptor:
        if not self.generate_cloud_service_name and not self.hosted_service_name:
            raise ValueError("cloudService is required unless generateCloudServiceName is true")
        if self.ip_addresses and not self.network_name:
            raise ValueError("networkName is required when ipAddresses are requested")
        if self.is_windows and not self.password:
            raise ValueError("password is required for Windows machines")
        return self


class RoleDetails(BaseModel):
    """Addresses and identifiers of a provisioned machine."""

    id: str
    cloud_service_name: str
    deployment_name: str
    private_ip: str | None = None
    public_ip: str | None = None


# =============================================================================
# Network topology changes
# =============================================================================


class SubnetSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    address_prefix: Annotated[str, Field(min_length=1, alias="addressPrefix")]


class VpnConfiguration(BaseModel):
    """Site-to-site VPN between a virtual network and one local network."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    local_site_name: Annotated[str, Field(min_length=1, alias="localSiteName")]
    vpn_gateway_address: Annotated[str, Field(min_length=1, alias="vpnGatewayAddress")]
    local_address_space: list[str] = Field(default_factory=list, alias="localAddressSpace")
    gateway_subnet: SubnetSpec = Field(alias="gatewaySubnet")
    gateway_type: str = Field("DynamicRouting", alias="gatewayType")
    shared_key: Annotated[str, Field(min_length=1, alias="sharedKey")]

    @field_validator("gateway_type")
    @classmethod
    def validate_gateway_type(cls, v: str) -> str:
        valid = {"StaticRouting", "DynamicRouting"}
        if v not in valid:
            raise ValueError(f"gatewayType must be one of {valid}")
        return v


class NetworkChange(BaseModel):
    """A delta to merge into the subscription's topology document."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    site_name: Annotated[str, Field(min_length=1, alias="siteName")]
    address_space: Annotated[str, Field(min_length=1, alias="addressSpace")]
    affinity_group: Annotated[str, Field(min_length=1, alias="affinityGroup")]
    subnet: SubnetSpec | None = None
    subnets: list[SubnetSpec] = Field(default_factory=list)
    dns_servers: dict[str, str] = Field(default_factory=dict, alias="dnsServers")
    vpn: VpnConfiguration | None = None

    def all_subnets(self) -> list[SubnetSpec]:
        """Template subnets followed by the primary subnet."""
        result = list(self.subnets)
        if self.subnet is not None:
            result.append(self.subnet)
        return result
