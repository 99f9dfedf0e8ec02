"""Read-modify-write of the subscription's network topology document.

The provider keeps every virtual network site, subnet, DNS server and local
network site of a subscription in one document. A change is always applied by
reading the whole document, editing it in memory and writing it back under
the network lock. The write is skipped when the edit found nothing to add.

VPN gateways are provisioned in a second phase after the document is written,
gated on the gateway state the provider reports.
"""

from __future__ import annotations

import logging

from .api import ManagementApi
from .deadline import Deadline
from .descriptors import NetworkChange, SubnetSpec, VpnConfiguration
from .errors import InvalidStateError
from .locks import LockDomain, ProvisioningLocks
from .models import (
    Dns,
    DnsServer,
    DnsServerRef,
    Gateway,
    LocalNetworkSite,
    LocalNetworkSiteRef,
    NetworkConfiguration,
    Subnet,
    VirtualNetworkConfiguration,
    VirtualNetworkSite,
)
from .polling import GATEWAY_NOT_PROVISIONED, GATEWAY_PROVISIONED

logger = logging.getLogger(__name__)


def default_subnet_name(site_name: str) -> str:
    return f"subnet-{site_name}"


def _add_subnet(site: VirtualNetworkSite, subnet: SubnetSpec) -> bool:
    if site.subnet(subnet.name) is not None:
        logger.info(
            "Using an already existing subnet",
            extra={"virtual_network": site.name, "subnet": subnet.name},
        )
        return False
    logger.info("Creating subnet", extra={"virtual_network": site.name, "subnet": subnet.name})
    site.subnets.append(Subnet(name=subnet.name, address_prefix=subnet.address_prefix))
    return True


def _add_vpn(config: VirtualNetworkConfiguration, site: VirtualNetworkSite, vpn: VpnConfiguration) -> bool:
    changed = False

    if config.local_network_sites is None:
        config.local_network_sites = []
    if config.local_site(vpn.local_site_name) is None:
        config.local_network_sites.append(
            LocalNetworkSite(
                name=vpn.local_site_name,
                address_space=list(vpn.local_address_space),
                vpn_gateway_address=vpn.vpn_gateway_address,
            )
        )
        changed = True

    if _add_subnet(site, vpn.gateway_subnet):
        changed = True

    if site.local_site_ref(vpn.local_site_name) is None:
        if site.gateway is None:
            site.gateway = Gateway()
        site.gateway.connections_to_local_network.append(LocalNetworkSiteRef(name=vpn.local_site_name))
        changed = True

    return changed


def _add_dns_servers(
    config: VirtualNetworkConfiguration, site: VirtualNetworkSite, dns_servers: dict[str, str]
) -> bool:
    changed = False
    for name, address in dns_servers.items():
        if config.dns is None:
            config.dns = Dns()
        if not config.dns.has_server(name):
            config.dns.dns_servers.append(DnsServer(name=name, ip_address=address))
            changed = True

        if site.dns_servers_ref is None:
            site.dns_servers_ref = []
        if not site.has_dns_ref(name):
            site.dns_servers_ref.append(DnsServerRef(name=name))
            changed = True
    return changed


def apply_network_change(document: NetworkConfiguration, change: NetworkChange) -> bool:
    """Merge `change` into `document` in place.

    Returns:
        True if anything was added, False if the change was already present.
    """
    config = document.virtual_network_configuration
    if config.virtual_network_sites is None:
        config.virtual_network_sites = []

    changed = False
    site = config.site(change.site_name)
    if site is None:
        logger.info("Creating virtual network site", extra={"virtual_network": change.site_name})
        site = VirtualNetworkSite(
            name=change.site_name,
            affinity_group=change.affinity_group,
            address_space=[change.address_space],
        )
        config.virtual_network_sites.append(site)
        changed = True
    else:
        logger.info("Using an already existing virtual network site", extra={"virtual_network": site.name})

    for subnet in change.all_subnets():
        if _add_subnet(site, subnet):
            changed = True

    if change.vpn is not None and _add_vpn(config, site, change.vpn):
        changed = True

    if _add_dns_servers(config, site, change.dns_servers):
        changed = True

    return changed


class NetworkTopology:
    """Topology document changes and gateway provisioning."""

    def __init__(self, api: ManagementApi, locks: ProvisioningLocks) -> None:
        self.api = api
        self.locks = locks

    def read(self, deadline: Deadline) -> NetworkConfiguration:
        """The current document; an empty one if the subscription has none."""
        document = self.api.get_network_configuration(deadline)
        if document is None:
            logger.info("No network configuration found, starting from an empty one")
            return NetworkConfiguration()
        return document

    def _write(self, document: NetworkConfiguration, deadline: Deadline) -> None:
        with self.locks.hold(LockDomain.NETWORK, deadline):
            self.api.set_network_configuration(document, deadline)

    def get_site(self, site_name: str, deadline: Deadline) -> VirtualNetworkSite | None:
        return self.read(deadline).virtual_network_configuration.site(site_name)

    def list_sites(self, deadline: Deadline) -> list[VirtualNetworkSite]:
        return self.read(deadline).virtual_network_configuration.virtual_network_sites or []

    def subnet_exists(self, site_name: str, subnet_name: str | None, deadline: Deadline) -> bool:
        if not subnet_name or not subnet_name.strip():
            return False
        site = self.get_site(site_name, deadline)
        return site is not None and site.subnet(subnet_name) is not None

    # =========================================================================
    # Topology changes
    # =========================================================================

    def merge_network_change(self, change: NetworkChange, deadline: Deadline) -> bool:
        """Merge `change` into the topology, then converge its VPN gateway.

        Returns:
            True if the topology document was written.
        """
        with self.locks.hold(LockDomain.NETWORK, deadline):
            document = self.read(deadline)
            should_update = apply_network_change(document, change)
            if should_update:
                self._write(document, deadline)
                logger.info("Created/Updated virtual network site", extra={"virtual_network": change.site_name})
            else:
                logger.info(
                    "Using existing virtual network site configuration",
                    extra={"virtual_network": change.site_name},
                )

        if change.vpn is not None:
            self.provision_gateway(change.site_name, change.vpn, deadline)
        return should_update

    def ensure_virtual_network_site(
        self, address_space: str, affinity_group: str, site_name: str, deadline: Deadline
    ) -> bool:
        """Create a site with one default subnet spanning its address space."""
        with self.locks.hold(LockDomain.NETWORK, deadline):
            document = self.read(deadline)
            config = document.virtual_network_configuration
            if config.site(site_name) is not None:
                logger.info("Using an already existing virtual network site", extra={"virtual_network": site_name})
                return False

            logger.info("Creating virtual network site", extra={"virtual_network": site_name})
            if config.virtual_network_sites is None:
                config.virtual_network_sites = []
            config.virtual_network_sites.append(
                VirtualNetworkSite(
                    name=site_name,
                    affinity_group=affinity_group,
                    address_space=[address_space],
                    subnets=[Subnet(name=default_subnet_name(site_name), address_prefix=address_space)],
                )
            )
            self._write(document, deadline)
            return True

    def add_subnet(self, site_name: str, subnet_name: str, address_prefix: str, deadline: Deadline) -> bool:
        """Add a subnet to an existing site.

        Raises:
            InvalidStateError: If the site does not exist.
        """
        with self.locks.hold(LockDomain.NETWORK, deadline):
            document = self.read(deadline)
            site = document.virtual_network_configuration.site(site_name)
            if site is None:
                raise InvalidStateError(f"Missing network '{site_name}'")
            if not _add_subnet(site, SubnetSpec(name=subnet_name, address_prefix=address_prefix)):
                return False
            self._write(document, deadline)
            return True

    def remove_subnet(self, site_name: str, subnet_name: str, deadline: Deadline) -> bool:
        with self.locks.hold(LockDomain.NETWORK, deadline):
            document = self.read(deadline)
            site = document.virtual_network_configuration.site(site_name)
            if site is None:
                logger.warning(
                    "Couldn't delete subnet, network does not exist",
                    extra={"virtual_network": site_name, "subnet": subnet_name},
                )
                return False

            subnet = site.subnet(subnet_name)
            if subnet is None:
                logger.warning(
                    "Couldn't delete subnet, not found in network",
                    extra={"virtual_network": site_name, "subnet": subnet_name},
                )
                return False

            site.subnets.remove(subnet)
            self._write(document, deadline)
            logger.info("Removed subnet", extra={"virtual_network": site_name, "subnet": subnet_name})
            return True

    def delete_virtual_network_site(self, site_name: str, deadline: Deadline) -> bool:
        """Remove a site, deleting its gateway first if it has one."""
        with self.locks.hold(LockDomain.NETWORK, deadline):
            document = self.read(deadline)
            config = document.virtual_network_configuration
            site = config.site(site_name)
            if site is None:
                return False

            if site.gateway is not None:
                self.delete_gateway(site_name, deadline)

            config.virtual_network_sites = [s for s in config.virtual_network_sites or [] if s is not site]
            logger.info("Deleting virtual network site", extra={"virtual_network": site_name})
            self._write(document, deadline)
            return True

    # =========================================================================
    # Gateways
    # =========================================================================

    def provision_gateway(self, site_name: str, vpn: VpnConfiguration, deadline: Deadline) -> None:
        """Create the site's gateway and set its shared key when the provider allows.

        States other than the expected ones are logged and the step skipped;
        gateway convergence is paced by the provider and may lag the topology
        write.
        """
        logger.info("Starting gateway configuration", extra={"virtual_network": site_name})
        gateway = self.api.get_gateway(site_name, deadline)
        if gateway is None:
            logger.warning(
                "Failed getting current gateway state, it will not be provisioned",
                extra={"virtual_network": site_name},
            )
            return

        if gateway.state == GATEWAY_NOT_PROVISIONED:
            logger.info(
                "Creating gateway, this operation will take a while",
                extra={"virtual_network": site_name, "local_site": vpn.local_site_name},
            )
            self.api.create_gateway(site_name, vpn.gateway_type, deadline)
            self.api.poller.await_gateway_provisioned(site_name, deadline)
        else:
            logger.warning(
                "Can't provision gateway",
                extra={"virtual_network": site_name, "gateway_state": gateway.state},
            )

        gateway = self.api.get_gateway(site_name, deadline)
        if gateway is None:
            return
        if gateway.state == GATEWAY_PROVISIONED:
            self.api.set_gateway_shared_key(site_name, vpn.local_site_name, vpn.shared_key, deadline)
            logger.info(
                "Gateway connected to local network",
                extra={"virtual_network": site_name, "local_site": vpn.local_site_name},
            )
        else:
            logger.warning(
                "Can't connect gateway",
                extra={"virtual_network": site_name, "gateway_state": gateway.state},
            )

    def delete_gateway(self, site_name: str, deadline: Deadline) -> bool:
        """Delete the site's gateway and wait until it is gone."""
        with self.locks.hold(LockDomain.NETWORK, deadline):
            gateway = self.api.get_gateway(site_name, deadline)
            if gateway is None or gateway.state == GATEWAY_NOT_PROVISIONED:
                return False

            logger.info("Deleting virtual network gateway", extra={"virtual_network": site_name})
            self.api.delete_gateway(site_name, deadline)
            self.api.poller.await_gateway_deprovisioned(site_name, deadline)
            logger.info("Deleted virtual network gateway", extra={"virtual_network": site_name})
            return True
