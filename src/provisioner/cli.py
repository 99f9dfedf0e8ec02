"""Provisioning CLI (azp).

Usage:
    azp provision vm.yaml                 # Create a virtual machine
    azp network apply network.yaml        # Merge a topology change
    azp vm delete --ip 10.0.0.12          # Delete a machine and its disks
    azp affinity-group ensure ag1 -l "West Europe"

Configuration comes from the environment (see ClientConfig.from_env).
Every command takes --timeout, converted once into an absolute deadline.

Exit codes: 0 success, 1 provisioning failure, 2 security or configuration
failure, 3 timeout.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from .client import ProvisioningClient
from .config import ConfigurationError
from .deadline import Deadline
from .errors import LockTimeoutError, ManagementError, OperationTimeoutError
from .main import create_client, setup_logging
from .security import CertificateBundleError
from .spec_loader import SpecLoadError, load_deployment_descriptor, load_network_change

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2
EXIT_TIMEOUT = 3

timeout_option = click.option(
    "--timeout",
    "-t",
    type=click.IntRange(min=1),
    default=None,
    help="Overall timeout in seconds (default: DEFAULT_TIMEOUT)",
)


def _execute(ctx: click.Context, timeout: int | None, action: Callable[[ProvisioningClient, Deadline], Any]) -> None:
    """Run `action` with a fresh client and map failures to exit codes."""
    factory: Callable[[], ProvisioningClient] = ctx.obj.get("client_factory", create_client)

    try:
        client = factory()
    except (ConfigurationError, CertificateBundleError) as e:
        logger.critical("Client configuration rejected", extra={"error": str(e)})
        click.secho(f"Configuration error: {e}", fg="red", err=True)
        ctx.exit(EXIT_CONFIGURATION)

    try:
        with client:
            result = action(client, client.deadline(timeout))
    except (OperationTimeoutError, LockTimeoutError) as e:
        logger.error("Timed out", extra={"error": str(e), "error_type": type(e).__name__})
        click.secho(f"Timed out: {e}", fg="red", err=True)
        ctx.exit(EXIT_TIMEOUT)
    except (ManagementError, SpecLoadError) as e:
        logger.error("Command failed", extra={"error": str(e), "error_type": type(e).__name__})
        click.secho(f"Failed: {e}", fg="red", err=True)
        ctx.exit(EXIT_FAILURE)

    if result is not None:
        click.echo(json.dumps(result, indent=2, default=str))


def _changed(changed: bool) -> dict[str, bool]:
    return {"changed": changed}


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="azp")
@click.option("--plain-logs", is_flag=True, help="Human-readable logs instead of JSON")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging, including lock activity")
@click.pass_context
def cli(ctx: click.Context, plain_logs: bool, verbose: bool) -> None:
    """Classic Service Management provisioning CLI (azp).

    \b
    Quick Start:
        azp affinity-group ensure ag1 -l "West Europe"
        azp storage-account ensure mystorage -a ag1
        azp provision vm.yaml
    """
    ctx.ensure_object(dict)
    setup_logging(json_output=not plain_logs, level=logging.DEBUG if verbose else logging.INFO)


@cli.command()
@click.argument("descriptor", type=click.Path(path_type=Path))
@timeout_option
@click.pass_context
def provision(ctx: click.Context, descriptor: Path, timeout: int | None) -> None:
    """Provision the virtual machine described in DESCRIPTOR (YAML)."""

    def action(client: ProvisioningClient, deadline: Deadline) -> dict[str, Any]:
        desc = load_deployment_descriptor(descriptor)
        client.ensure_storage_account(desc.affinity_group, desc.storage_account_name, deadline)
        return client.create_virtual_machine_deployment(desc, deadline).model_dump()

    _execute(ctx, timeout, action)


# =============================================================================
# Network Commands
# =============================================================================


@cli.group()
def network() -> None:
    """Virtual network topology: sites, subnets, DNS and VPN gateways."""
    pass


@network.command("apply")
@click.argument("change_file", type=click.Path(path_type=Path))
@timeout_option
@click.pass_context
def network_apply(ctx: click.Context, change_file: Path, timeout: int | None) -> None:
    """Merge the topology change in CHANGE_FILE (YAML)."""

    def action(client: ProvisioningClient, deadline: Deadline) -> dict[str, bool]:
        return _changed(client.merge_network_change(load_network_change(change_file), deadline))

    _execute(ctx, timeout, action)


@network.command("ensure-site")
@click.option("--site", required=True, help="Virtual network site name")
@click.option("--address-space", required=True, help="Address space in CIDR notation")
@click.option("--affinity-group", "-a", required=True, help="Affinity group of the site")
@timeout_option
@click.pass_context
def network_ensure_site(
    ctx: click.Context, site: str, address_space: str, affinity_group: str, timeout: int | None
) -> None:
    """Create a site with a default subnet if it does not exist."""
    _execute(
        ctx,
        timeout,
        lambda client, deadline: _changed(
            client.ensure_virtual_network_site(address_space, affinity_group, site, deadline)
        ),
    )


@network.command("add-subnet")
@click.option("--site", required=True, help="Virtual network site name")
@click.option("--name", required=True, help="Subnet name")
@click.option("--prefix", required=True, help="Subnet address prefix in CIDR notation")
@timeout_option
@click.pass_context
def network_add_subnet(ctx: click.Context, site: str, name: str, prefix: str, timeout: int | None) -> None:
    """Add a subnet to an existing site."""
    _execute(ctx, timeout, lambda client, deadline: _changed(client.add_subnet(site, name, prefix, deadline)))


@network.command("remove-subnet")
@click.option("--site", required=True, help="Virtual network site name")
@click.option("--name", required=True, help="Subnet name")
@timeout_option
@click.pass_context
def network_remove_subnet(ctx: click.Context, site: str, name: str, timeout: int | None) -> None:
    """Remove a subnet from a site."""
    _execute(ctx, timeout, lambda client, deadline: _changed(client.remove_subnet(site, name, deadline)))


@network.command("delete-site")
@click.option("--site", required=True, help="Virtual network site name")
@timeout_option
@click.pass_context
def network_delete_site(ctx: click.Context, site: str, timeout: int | None) -> None:
    """Delete a site, and its gateway first if it has one."""
    _execute(ctx, timeout, lambda client, deadline: _changed(client.delete_virtual_network_site(site, deadline)))


# =============================================================================
# Virtual Machine Commands
# =============================================================================


@cli.group()
def vm() -> None:
    """Virtual machine teardown."""
    pass


@vm.command("delete")
@click.option("--ip", "address", help="Private address of the machine")
@click.option("--cloud-service", help="Cloud service holding the deployment")
@click.option("--deployment", help="Deployment name")
@timeout_option
@click.pass_context
def vm_delete(
    ctx: click.Context,
    address: str | None,
    cloud_service: str | None,
    deployment: str | None,
    timeout: int | None,
) -> None:
    """Delete a machine by address, or a whole deployment by name."""
    if address and (cloud_service or deployment):
        raise click.UsageError("--ip cannot be combined with --cloud-service/--deployment")
    if not address and not (cloud_service and deployment):
        raise click.UsageError("Either --ip or both --cloud-service and --deployment are required")

    def action(client: ProvisioningClient, deadline: Deadline) -> None:
        if address:
            client.delete_virtual_machine_by_ip(address, deadline)
        elif cloud_service and deployment:
            client.delete_virtual_machine_by_deployment_name(cloud_service, deployment, deadline)
        click.secho("✓ Virtual machine deleted", fg="green")

    _execute(ctx, timeout, action)


# =============================================================================
# Resource Commands
# =============================================================================


@cli.group("affinity-group")
def affinity_group() -> None:
    """Affinity groups."""
    pass


@affinity_group.command("ensure")
@click.argument("name")
@click.option("--location", "-l", required=True, help="Azure location, e.g. 'West Europe'")
@timeout_option
@click.pass_context
def affinity_group_ensure(ctx: click.Context, name: str, location: str, timeout: int | None) -> None:
    """Create affinity group NAME if it does not exist."""
    _execute(ctx, timeout, lambda client, deadline: _changed(client.ensure_affinity_group(name, location, deadline)))


@affinity_group.command("delete")
@click.argument("name")
@timeout_option
@click.pass_context
def affinity_group_delete(ctx: click.Context, name: str, timeout: int | None) -> None:
    """Delete affinity group NAME if it exists."""
    _execute(ctx, timeout, lambda client, deadline: _changed(client.delete_affinity_group(name, deadline)))


@cli.group("storage-account")
def storage_account() -> None:
    """Storage accounts."""
    pass


@storage_account.command("ensure")
@click.argument("name")
@click.option("--affinity-group", "-a", required=True, help="Affinity group of the account")
@timeout_option
@click.pass_context
def storage_account_ensure(ctx: click.Context, name: str, affinity_group: str, timeout: int | None) -> None:
    """Create storage account NAME if it does not exist."""
    _execute(
        ctx,
        timeout,
        lambda client, deadline: _changed(client.ensure_storage_account(affinity_group, name, deadline)),
    )


@storage_account.command("delete")
@click.argument("name")
@timeout_option
@click.pass_context
def storage_account_delete(ctx: click.Context, name: str, timeout: int | None) -> None:
    """Delete storage account NAME if it exists."""
    _execute(ctx, timeout, lambda client, deadline: _changed(client.delete_storage_account(name, deadline)))


@cli.group("cloud-service")
def cloud_service() -> None:
    """Cloud services."""
    pass


@cloud_service.command("delete")
@click.argument("name")
@timeout_option
@click.pass_context
def cloud_service_delete(ctx: click.Context, name: str, timeout: int | None) -> None:
    """Delete cloud service NAME unless it still holds deployments."""
    _execute(ctx, timeout, lambda client, deadline: _changed(client.delete_cloud_service(name, deadline)))


@cli.group()
def disk() -> None:
    """Disks."""
    pass


@disk.command("delete")
@click.argument("name")
@click.option("--keep-blob", is_flag=True, help="Keep the VHD blob in storage")
@timeout_option
@click.pass_context
def disk_delete(ctx: click.Context, name: str, keep_blob: bool, timeout: int | None) -> None:
    """Delete disk NAME and, unless --keep-blob, its VHD blob."""
    _execute(
        ctx,
        timeout,
        lambda client, deadline: _changed(client.delete_disk(name, deadline, delete_blob=not keep_blob)),
    )


def run() -> None:
    """Entry point for the azp CLI."""
    cli(obj={})


if __name__ == "__main__":
    run()
