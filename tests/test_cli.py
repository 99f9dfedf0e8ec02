"""Tests for the azp command line."""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest import mock

import pytest
from azure_mock import MockManagementContext
from click.testing import CliRunner, Result

from provisioner.cli import EXIT_CONFIGURATION, EXIT_FAILURE, EXIT_OK, EXIT_TIMEOUT, cli
from provisioner.client import ProvisioningClient
from provisioner.config import ClientConfig, ConfigurationError
from provisioner.descriptors import RoleDetails
from provisioner.errors import InvalidStateError, LockTimeoutError, OperationTimeoutError

NETWORK_YAML = """\
siteName: vnet1
addressSpace: 10.0.0.0/16
affinityGroup: ag1
subnet:
  name: frontend
  addressPrefix: 10.0.0.0/24
"""


@pytest.fixture(autouse=True)
def keep_test_logging() -> Generator[None, None, None]:
    with mock.patch("provisioner.cli.setup_logging"):
        yield


@pytest.fixture
def fake_client() -> mock.MagicMock:
    client = mock.MagicMock(spec=ProvisioningClient)
    client.__enter__.return_value = client
    client.__exit__.return_value = None
    return client


def invoke(args: list[str], factory: Callable[[], Any]) -> Result:
    return CliRunner().invoke(cli, ["--plain-logs", *args], obj={"client_factory": factory})


class TestExitCodes:
    """Tests for mapping failures to exit codes."""

    def test_success(self, fake_client: mock.MagicMock) -> None:
        """Test that a completed command exits 0 and prints the result."""
        fake_client.ensure_affinity_group.return_value = True

        result = invoke(["affinity-group", "ensure", "ag1", "-l", "West Europe"], lambda: fake_client)

        assert result.exit_code == EXIT_OK
        assert '"changed": true' in result.output
        fake_client.ensure_affinity_group.assert_called_once_with(
            "ag1", "West Europe", fake_client.deadline.return_value
        )

    def test_configuration_error(self) -> None:
        """Test that a rejected configuration exits 2."""

        def factory() -> ProvisioningClient:
            raise ConfigurationError("AZURE_SUBSCRIPTION_ID is required")

        result = invoke(["affinity-group", "delete", "ag1"], factory)

        assert result.exit_code == EXIT_CONFIGURATION

    @pytest.mark.parametrize(
        "error",
        [
            OperationTimeoutError("Timed out waiting for operation"),
            LockTimeoutError("network", 2.0),
        ],
    )
    def test_timeout(self, fake_client: mock.MagicMock, error: Exception) -> None:
        """Test that operation and lock timeouts exit 3."""
        fake_client.delete_affinity_group.side_effect = error

        result = invoke(["affinity-group", "delete", "ag1"], lambda: fake_client)

        assert result.exit_code == EXIT_TIMEOUT

    def test_provider_failure(self, fake_client: mock.MagicMock) -> None:
        """Test that an engine error exits 1."""
        fake_client.delete_cloud_service.side_effect = InvalidStateError("still has deployments")

        result = invoke(["cloud-service", "delete", "svc1"], lambda: fake_client)

        assert result.exit_code == EXIT_FAILURE

    def test_descriptor_failure(self, fake_client: mock.MagicMock, tmp_path: Path) -> None:
        """Test that an unreadable descriptor exits 1 without provisioning."""
        result = invoke(["provision", str(tmp_path / "missing.yaml")], lambda: fake_client)

        assert result.exit_code == EXIT_FAILURE
        fake_client.create_virtual_machine_deployment.assert_not_called()

    def test_timeout_option(self, fake_client: mock.MagicMock) -> None:
        """Test that --timeout is turned into the command's deadline."""
        invoke(["storage-account", "delete", "store1", "--timeout", "90"], lambda: fake_client)

        fake_client.deadline.assert_called_once_with(90)

    def test_client_is_closed(self, fake_client: mock.MagicMock) -> None:
        """Test that the client is released after the command."""
        fake_client.delete_disk.side_effect = InvalidStateError("attached")

        invoke(["disk", "delete", "disk1"], lambda: fake_client)

        fake_client.__exit__.assert_called_once()


class TestCommands:
    """Tests for argument handling of each command."""

    def test_provision(self, fake_client: mock.MagicMock, tmp_path: Path) -> None:
        """Test that provisioning ensures the storage account and prints the role details."""
        descriptor = tmp_path / "vm.yaml"
        descriptor.write_text(
            "roleName: web1\nimageName: img\naffinityGroup: ag1\n"
            "storageAccountName: store1\ncloudService: web\nusername: azureuser\n"
        )
        fake_client.create_virtual_machine_deployment.return_value = RoleDetails(
            id="web1", cloud_service_name="web", deployment_name="web", private_ip="10.0.0.4"
        )

        result = invoke(["provision", str(descriptor)], lambda: fake_client)

        assert result.exit_code == EXIT_OK
        assert '"private_ip": "10.0.0.4"' in result.output
        deadline = fake_client.deadline.return_value
        fake_client.ensure_storage_account.assert_called_once_with("ag1", "store1", deadline)

    def test_network_apply(self, fake_client: mock.MagicMock, tmp_path: Path) -> None:
        """Test that the change file is loaded and merged."""
        change_file = tmp_path / "network.yaml"
        change_file.write_text(NETWORK_YAML)
        fake_client.merge_network_change.return_value = False

        result = invoke(["network", "apply", str(change_file)], lambda: fake_client)

        assert result.exit_code == EXIT_OK
        assert '"changed": false' in result.output
        change = fake_client.merge_network_change.call_args.args[0]
        assert change.site_name == "vnet1"

    def test_network_site_and_subnets(self, fake_client: mock.MagicMock) -> None:
        """Test the single-purpose topology commands."""
        invoke(
            ["network", "ensure-site", "--site", "vnet2", "--address-space", "10.1.0.0/16", "-a", "ag1"],
            lambda: fake_client,
        )
        invoke(
            ["network", "add-subnet", "--site", "vnet2", "--name", "b", "--prefix", "10.1.1.0/24"],
            lambda: fake_client,
        )
        invoke(["network", "remove-subnet", "--site", "vnet2", "--name", "b"], lambda: fake_client)
        invoke(["network", "delete-site", "--site", "vnet2"], lambda: fake_client)

        deadline = fake_client.deadline.return_value
        fake_client.ensure_virtual_network_site.assert_called_once_with("10.1.0.0/16", "ag1", "vnet2", deadline)
        fake_client.add_subnet.assert_called_once_with("vnet2", "b", "10.1.1.0/24", deadline)
        fake_client.remove_subnet.assert_called_once_with("vnet2", "b", deadline)
        fake_client.delete_virtual_network_site.assert_called_once_with("vnet2", deadline)

    def test_vm_delete_by_ip(self, fake_client: mock.MagicMock) -> None:
        """Test teardown by private address."""
        result = invoke(["vm", "delete", "--ip", "10.0.0.4"], lambda: fake_client)

        assert result.exit_code == EXIT_OK
        fake_client.delete_virtual_machine_by_ip.assert_called_once_with(
            "10.0.0.4", fake_client.deadline.return_value
        )

    def test_vm_delete_by_deployment(self, fake_client: mock.MagicMock) -> None:
        """Test teardown by cloud service and deployment name."""
        result = invoke(["vm", "delete", "--cloud-service", "svc1", "--deployment", "dep1"], lambda: fake_client)

        assert result.exit_code == EXIT_OK
        fake_client.delete_virtual_machine_by_deployment_name.assert_called_once_with(
            "svc1", "dep1", fake_client.deadline.return_value
        )

    @pytest.mark.parametrize(
        "args",
        [
            [],
            ["--cloud-service", "svc1"],
            ["--ip", "10.0.0.4", "--deployment", "dep1"],
        ],
    )
    def test_vm_delete_usage(self, fake_client: mock.MagicMock, args: list[str]) -> None:
        """Test that an incomplete or mixed target is a usage error."""
        result = invoke(["vm", "delete", *args], lambda: fake_client)

        assert result.exit_code == 2
        assert "Usage" in result.output
        fake_client.delete_virtual_machine_by_ip.assert_not_called()

    def test_disk_delete_keep_blob(self, fake_client: mock.MagicMock) -> None:
        """Test that --keep-blob leaves the VHD in storage."""
        invoke(["disk", "delete", "disk1", "--keep-blob"], lambda: fake_client)
        invoke(["disk", "delete", "disk2"], lambda: fake_client)

        deadline = fake_client.deadline.return_value
        assert fake_client.delete_disk.call_args_list == [
            mock.call("disk1", deadline, delete_blob=False),
            mock.call("disk2", deadline, delete_blob=True),
        ]


class TestAgainstProvider:
    """Tests running commands with a real client against the mock provider."""

    def test_storage_account_ensure(self, config: ClientConfig, mock_ctx: MockManagementContext) -> None:
        """Test that a storage account is created once."""
        mock_ctx.state.add_affinity_group("ag1")

        first = invoke(["storage-account", "ensure", "store1", "-a", "ag1"], lambda: ProvisioningClient(config))
        second = invoke(["storage-account", "ensure", "store1", "-a", "ag1"], lambda: ProvisioningClient(config))

        assert first.exit_code == EXIT_OK
        assert '"changed": true' in first.output
        assert '"changed": false' in second.output
        assert "store1" in mock_ctx.state.storage_services
