"""Tests for data disk operations."""

from __future__ import annotations

import pytest
from azure_mock import MockManagementContext
from conftest import make_deployment

from provisioner.client import ProvisioningClient
from provisioner.deadline import Deadline
from provisioner.storage import UNATTACHED_DISK_LUN, validate_host_caching, validate_lun


@pytest.fixture
def running_vm(mock_ctx: MockManagementContext) -> MockManagementContext:
    mock_ctx.state.add_deployment("svc1", make_deployment("svc1", "vm1"))
    return mock_ctx


class TestValidation:
    """Tests for argument validation."""

    @pytest.mark.parametrize("lun", [0, 7, 15])
    def test_valid_lun(self, lun: int) -> None:
        """Test that LUNs 0 to 15 are accepted."""
        assert validate_lun(lun) == lun

    @pytest.mark.parametrize("lun", [-1, 16])
    def test_invalid_lun(self, lun: int) -> None:
        """Test that LUNs outside 0 to 15 are rejected."""
        with pytest.raises(ValueError):
            validate_lun(lun)

    def test_host_caching(self) -> None:
        """Test that only known caching modes are accepted."""
        assert validate_host_caching(None) is None
        assert validate_host_caching("ReadOnly") == "ReadOnly"
        with pytest.raises(ValueError):
            validate_host_caching("WriteBack")


class TestDataDisks:
    """Tests for attaching and detaching data disks."""

    def test_add_data_disk(self, client: ProvisioningClient, running_vm: MockManagementContext) -> None:
        """Test that a new disk is attached and reported once visible."""
        disk = client.add_data_disk("svc1", "svc1", "vm1", "store1", 10, Deadline.after(5))

        assert disk.lun == 0
        assert disk.logical_disk_size_in_gb == 10
        assert disk.media_link is not None
        assert disk.media_link.startswith("https://store1.blob.core.windows.net/")
        assert disk.disk_name in running_vm.state.disks

    def test_add_data_disk_invalid_lun(self, client: ProvisioningClient, running_vm: MockManagementContext) -> None:
        """Test that an invalid LUN is rejected before any request."""
        with pytest.raises(ValueError):
            client.add_data_disk("svc1", "svc1", "vm1", "store1", 10, Deadline.after(5), lun=16)

        assert running_vm.state.mutations == []

    def test_attach_existing_disk(self, client: ProvisioningClient, running_vm: MockManagementContext) -> None:
        """Test attaching a registered disk at a given LUN."""
        running_vm.state.add_disk("disk1")

        disk = client.attach_existing_disk("svc1", "svc1", "vm1", "disk1", 3, Deadline.after(5))

        assert disk.disk_name == "disk1"
        assert disk.lun == 3
        attached_to = running_vm.state.disks["disk1"].attached_to
        assert attached_to is not None
        assert attached_to.role_name == "vm1"

    def test_detach_data_disk(self, client: ProvisioningClient, running_vm: MockManagementContext) -> None:
        """Test that detaching waits until the disk is free."""
        deadline = Deadline.after(5)
        running_vm.state.add_disk("disk1")
        client.attach_existing_disk("svc1", "svc1", "vm1", "disk1", 1, deadline)

        assert client.detach_data_disk("svc1", "svc1", "vm1", 1, deadline) == "disk1"

        assert running_vm.state.disks["disk1"].attached_to is None
        assert client.get_data_disk("svc1", "svc1", "vm1", 1, deadline) is None

    def test_detach_empty_lun(self, client: ProvisioningClient, running_vm: MockManagementContext) -> None:
        """Test that detaching an empty LUN is a no-op."""
        assert client.detach_data_disk("svc1", "svc1", "vm1", 2, Deadline.after(5)) is None
        assert running_vm.state.mutations == []

    def test_create_unattached_disk(self, client: ProvisioningClient, running_vm: MockManagementContext) -> None:
        """Test that a standalone disk is created through the spare LUN."""
        deadline = Deadline.after(5)

        disk_name = client.create_unattached_disk("svc1", "svc1", "vm1", "store1", "scratch.vhd", 20, deadline)

        disk = running_vm.state.disks[disk_name]
        assert disk.attached_to is None
        assert disk.logical_disk_size_in_gb == 20
        assert client.get_data_disk("svc1", "svc1", "vm1", UNATTACHED_DISK_LUN, deadline) is None
        paths = [r.path for r in running_vm.state.mutations]
        assert paths[-1].endswith(f"/DataDisks/{UNATTACHED_DISK_LUN}")

    def test_update_disk_label(self, client: ProvisioningClient, running_vm: MockManagementContext) -> None:
        """Test relabelling a disk."""
        running_vm.state.add_disk("disk1")

        client.update_disk_label("disk1", "backup", Deadline.after(5))

        assert running_vm.state.disks["disk1"].label == "backup"
