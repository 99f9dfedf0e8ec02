"""Tests for request document builders."""

from __future__ import annotations

import base64
from typing import Any

import pytest

from provisioner.builders import build_deployment, build_role
from provisioner.descriptors import DeploymentDescriptor
from provisioner.models import LinuxProvisioningConfigurationSet, WindowsProvisioningConfigurationSet


def make_descriptor(**overrides: Any) -> DeploymentDescriptor:
    data: dict[str, Any] = {
        "roleName": "vm1",
        "imageName": "ubuntu-14_04-LTS",
        "affinityGroup": "ag1",
        "storageAccountName": "store1",
        "cloudService": "svc1",
        "username": "azureuser",
        "networkName": "vnet1",
    }
    data.update(overrides)
    return DeploymentDescriptor.model_validate(data)


class TestBuildDeployment:
    """Tests for the deployment and role bodies."""

    def test_resolved_deployment(self) -> None:
        """Test that the deployment carries the role and an encoded label."""
        desc = make_descriptor(deploymentName="svc1")

        deployment = build_deployment(desc)

        assert deployment.name == "svc1"
        assert deployment.label == base64.b64encode(b"svc1").decode("ascii")
        assert deployment.virtual_network_name == "vnet1"
        assert [role.role_name for role in deployment.role_list or []] == ["vm1"]

    def test_unresolved_deployment_name(self) -> None:
        """Test that a deployment cannot be built before its name is known."""
        with pytest.raises(ValueError) as exc_info:
            build_deployment(make_descriptor())

        assert "deployment name" in str(exc_info.value)

    def test_linux_without_password_uses_ssh_keys(self) -> None:
        """Test that a Linux role without a password disables password logins."""
        role = build_role(make_descriptor())

        provisioning = role.configuration_sets[0]
        assert isinstance(provisioning, LinuxProvisioningConfigurationSet)
        assert provisioning.disable_ssh_password_authentication is True

    def test_windows_role(self) -> None:
        """Test that a Windows role gets the admin credentials."""
        role = build_role(make_descriptor(windows=True, password="P4ssw0rd!"))

        provisioning = role.configuration_sets[0]
        assert isinstance(provisioning, WindowsProvisioningConfigurationSet)
        assert provisioning.admin_password == "P4ssw0rd!"
        assert provisioning.computer_name == "vm1"

    def test_windows_role_requires_password(self) -> None:
        """Test that a Windows role is refused once its password was cleared."""
        desc = make_descriptor(windows=True, password="P4ssw0rd!")
        desc.password = None

        with pytest.raises(ValueError) as exc_info:
            build_role(desc)

        assert "password" in str(exc_info.value)
