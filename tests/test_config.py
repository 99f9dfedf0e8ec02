"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import write_certificate_bundle

from provisioner.config import (
    DEFAULT_API_VERSION,
    DEFAULT_MANAGEMENT_ENDPOINT,
    AuthMode,
    ClientConfig,
    ConfigurationError,
)

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


class TestClientConfig:
    """Tests for ClientConfig class."""

    def test_valid_config(self, tmp_path: Path) -> None:
        """Test creating a valid certificate-mode configuration."""
        config = ClientConfig(
            subscription_id=SUBSCRIPTION_ID,
            certificate_file=write_certificate_bundle(tmp_path),
        )

        assert config.auth_mode == AuthMode.CERTIFICATE
        assert config.management_endpoint == DEFAULT_MANAGEMENT_ENDPOINT
        assert config.api_version == DEFAULT_API_VERSION
        assert config.polling_interval_seconds == 5
        assert config.max_get_retries == 5
        assert config.vm_boot_headroom_seconds == 300
        assert config.cleanup_reserve_seconds == 120

    def test_missing_subscription(self, tmp_path: Path) -> None:
        """Test that a missing subscription id raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(subscription_id="", certificate_file=write_certificate_bundle(tmp_path))

        assert "AZURE_SUBSCRIPTION_ID" in str(exc_info.value)

    def test_invalid_subscription_format(self, tmp_path: Path) -> None:
        """Test that a non-GUID subscription id raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(subscription_id="not-a-guid", certificate_file=write_certificate_bundle(tmp_path))

        assert "GUID" in str(exc_info.value)

    def test_certificate_mode_requires_certificate(self) -> None:
        """Test that certificate mode without a certificate file raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(subscription_id=SUBSCRIPTION_ID)

        assert "AZURE_MANAGEMENT_CERT_FILE" in str(exc_info.value)

    def test_missing_certificate_file(self, tmp_path: Path) -> None:
        """Test that a certificate path that does not exist raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(subscription_id=SUBSCRIPTION_ID, certificate_file=tmp_path / "missing.pem")

        assert "does not exist" in str(exc_info.value)

    def test_managed_identity_needs_no_certificate(self) -> None:
        """Test that managed identity mode does not require a certificate."""
        config = ClientConfig(subscription_id=SUBSCRIPTION_ID, auth_mode=AuthMode.MANAGED_IDENTITY)

        assert config.certificate_file is None

    def test_endpoint_must_use_https(self, tmp_path: Path) -> None:
        """Test that a plain HTTP endpoint is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(
                subscription_id=SUBSCRIPTION_ID,
                certificate_file=write_certificate_bundle(tmp_path),
                management_endpoint="http://management.core.windows.net",
            )

        assert "https" in str(exc_info.value)

    def test_polling_interval_bounds(self, tmp_path: Path) -> None:
        """Test that the polling interval is validated."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(
                subscription_id=SUBSCRIPTION_ID,
                certificate_file=write_certificate_bundle(tmp_path),
                polling_interval_seconds=61,
            )

        assert "POLLING_INTERVAL" in str(exc_info.value)

    def test_get_retries_bounds(self, tmp_path: Path) -> None:
        """Test that the GET retry count is validated."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(
                subscription_id=SUBSCRIPTION_ID,
                certificate_file=write_certificate_bundle(tmp_path),
                max_get_retries=0,
            )

        assert "MAX_GET_RETRIES" in str(exc_info.value)

    def test_negative_headroom(self, tmp_path: Path) -> None:
        """Test that a negative boot headroom is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(
                subscription_id=SUBSCRIPTION_ID,
                certificate_file=write_certificate_bundle(tmp_path),
                vm_boot_headroom_seconds=-1,
            )

        assert "VM_BOOT_HEADROOM" in str(exc_info.value)

    def test_negative_cleanup_reserve(self, tmp_path: Path) -> None:
        """Test that a negative cleanup reserve is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(
                subscription_id=SUBSCRIPTION_ID,
                certificate_file=write_certificate_bundle(tmp_path),
                cleanup_reserve_seconds=-1,
            )

        assert "CLEANUP_RESERVE" in str(exc_info.value)

    def test_invalid_prefix(self, tmp_path: Path) -> None:
        """Test that prefixes must be valid DNS label characters."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(
                subscription_id=SUBSCRIPTION_ID,
                certificate_file=write_certificate_bundle(tmp_path),
                cloud_service_prefix="My_Prefix",
            )

        assert "CLOUD_SERVICE_PREFIX" in str(exc_info.value)

    def test_errors_are_collected(self) -> None:
        """Test that every validation problem is reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfig(subscription_id="", max_get_retries=0)

        message = str(exc_info.value)
        assert "AZURE_SUBSCRIPTION_ID" in message
        assert "MAX_GET_RETRIES" in message
        assert "AZURE_MANAGEMENT_CERT_FILE" in message


class TestClientConfigFromEnv:
    """Tests for loading configuration from the environment."""

    def test_from_env(self, tmp_path: Path) -> None:
        """Test loading configuration from environment variables."""
        certificate = write_certificate_bundle(tmp_path)
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "AZURE_MANAGEMENT_CERT_FILE": str(certificate),
            "AZURE_MANAGEMENT_ENDPOINT": "https://management.example.net/",
            "AZURE_VIRTUAL_NETWORK": "vnet1",
            "POLLING_INTERVAL": "2",
            "MAX_GET_RETRIES": "3",
            "VM_BOOT_HEADROOM": "120",
            "CLEANUP_RESERVE": "30",
            "ENABLE_HTTP_LOGGING": "true",
        }

        with patch.dict(os.environ, env, clear=True):
            config = ClientConfig.from_env()

        assert config.certificate_file == certificate
        assert config.management_endpoint == "https://management.example.net"
        assert config.virtual_network == "vnet1"
        assert config.polling_interval_seconds == 2
        assert config.max_get_retries == 3
        assert config.vm_boot_headroom_seconds == 120
        assert config.cleanup_reserve_seconds == 30
        assert config.enable_http_logging is True

    def test_from_env_managed_identity(self) -> None:
        """Test loading a managed identity configuration."""
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "AZURE_AUTH_MODE": "managedIdentity",
            "AZURE_MANAGED_IDENTITY_CLIENT_ID": "client-id",
        }

        with patch.dict(os.environ, env, clear=True):
            config = ClientConfig.from_env()

        assert config.auth_mode == AuthMode.MANAGED_IDENTITY
        assert config.managed_identity_client_id == "client-id"

    def test_invalid_auth_mode(self) -> None:
        """Test that an unknown auth mode raises error."""
        env = {"AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID, "AZURE_AUTH_MODE": "password"}

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                ClientConfig.from_env()

        assert "AZURE_AUTH_MODE" in str(exc_info.value)

    def test_non_integer_value(self, tmp_path: Path) -> None:
        """Test that a non-integer numeric setting raises error."""
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "AZURE_MANAGEMENT_CERT_FILE": str(write_certificate_bundle(tmp_path)),
            "POLLING_INTERVAL": "fast",
        }

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                ClientConfig.from_env()

        assert "POLLING_INTERVAL" in str(exc_info.value)
