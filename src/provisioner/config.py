"""Configuration management with validation.

All timing, retry and naming parameters of the provisioning engine live here.
Invalid configurations are rejected at construction time rather than failing
halfway through a multi-minute provisioning workflow.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class AuthMode(str, Enum):
    """Supported ways of authenticating against the management endpoint."""

    CERTIFICATE = "certificate"
    MANAGED_IDENTITY = "managedIdentity"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Provider protocol constants
DEFAULT_MANAGEMENT_ENDPOINT = "https://management.core.windows.net"
DEFAULT_API_VERSION = "2014-06-01"
API_VERSION_HEADER = "x-ms-version"
REQUEST_ID_HEADER = "x-ms-request-id"
CONFLICT_ERROR_CODE = "ConflictError"

# Timing constants with documented bounds
DEFAULT_POLLING_INTERVAL_SECONDS = 5
MAX_POLLING_INTERVAL_SECONDS = 60

DEFAULT_MAX_GET_RETRIES = 5
MAX_GET_RETRIES_LIMIT = 20

# Estimated minimum time for a machine to boot once its role has been submitted
DEFAULT_VM_BOOT_HEADROOM_SECONDS = 5 * 60

# Part of every provisioning deadline kept back for deleting what a failed run created
DEFAULT_CLEANUP_RESERVE_SECONDS = 2 * 60

DEFAULT_TIMEOUT_SECONDS = 30 * 60
DEFAULT_CONNECTION_TIMEOUT_SECONDS = 60
DEFAULT_READ_TIMEOUT_SECONDS = 120

# Naming defaults
DEFAULT_AFFINITY_PREFIX = "azp-ag-"
DEFAULT_CLOUD_SERVICE_PREFIX = "azp-cs-"
DEFAULT_STORAGE_PREFIX = "azpstorage"

# Cloud service names become DNS labels under cloudapp.net
MAX_CLOUD_SERVICE_PREFIX_LENGTH = 40
MAX_STORAGE_PREFIX_LENGTH = 16

# File size limits
MAX_DESCRIPTOR_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max descriptor file

VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_PREFIX_PATTERN = r"^[a-z0-9-]*$"


@dataclass(frozen=True)
class ClientConfig:
    """Provisioning client configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    subscription_id: str

    # Authentication
    auth_mode: AuthMode = AuthMode.CERTIFICATE
    certificate_file: Path | None = None
    key_file: Path | None = None
    managed_identity_client_id: str | None = None

    # Endpoint
    management_endpoint: str = DEFAULT_MANAGEMENT_ENDPOINT
    api_version: str = DEFAULT_API_VERSION

    # Naming
    affinity_prefix: str = DEFAULT_AFFINITY_PREFIX
    cloud_service_prefix: str = DEFAULT_CLOUD_SERVICE_PREFIX
    storage_prefix: str = DEFAULT_STORAGE_PREFIX
    virtual_network: str | None = None

    # Timing
    polling_interval_seconds: float = DEFAULT_POLLING_INTERVAL_SECONDS
    max_get_retries: int = DEFAULT_MAX_GET_RETRIES
    vm_boot_headroom_seconds: float = DEFAULT_VM_BOOT_HEADROOM_SECONDS
    cleanup_reserve_seconds: float = DEFAULT_CLEANUP_RESERVE_SECONDS
    default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    connection_timeout_seconds: int = DEFAULT_CONNECTION_TIMEOUT_SECONDS
    read_timeout_seconds: int = DEFAULT_READ_TIMEOUT_SECONDS

    # Diagnostics
    enable_http_logging: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if self.auth_mode == AuthMode.CERTIFICATE:
            if self.certificate_file is None:
                errors.append("AZURE_MANAGEMENT_CERT_FILE is required in certificate mode")
            elif not self.certificate_file.exists():
                errors.append(f"Certificate file does not exist: {self.certificate_file}")
            if self.key_file is not None and not self.key_file.exists():
                errors.append(f"Key file does not exist: {self.key_file}")

        if not self.management_endpoint.startswith("https://"):
            errors.append(f"AZURE_MANAGEMENT_ENDPOINT must use https: {self.management_endpoint}")

        for name, value, limit in (
            ("CLOUD_SERVICE_PREFIX", self.cloud_service_prefix, MAX_CLOUD_SERVICE_PREFIX_LENGTH),
            ("STORAGE_PREFIX", self.storage_prefix, MAX_STORAGE_PREFIX_LENGTH),
        ):
            if len(value) > limit:
                errors.append(f"{name} exceeds maximum length of {limit}")
            elif not re.match(VALID_PREFIX_PATTERN, value):
                errors.append(f"{name} must be lowercase alphanumeric or '-': {value}")

        if not (0 <= self.polling_interval_seconds <= MAX_POLLING_INTERVAL_SECONDS):
            errors.append(
                f"POLLING_INTERVAL must be between 0 and {MAX_POLLING_INTERVAL_SECONDS} seconds"
            )

        if not (1 <= self.max_get_retries <= MAX_GET_RETRIES_LIMIT):
            errors.append(f"MAX_GET_RETRIES must be between 1 and {MAX_GET_RETRIES_LIMIT}")

        if self.vm_boot_headroom_seconds < 0:
            errors.append("VM_BOOT_HEADROOM cannot be negative")

        if self.cleanup_reserve_seconds < 0:
            errors.append("CLEANUP_RESERVE cannot be negative")

        if self.default_timeout_seconds <= 0:
            errors.append("DEFAULT_TIMEOUT must be positive")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Target subscription
            AZURE_AUTH_MODE: certificate (default) or managedIdentity
            AZURE_MANAGEMENT_CERT_FILE: PEM management certificate (certificate mode)
            AZURE_MANAGEMENT_KEY_FILE: PEM private key if not bundled with the certificate
            AZURE_MANAGED_IDENTITY_CLIENT_ID: User-assigned identity (managedIdentity mode)
            AZURE_MANAGEMENT_ENDPOINT: Service management endpoint
            AZURE_API_VERSION: Value of the x-ms-version header
            AZURE_VIRTUAL_NETWORK: Network used to locate machines by address
            AFFINITY_PREFIX / CLOUD_SERVICE_PREFIX / STORAGE_PREFIX: Naming prefixes
            POLLING_INTERVAL: Seconds between status polls (default: 5)
            MAX_GET_RETRIES: Connection retries for reads (default: 5)
            VM_BOOT_HEADROOM: Seconds reserved for machine boot (default: 300)
            CLEANUP_RESERVE: Seconds of each deadline kept for failure cleanup (default: 120)
            DEFAULT_TIMEOUT: Default overall deadline in seconds (default: 1800)
            HTTP_CONNECTION_TIMEOUT / HTTP_READ_TIMEOUT: Socket timeouts in seconds
            ENABLE_HTTP_LOGGING: If "true", trace HTTP requests (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        def get_auth_mode(value: str | None) -> AuthMode:
            if not value:
                return AuthMode.CERTIFICATE
            try:
                return AuthMode(value)
            except ValueError as e:
                valid = [m.value for m in AuthMode]
                raise ConfigurationError(f"AZURE_AUTH_MODE must be one of {valid}: {value}") from e

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            auth_mode=get_auth_mode(os.environ.get("AZURE_AUTH_MODE")),
            certificate_file=get_path("AZURE_MANAGEMENT_CERT_FILE"),
            key_file=get_path("AZURE_MANAGEMENT_KEY_FILE"),
            managed_identity_client_id=os.environ.get("AZURE_MANAGED_IDENTITY_CLIENT_ID"),
            management_endpoint=os.environ.get(
                "AZURE_MANAGEMENT_ENDPOINT", DEFAULT_MANAGEMENT_ENDPOINT
            ).rstrip("/"),
            api_version=os.environ.get("AZURE_API_VERSION", DEFAULT_API_VERSION),
            affinity_prefix=os.environ.get("AFFINITY_PREFIX", DEFAULT_AFFINITY_PREFIX),
            cloud_service_prefix=os.environ.get("CLOUD_SERVICE_PREFIX", DEFAULT_CLOUD_SERVICE_PREFIX),
            storage_prefix=os.environ.get("STORAGE_PREFIX", DEFAULT_STORAGE_PREFIX),
            virtual_network=os.environ.get("AZURE_VIRTUAL_NETWORK"),
            polling_interval_seconds=get_int("POLLING_INTERVAL", DEFAULT_POLLING_INTERVAL_SECONDS),
            max_get_retries=get_int("MAX_GET_RETRIES", DEFAULT_MAX_GET_RETRIES),
            vm_boot_headroom_seconds=get_int("VM_BOOT_HEADROOM", DEFAULT_VM_BOOT_HEADROOM_SECONDS),
            cleanup_reserve_seconds=get_int("CLEANUP_RESERVE", DEFAULT_CLEANUP_RESERVE_SECONDS),
            default_timeout_seconds=get_int("DEFAULT_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            connection_timeout_seconds=get_int(
                "HTTP_CONNECTION_TIMEOUT", DEFAULT_CONNECTION_TIMEOUT_SECONDS
            ),
            read_timeout_seconds=get_int("HTTP_READ_TIMEOUT", DEFAULT_READ_TIMEOUT_SECONDS),
            enable_http_logging=get_bool("ENABLE_HTTP_LOGGING", False),
        )
