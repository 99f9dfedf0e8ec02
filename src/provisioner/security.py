"""Authentication for the classic management endpoint.

Two modes are supported:
- certificate: mutual TLS with a management certificate uploaded to the
  subscription. The PEM bundle is checked before it is handed to the transport.
- managedIdentity: a bearer token for the classic management audience,
  obtained from a Managed Identity.

SECURITY INVARIANTS:
1. The private key must not be readable by group or other
2. Bundle files must be regular files of bounded size
3. Password-based credentials in the environment block startup
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from azure.core.pipeline.policies import BearerTokenCredentialPolicy
from azure.identity import ManagedIdentityCredential

from .config import AuthMode, ClientConfig

logger = logging.getLogger(__name__)

# Token audience of the classic management endpoint
MANAGEMENT_SCOPE = "https://management.core.windows.net/.default"

# A PEM certificate chain plus key is a few KB; anything larger is not a bundle
MAX_BUNDLE_FILE_SIZE = 1024 * 1024

# Environment variables that indicate password-based authentication
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

PEM_CERTIFICATE_MARKER = "-----BEGIN CERTIFICATE-----"
PEM_KEY_MARKER = "PRIVATE KEY-----"


class CertificateBundleError(Exception):
    """Raised when the management certificate bundle is unusable or unsafe."""

    pass


@dataclass(frozen=True)
class CertificateBundle:
    """Paths of a verified certificate and private key."""

    certificate_file: Path
    key_file: Path | None = None

    def as_connection_cert(self) -> str | tuple[str, str]:
        """Value for the requests transport `connection_cert` option."""
        if self.key_file is None:
            return str(self.certificate_file)
        return (str(self.certificate_file), str(self.key_file))


def _check_bundle_file(path: Path, must_contain: str, label: str) -> None:
    if not path.exists():
        raise CertificateBundleError(f"{label} does not exist: {path}")

    info = path.stat()
    if not stat.S_ISREG(info.st_mode):
        raise CertificateBundleError(f"{label} is not a regular file: {path}")
    if info.st_size > MAX_BUNDLE_FILE_SIZE:
        raise CertificateBundleError(
            f"{label} too large: {info.st_size} bytes (max {MAX_BUNDLE_FILE_SIZE})"
        )

    try:
        content = path.read_text(encoding="ascii")
    except (OSError, UnicodeDecodeError) as e:
        raise CertificateBundleError(f"Cannot read {label} {path}: {e}") from e

    if must_contain not in content:
        raise CertificateBundleError(f"{label} is not PEM encoded: {path}")

    if must_contain == PEM_KEY_MARKER and info.st_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.critical(
            "Private key has insecure permissions",
            extra={
                "security_event": "insecure_key_permissions",
                "path": str(path),
                "mode": oct(stat.S_IMODE(info.st_mode)),
            },
        )
        raise CertificateBundleError(
            f"{label} must not be accessible by group or others "
            f"(mode {oct(stat.S_IMODE(info.st_mode))}): {path}"
        )


def load_certificate_bundle(certificate_file: Path, key_file: Path | None = None) -> CertificateBundle:
    """Verify a PEM management certificate and its private key.

    When `key_file` is None the key is expected inside the certificate file.

    Raises:
        CertificateBundleError: If any file is missing, oversized, not PEM, or
            if the private key is readable by group or other.
    """
    _check_bundle_file(certificate_file, PEM_CERTIFICATE_MARKER, "Certificate file")
    _check_bundle_file(key_file or certificate_file, PEM_KEY_MARKER, "Private key")

    logger.info(
        "Management certificate verified",
        extra={
            "security_event": "certificate_verified",
            "certificate_file": str(certificate_file),
            "separate_key": key_file is not None,
        },
    )
    return CertificateBundle(certificate_file=certificate_file, key_file=key_file)


def enforce_no_password_credentials() -> None:
    """Refuse to start when password-based credentials are present.

    Raises:
        CertificateBundleError: If any forbidden environment variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Password-based credential detected",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise CertificateBundleError(
                f"{env_var} is set; only management certificates or Managed Identity are allowed"
            )


def get_managed_identity_credential(client_id: str | None = None) -> ManagedIdentityCredential:
    """Get a ManagedIdentityCredential, user-assigned if `client_id` is given."""
    enforce_no_password_credentials()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def build_auth_policies(config: ClientConfig) -> tuple[list[BearerTokenCredentialPolicy], CertificateBundle | None]:
    """Select authentication for the configured mode.

    Returns:
        Pipeline policies to add and, in certificate mode, the verified bundle
        for the transport.
    """
    if config.auth_mode == AuthMode.MANAGED_IDENTITY:
        credential = get_managed_identity_credential(config.managed_identity_client_id)
        logger.info(
            "Authentication mode selected",
            extra={"security_event": "auth_mode", "auth_mode": config.auth_mode.value},
        )
        return [BearerTokenCredentialPolicy(credential, MANAGEMENT_SCOPE)], None

    enforce_no_password_credentials()
    if config.certificate_file is None:
        raise CertificateBundleError("A management certificate is required in certificate mode")
    bundle = load_certificate_bundle(config.certificate_file, config.key_file)
    logger.info(
        "Authentication mode selected",
        extra={"security_event": "auth_mode", "auth_mode": config.auth_mode.value},
    )
    return [], bundle
