"""Process setup for the provisioning client.

SECRETLESS ARCHITECTURE:
The client authenticates either with a management certificate whose key
file permissions are verified at startup, or with a Managed Identity. Client
secrets and passwords in the environment are rejected.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from .client import ProvisioningClient
from .config import ClientConfig

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED_RECORD_FIELDS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "thread": record.threadName,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(*, json_output: bool = True, level: int = logging.INFO) -> None:
    """Configure root logging, JSON lines by default."""
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def create_client(config: ClientConfig | None = None) -> ProvisioningClient:
    """Build a client from `config`, or from the environment if None.

    Raises:
        ConfigurationError: If the environment holds an invalid configuration.
        CertificateBundleError: If the credentials fail verification.
    """
    config = config if config is not None else ClientConfig.from_env()
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting provisioning client",
        extra={
            "subscription_id": config.subscription_id,
            "management_endpoint": config.management_endpoint,
            "api_version": config.api_version,
        },
    )
    return ProvisioningClient(config)
