"""Tests for process setup."""

import json
import logging
import sys
from unittest import mock

import pytest
from azure_mock import MockManagementContext

from provisioner.client import ProvisioningClient
from provisioner.config import ClientConfig, ConfigurationError
from provisioner.main import JsonFormatter, create_client, setup_logging


class TestJsonFormatter:
    """Tests for structured log output."""

    def test_extra_fields_are_included(self) -> None:
        """Test that `extra` values appear as top-level keys."""
        record = logging.LogRecord("provisioner.saga", logging.INFO, __file__, 1, "Deleting %s", ("svc1",), None)
        record.cloud_service = "svc1"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Deleting svc1"
        assert data["level"] == "INFO"
        assert data["logger"] == "provisioner.saga"
        assert data["cloud_service"] == "svc1"
        assert data["timestamp"].endswith("Z")
        assert "args" not in data

    def test_exception_is_formatted(self) -> None:
        """Test that exception info is rendered as text."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in data["exception"]


class TestSetup:
    """Tests for logging and client setup."""

    def test_setup_logging_replaces_handlers(self) -> None:
        """Test that setup installs a single JSON handler."""
        root_logger = logging.getLogger()
        saved_handlers, saved_level = root_logger.handlers[:], root_logger.level
        try:
            setup_logging(level=logging.DEBUG)

            assert len(root_logger.handlers) == 1
            assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)
            assert root_logger.level == logging.DEBUG
            assert logging.getLogger("azure").level == logging.WARNING
        finally:
            root_logger.handlers[:] = saved_handlers
            root_logger.setLevel(saved_level)

    def test_create_client_from_config(self, config: ClientConfig, mock_ctx: MockManagementContext) -> None:
        """Test that an explicit configuration is used as given."""
        with create_client(config) as client:
            assert isinstance(client, ProvisioningClient)
            assert client.config is config

    def test_create_client_without_config_reads_environment(self) -> None:
        """Test that the environment is consulted when no configuration is passed."""
        with mock.patch.object(ClientConfig, "from_env", side_effect=ConfigurationError("missing")) as from_env:
            with pytest.raises(ConfigurationError):
                create_client()

        from_env.assert_called_once_with()
