"""Service Management mock for integration testing.

This module provides an in-memory implementation of the classic Service
Management API that enables integration testing without Azure connectivity.

Key Features:
- In-memory state for affinity groups, storage, cloud services, disks and
  the network topology document
- Asynchronous operation envelope (202 + request id, operation polling)
- Role instance and gateway state simulation
- Fault injection: conflicts, connection failures, failed operations

Usage:
    from azure_mock import MockManagementContext

    with MockManagementContext() as ctx:
        client = ProvisioningClient(config)
        client.merge_network_change(change, deadline)

        assert ctx.state.count("PUT", "/services/networking/media") == 1
"""

from .context import DEFAULT_SUBSCRIPTION_ID, MockManagementContext, mock_management_context
from .resources import MockHttpResponse, MockManagementState, MockPipelineClient, RecordedRequest

__all__ = [
    "DEFAULT_SUBSCRIPTION_ID",
    "MockHttpResponse",
    "MockManagementContext",
    "MockManagementState",
    "MockPipelineClient",
    "RecordedRequest",
    "mock_management_context",
]
