"""Deadline-bounded transport for the Service Management API.

Every request goes through one azure-core PipelineClient shared by all
threads. The pipeline carries no retry policy: retries are decided here,
after each response has been classified.

Retry rules:
- GET retries connection failures a bounded number of times, then times out.
- POST/PUT/DELETE never retry connection failures, but retry a provider
  conflict until the deadline passes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, overload

from azure.core import PipelineClient
from azure.core.exceptions import ServiceRequestError, ServiceResponseError
from azure.core.pipeline.policies import HeadersPolicy, NetworkTraceLoggingPolicy
from azure.core.pipeline.transport import RequestsTransport
from azure.core.rest import HttpRequest

from .codec import CodecError, unmarshal
from .config import API_VERSION_HEADER, CONFLICT_ERROR_CODE, REQUEST_ID_HEADER, ClientConfig
from .deadline import Deadline
from .errors import OperationTimeoutError, ProviderError, TransientConnectionError
from .models import Error

logger = logging.getLogger(__name__)

XML_CONTENT_TYPE = "application/xml"
# The topology document is uploaded as an opaque file
TEXT_CONTENT_TYPE = "text/plain"

HTTP_NOT_FOUND = 404

CONNECTION_ERRORS = (ServiceRequestError, ServiceResponseError)


class ResponseKind(str, Enum):
    """Classification of a provider response."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    FATAL = "fatal"


@dataclass(frozen=True)
class ManagementResponse:
    status_code: int
    body: str
    request_id: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def parse_error(response: ManagementResponse) -> Error:
    """Read the error document of a failed response.

    Bodies that are not an error document (empty, HTML from a proxy) become an
    Error with no code and the start of the body as message.
    """
    if response.body.strip():
        try:
            return unmarshal(response.body, Error)
        except CodecError:
            logger.debug(
                "Error response carries no error document",
                extra={"status_code": response.status_code},
            )
    return Error(code=None, message=response.body[:200] or f"HTTP {response.status_code}")


def classify(response: ManagementResponse) -> tuple[ResponseKind, Error | None]:
    """Classify a response as success, recoverable conflict or fatal error."""
    if response.ok:
        return ResponseKind.SUCCESS, None
    error = parse_error(response)
    if error.code == CONFLICT_ERROR_CODE:
        return ResponseKind.CONFLICT, error
    return ResponseKind.FATAL, error


def _describe(error: Error) -> str:
    return f"code={error.code} message={error.message}"


class ManagementTransport:
    """HTTP access to one subscription of the management endpoint."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        auth_policies: list[Any] | None = None,
        connection_cert: str | tuple[str, str] | None = None,
    ) -> None:
        self._config = config
        self._base_url = f"{config.management_endpoint.rstrip('/')}/{config.subscription_id}"

        policies: list[Any] = [HeadersPolicy(base_headers={API_VERSION_HEADER: config.api_version})]
        policies.extend(auth_policies or [])
        policies.append(NetworkTraceLoggingPolicy(logging_enable=config.enable_http_logging))

        transport_kwargs: dict[str, Any] = {
            "connection_timeout": config.connection_timeout_seconds,
            "read_timeout": config.read_timeout_seconds,
        }
        if connection_cert is not None:
            transport_kwargs["connection_cert"] = connection_cert

        self._client = PipelineClient(
            base_url=self._base_url,
            policies=policies,
            transport=RequestsTransport(**transport_kwargs),
        )

    @property
    def polling_interval(self) -> float:
        return self._config.polling_interval_seconds

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ManagementTransport:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _send(self, method: str, path: str, body: str | None, content_type: str) -> ManagementResponse:
        request = HttpRequest(
            method,
            self._base_url + path,
            headers={"Content-Type": content_type},
            content=body,
        )
        response = self._client.send_request(request)
        return ManagementResponse(
            status_code=response.status_code,
            body=response.text(),
            request_id=response.headers.get(REQUEST_ID_HEADER),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    @overload
    def get(
        self, path: str, deadline: Deadline, *, allow_not_found: Literal[False] = False
    ) -> ManagementResponse: ...

    @overload
    def get(self, path: str, deadline: Deadline, *, allow_not_found: bool) -> ManagementResponse | None: ...

    def get(self, path: str, deadline: Deadline, *, allow_not_found: bool = False) -> ManagementResponse | None:
        """GET `path`, retrying connection failures.

        Returns None for a 404 when `allow_not_found` is set.

        Raises:
            OperationTimeoutError: If every attempt failed to connect.
            ProviderError: For any other non-2xx response, conflicts included.
        """
        max_attempts = self._config.max_get_retries
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = self._send("GET", path, None, XML_CONTENT_TYPE)
            except CONNECTION_ERRORS as e:
                last_error = e
                logger.warning(
                    "GET failed to reach the provider, retrying",
                    extra={"path": path, "attempt": attempt, "max_attempts": max_attempts, "error": str(e)},
                )
                if attempt < max_attempts and not deadline.expired:
                    deadline.bounded_sleep(self.polling_interval)
                    continue
                break

            if response.status_code == HTTP_NOT_FOUND and allow_not_found:
                return None
            _, error = classify(response)
            if error is not None:
                raise ProviderError(error.code, error.message, response.status_code)
            return response

        raise OperationTimeoutError(
            f"Timed out while executing GET {path} after {max_attempts} attempts",
            last_state=str(last_error),
        ) from last_error

    # =========================================================================
    # Mutations
    # =========================================================================

    def _mutate(
        self,
        method: str,
        path: str,
        deadline: Deadline,
        body: str | None = None,
        content_type: str = XML_CONTENT_TYPE,
    ) -> ManagementResponse:
        while True:
            try:
                response = self._send(method, path, body, content_type)
            except CONNECTION_ERRORS as e:
                raise TransientConnectionError(f"{method} {path} failed to reach the provider: {e}") from e

            kind, error = classify(response)
            if error is None:
                logger.debug(
                    "Request accepted",
                    extra={"method": method, "path": path, "request_id": response.request_id},
                )
                return response

            if kind == ResponseKind.FATAL:
                raise ProviderError(error.code, error.message, response.status_code)

            if deadline.expired:
                message = (
                    f"Timeout while waiting for conflict to be resolved on {method} {path}, "
                    f"more about the error: {_describe(error)}"
                )
                logger.error(message)
                raise OperationTimeoutError(message, last_state=error)

            logger.debug(
                "Waiting for conflict to be resolved",
                extra={"method": method, "path": path, "error_message": error.message},
            )
            deadline.bounded_sleep(self.polling_interval)

    def post(self, path: str, body: str, deadline: Deadline) -> ManagementResponse:
        return self._mutate("POST", path, deadline, body)

    def put(self, path: str, body: str, deadline: Deadline, content_type: str = XML_CONTENT_TYPE) -> ManagementResponse:
        return self._mutate("PUT", path, deadline, body, content_type)

    def delete(self, path: str, deadline: Deadline) -> ManagementResponse:
        return self._mutate("DELETE", path, deadline)
