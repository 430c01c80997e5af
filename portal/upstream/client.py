"""Authenticated client for the Pangolin access-control API."""

import time
from typing import Any, Callable, Optional, TypeVar

import requests

from portal.bootstrap.config import DEFAULT_UPSTREAM_TIMEOUT, UpstreamCredentials
from portal.domain.correlation_id import CorrelationLoggerAdapter
from portal.upstream.errors import TransportError, UpstreamRejected
from portal.upstream.models import (
    AccessRule,
    Resource,
    ResourceEnvelope,
    parse_resource_list,
)

T = TypeVar("T")


class ResourceClient:
    """Issues authenticated calls to the upstream and unwraps its envelopes.

    Holds only immutable settings, so one instance is safely shared by all
    request threads. Calls are never retried; every call is bounded by
    ``timeout`` seconds.
    """

    def __init__(
        self,
        credentials: UpstreamCredentials,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._credentials = credentials
        self._timeout = timeout
        self._logger = logger

    @property
    def base_url(self) -> str:
        return f"{self._credentials.base_host}/v1"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._credentials.token}",
            "Content-Type": "application/json",
        }

    def _request(
        self, method: str, path: str, payload: Optional[dict[str, Any]] = None
    ) -> requests.Response:
        start = time.perf_counter()
        try:
            response = requests.request(
                method,
                self.base_url + path,
                headers=self._headers(),
                json=payload,
                timeout=self._timeout,
            )
        except requests.RequestException as error:
            raise TransportError(f"{method} {path}: {error}") from error

        if self._logger is not None:
            self._logger.debug(
                "upstream call",
                extra={
                    "event": "upstream_call",
                    "method": method,
                    "path": path,
                    "upstream_status": response.status_code,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 3),
                },
            )
        return response

    @staticmethod
    def _decode(
        response: requests.Response, data_parser: Callable[[Any], T]
    ) -> ResourceEnvelope[T]:
        try:
            envelope = ResourceEnvelope.parse(response.json(), data_parser)
        except (ValueError, TypeError, AttributeError) as error:
            raise TransportError(
                f"decode envelope: {error}", status_code=response.status_code
            ) from error

        if envelope.error:
            raise UpstreamRejected(
                envelope.message or "upstream reported an error without a message",
                status=envelope.status or response.status_code,
            )
        return envelope

    def list_resources(self) -> list[Resource]:
        """Return the resources of the configured organisation."""
        response = self._request(
            "GET", f"/org/{self._credentials.org_id}/resources"
        )
        if response.status_code != 200:
            raise TransportError(
                f"error status code: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )
        envelope = self._decode(response, parse_resource_list)
        return envelope.data or []

    def create_rule(self, rule: AccessRule, resource_id: int) -> AccessRule:
        """Create ``rule`` on the resource and return the rule the upstream stored.

        The envelope decides the outcome whatever the HTTP status.
        """
        response = self._request(
            "PUT", f"/resource/{resource_id}/rule", rule.to_payload()
        )
        envelope = self._decode(response, AccessRule.from_payload)
        return envelope.data
