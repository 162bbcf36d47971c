"""
HTTP transport used to reach the identity provider.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol
from urllib.parse import urlsplit

import httpx

from shared.circuit_breaker import CircuitBreakerOpenException, circuit_breaker_manager
from shared.errors import NetworkError
from shared.logging import get_logger


@dataclass(frozen=True)
class TransportResponse:
    """Status and raw body of a completed request."""

    status_code: int
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        """Decode the body; ``None`` when it is not JSON."""
        try:
            return json.loads(self.body)
        except (TypeError, ValueError):
            return None


class Transport(Protocol):
    """Send a request, get status and body back.

    Implementations raise ``NetworkError`` for transport-level failures and
    never retry.
    """

    def send(
        self,
        method: str,
        url: str,
        *,
        data: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransportResponse:
        ...


class HttpxTransport:
    """Transport backed by an ``httpx.Client`` with a per-host circuit breaker."""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        *,
        timeout: float = 10.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> None:
        self._client = client or httpx.Client(timeout=timeout)
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.logger = get_logger("oidc.transport")

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def send(
        self,
        method: str,
        url: str,
        *,
        data: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransportResponse:
        host = urlsplit(url).netloc
        breaker = circuit_breaker_manager.get_circuit_breaker(
            f"idp:{host}",
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
            expected_exception=httpx.TransportError,
        )

        try:
            response = breaker.call(
                self._client.request,
                method.upper(),
                url,
                data=dict(data) if data is not None else None,
                headers=dict(headers) if headers is not None else None,
            )
        except CircuitBreakerOpenException as exc:
            raise NetworkError(host, "circuit breaker open", details={"url": _strip_query(url)}) from exc
        except httpx.HTTPError as exc:
            self.logger.warning("HTTP request failed", method=method, url=_strip_query(url), error=type(exc).__name__)
            raise NetworkError(host, str(exc) or type(exc).__name__, details={"url": _strip_query(url)}) from exc

        self.logger.debug("HTTP request completed", method=method, url=_strip_query(url), status_code=response.status_code)
        return TransportResponse(
            status_code=response.status_code,
            body=response.text,
            headers=dict(response.headers),
        )


def _strip_query(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def default_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if extra:
        headers.update(extra)
    return headers
