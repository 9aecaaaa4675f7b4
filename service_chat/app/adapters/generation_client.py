"""
Generation service client for the Chat service.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import UpstreamServiceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

SERVICE_NAME = "generation_service"


@dataclass(frozen=True)
class GenerationResult:
    """Answer returned by the generation service."""

    answer: str
    payload: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)


class GenerationClient:
    """Relays a single chat message to the upstream generation endpoint.

    Calls are never retried. A circuit breaker stops hammering an upstream
    that keeps failing.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.logger = get_logger("chat.generation_client")
        self.metrics = metrics
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name=SERVICE_NAME,
            clock=clock,
        )
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def generate(self, subject: str, text: str) -> GenerationResult:
        """Send ``text`` on behalf of ``subject`` and return the upstream answer."""
        start = time.time()
        status = "error"
        try:
            result = await self.circuit_breaker.call(self._request, subject, text)
            status = "ok"
            return result
        except CircuitBreakerOpenException as exc:
            status = "circuit_open"
            self.logger.warning("Generation service circuit open", subject=subject)
            raise UpstreamServiceError(SERVICE_NAME, details={"error": str(exc)}) from exc
        except UpstreamServiceError:
            raise
        except httpx.TimeoutException as exc:
            status = "timeout"
            self.logger.error("Generation service timed out", subject=subject, error=str(exc))
            raise UpstreamServiceError(SERVICE_NAME, details={"error": "timeout"}) from exc
        except httpx.HTTPError as exc:
            self.logger.error("Generation service HTTP error", subject=subject, error=str(exc))
            raise UpstreamServiceError(SERVICE_NAME, details={"error": str(exc)}) from exc
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "upstream_request_duration_seconds", time.time() - start, status=status
                )

    async def _request(self, subject: str, text: str) -> GenerationResult:
        response = await self._client.post(
            self.api_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "query": text,
                "user": subject,
                "inputs": {},
                "response_mode": "blocking",
            },
        )

        if not response.is_success:
            self.logger.error(
                "Generation request failed",
                status_code=response.status_code,
                response=response.text[:500],
            )
            raise UpstreamServiceError(
                SERVICE_NAME,
                details={"status_code": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            self.logger.error("Generation response was not JSON", response=response.text[:500])
            raise UpstreamServiceError(SERVICE_NAME, details={"error": "invalid JSON"}) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("answer"), str):
            self.logger.error("Generation response missing answer")
            raise UpstreamServiceError(SERVICE_NAME, details={"error": "missing answer"})

        metadata = payload.get("metadata")
        return GenerationResult(
            answer=payload["answer"],
            payload=payload,
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def get_state(self) -> Dict[str, Any]:
        """Circuit breaker state, for health reporting."""
        return self.circuit_breaker.get_state()
