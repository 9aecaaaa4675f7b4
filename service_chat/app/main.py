"""
Chat relay service.

Exposes ``POST /chat``: verifies the caller's Firebase ID token, enforces the
per-user rate budget, relays the message to the generation service and logs
the exchange to Firestore.
"""

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import ChatRelayException, InternalServiceError, MethodNotAllowedError
from service_chat.app.adapters.exchange_recorder import ExchangeRecorder
from service_chat.app.adapters.generation_client import GenerationClient
from service_chat.app.auth.firebase import FirebaseTokenVerifier
from service_chat.app.domain.pipeline import ChatPipeline
from service_chat.app.ratelimit.sliding_window import SlidingWindowRateLimiter

REJECTED_METHODS = ["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"]


class ChatService(BaseService):
    """Chat relay service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        verifier: Optional[FirebaseTokenVerifier] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        generation_client: Optional[GenerationClient] = None,
        recorder: Optional[ExchangeRecorder] = None,
    ):
        super().__init__("chat", 8000, config)
        cfg = self.config

        self.verifier = verifier or FirebaseTokenVerifier(
            cfg.firebase_project_id,
            cfg.firebase_jwks_url,
            refresh_interval=cfg.jwks_refresh_interval,
            http_timeout=cfg.auth_http_timeout,
        )
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            cfg.redis_url,
            limit=cfg.rate_limit_requests,
            window_seconds=cfg.rate_limit_window_seconds,
            key_prefix=cfg.rate_limit_prefix,
            fail_open=cfg.rate_limit_fail_open,
            socket_timeout=cfg.redis_timeout_seconds,
        )
        self.generation_client = generation_client or GenerationClient(
            cfg.generation_api_url,
            cfg.generation_api_key,
            timeout=cfg.generation_timeout_seconds,
            failure_threshold=cfg.generation_circuit_failure_threshold,
            recovery_timeout=cfg.generation_circuit_recovery_timeout,
            metrics=self.metrics,
        )
        self.recorder = recorder or ExchangeRecorder(
            cfg.firestore_project_id or cfg.firebase_project_id,
            cfg.chat_collection,
            client_email=cfg.firebase_client_email,
            private_key=cfg.firebase_private_key,
            timeout=cfg.firestore_timeout_seconds,
            metrics=self.metrics,
        )

        self.pipeline = ChatPipeline(
            self.verifier,
            self.rate_limiter,
            self.generation_client,
            self.recorder,
            metrics=self.metrics,
        )

        self._setup_chat_routes()
        self.app.state.chat_service = self

    async def startup(self) -> None:
        await self.verifier.warmup()

    async def shutdown(self) -> None:
        for name, resource in (
            ("verifier", self.verifier),
            ("rate_limiter", self.rate_limiter),
            ("generation_client", self.generation_client),
            ("recorder", self.recorder),
        ):
            try:
                await resource.close()
            except Exception as exc:
                self.logger.warning("Failed to close client", client=name, error=str(exc))

    async def _check_dependencies(self) -> Dict[str, Any]:
        circuit = self.generation_client.get_state()
        return {
            "redis": await self.rate_limiter.check_health(),
            "jwks": await self.verifier.check_health(),
            "generation": "ok" if circuit.get("state") != "open" else "circuit_open",
        }

    def _setup_chat_routes(self):
        """Set up chat routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": self.service_name,
                "message": "Chat Relay - Chat Service",
                "version": "1.0.0",
            }

        @self.app.post("/chat")
        async def chat(request: Request):
            """Relay one chat message for the authenticated caller."""
            body = await request.body()
            try:
                outcome = await self.pipeline.handle(request.headers.get("Authorization"), body)
            except ChatRelayException:
                raise
            except Exception as exc:
                self.logger.error("Unhandled chat pipeline error", error=str(exc), exc_info=True)
                self.metrics.increment_counter("chat_requests_total", outcome="internal_error")
                raise InternalServiceError() from exc

            return JSONResponse(
                content=outcome.result.payload,
                headers=outcome.decision.headers(),
            )

        @self.app.api_route("/chat", methods=REJECTED_METHODS, include_in_schema=False)
        async def chat_method_not_allowed(request: Request):
            raise MethodNotAllowedError()


def create_app(config: Optional[ServiceConfig] = None, **collaborators):
    """Create FastAPI application."""
    service = ChatService(config, **collaborators)
    return service.app


if __name__ == "__main__":
    service = ChatService()
    service.run()
