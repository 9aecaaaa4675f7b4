"""
Chat request pipeline.

Runs one inbound chat request through verify, admit, validate, relay and
record, short-circuiting on the first failure. Each failure surfaces as a
``ChatRelayException`` subclass which the HTTP layer maps to a status code.
Recording is best-effort and never fails the request.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from shared.errors import ChatRelayException, RateLimitError, ValidationError
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector
from service_chat.app.adapters.exchange_recorder import ExchangeRecorder
from service_chat.app.adapters.generation_client import GenerationClient, GenerationResult
from service_chat.app.auth.firebase import FirebaseTokenVerifier, VerifiedIdentity
from service_chat.app.ratelimit.sliding_window import AdmissionDecision, SlidingWindowRateLimiter


class ChatRequest(BaseModel):
    """Inbound chat message."""

    message: str

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value


@dataclass(frozen=True)
class ChatOutcome:
    """Successful pipeline run."""

    identity: VerifiedIdentity
    decision: AdmissionDecision
    result: GenerationResult


class ChatPipeline:
    """Sequences the chat stages over injected collaborators."""

    def __init__(
        self,
        verifier: FirebaseTokenVerifier,
        rate_limiter: SlidingWindowRateLimiter,
        generation_client: GenerationClient,
        recorder: ExchangeRecorder,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.verifier = verifier
        self.rate_limiter = rate_limiter
        self.generation_client = generation_client
        self.recorder = recorder
        self.metrics = metrics
        self.logger = get_logger("chat.pipeline")

    async def handle(self, authorization: Optional[str], body: bytes) -> ChatOutcome:
        """Run one request; raises a ChatRelayException on any rejection."""
        try:
            outcome = await self._run(authorization, body)
        except ChatRelayException as exc:
            self._count(exc.outcome)
            raise

        self._count("ok")
        return outcome

    async def _run(self, authorization: Optional[str], body: bytes) -> ChatOutcome:
        identity = await self.verifier.authenticate_header(authorization)
        set_user_context(identity.subject)

        decision = await self.rate_limiter.admit(identity.subject)
        if self.metrics:
            self.metrics.increment_counter(
                "rate_limit_decisions_total",
                decision="allowed" if decision.allowed else "denied",
            )
        if not decision.allowed:
            raise RateLimitError(
                details={"count": decision.count, "limit": decision.limit},
                headers=decision.headers(),
            )

        message = self.parse_message(body)

        result = await self.generation_client.generate(identity.subject, message)
        await self.recorder.record(identity.subject, message, result.answer)

        self.logger.info(
            "Chat exchange relayed",
            remaining=decision.remaining,
            answer_length=len(result.answer),
        )
        return ChatOutcome(identity=identity, decision=decision, result=result)

    @staticmethod
    def parse_message(body: bytes) -> str:
        """Extract a non-blank ``message`` from a JSON request body."""
        try:
            return ChatRequest.model_validate_json(body or b"").message
        except PydanticValidationError as exc:
            raise ValidationError(
                "Request body must be a JSON object with a non-empty 'message'",
                details={"errors": [error["msg"] for error in exc.errors()]},
            ) from exc

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("chat_requests_total", outcome=outcome)
