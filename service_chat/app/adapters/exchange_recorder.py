"""
Firestore-backed exchange recorder for the Chat service.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from google.cloud import firestore
from google.oauth2 import service_account

from shared.errors import PersistenceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class ExchangeRecord:
    """One relayed chat exchange."""

    user_id: str
    message: str
    response: str

    def to_document(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "message": self.message,
            "response": self.response,
            "timestamp": firestore.SERVER_TIMESTAMP,
        }


class ExchangeRecorder:
    """Appends chat exchanges to a Firestore collection, best-effort.

    A failed write is logged and counted but never raised: a successful relay
    must not turn into a caller-visible error because the audit write failed.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        collection: str = "chats",
        *,
        client_email: Optional[str] = None,
        private_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[Any] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.project_id = project_id
        self.collection = collection
        self.client_email = client_email
        self.private_key = private_key
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("chat.exchange_recorder")
        self._client = client

    def _get_client(self) -> Any:
        """Build the Firestore client on first use."""
        if self._client is None:
            credentials = None
            if self.client_email and self.private_key:
                credentials = service_account.Credentials.from_service_account_info({
                    "type": "service_account",
                    "project_id": self.project_id,
                    "client_email": self.client_email,
                    "private_key": self.private_key.replace("\\n", "\n"),
                    "token_uri": TOKEN_URI,
                })
            self._client = firestore.AsyncClient(project=self.project_id or None, credentials=credentials)
        return self._client

    async def record(self, subject: str, message: str, response: str) -> None:
        """Persist one exchange. Failures are logged, never propagated."""
        record = ExchangeRecord(user_id=subject, message=message, response=response)
        try:
            await self._write(record)
        except Exception as exc:
            self.logger.error(
                "Failed to record chat exchange",
                subject=subject,
                collection=self.collection,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            if self.metrics:
                self.metrics.increment_counter("exchange_record_failures_total")
            return

        self.logger.debug("Chat exchange recorded", subject=subject, collection=self.collection)

    async def _write(self, record: ExchangeRecord) -> None:
        client = self._get_client()
        try:
            await asyncio.wait_for(
                client.collection(self.collection).add(record.to_document()),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise PersistenceError(details={"error": "timeout"}) from exc

    async def close(self) -> None:
        """Close the Firestore client if one was created."""
        if self._client is None:
            return
        try:
            result = self._client.close()
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            self.logger.warning("Firestore client close failed", error=str(exc))
        self._client = None
