"""
Adapters package for the Chat Service.

Contains client wrappers for the external services the chat pipeline talks
to: the upstream generation API and the Firestore exchange log. These
adapters encapsulate base URLs, request shapes, timeouts and the mapping of
failures onto shared errors.
"""

from .generation_client import GenerationClient, GenerationResult
from .exchange_recorder import ExchangeRecord, ExchangeRecorder

__all__ = [
    "ExchangeRecord",
    "ExchangeRecorder",
    "GenerationClient",
    "GenerationResult",
]
