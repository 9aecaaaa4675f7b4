"""
Domain logic for the Chat Service.

Holds the request pipeline that sequences the adapters; it does not know
about HTTP beyond the raw Authorization header and body it is handed.
"""

from .pipeline import ChatOutcome, ChatPipeline, ChatRequest

__all__ = [
    "ChatOutcome",
    "ChatPipeline",
    "ChatRequest",
]
