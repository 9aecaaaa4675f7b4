"""
Authentication helpers for the Chat service.
"""

from .firebase import FirebaseTokenVerifier, VerifiedIdentity

__all__ = [
    "FirebaseTokenVerifier",
    "VerifiedIdentity",
]
