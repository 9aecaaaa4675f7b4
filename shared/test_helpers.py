"""
Test helper functions and fakes for the Chat Relay service.
"""

import time
from typing import Any, Dict, List, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt
from redis.exceptions import ConnectionError as RedisConnectionError

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


class MockTokenGenerator:
    """Mint Firebase-style RS256 ID tokens and the matching JWKS document."""

    def __init__(self, project_id: str = "demo-chat-project", kid: str = "test-key-1"):
        self.project_id = project_id
        self.kid = kid
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")
        self.public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")

    def jwks(self) -> Dict[str, Any]:
        """JWKS document publishing the public half of the signing key."""
        key = jwk.construct(self.public_pem, algorithm="RS256").to_dict()
        key.update({"kid": self.kid, "use": "sig", "alg": "RS256"})
        return {"keys": [key]}

    def generate_id_token(
        self,
        user_id: str,
        expires_in: int = 3600,
        kid: Optional[str] = None,
        **overrides: Any,
    ) -> str:
        """Generate an ID token for ``user_id``; ``overrides`` replace claims."""
        now = int(time.time())
        payload = {
            "iss": f"{FIREBASE_ISSUER_PREFIX}{self.project_id}",
            "aud": self.project_id,
            "auth_time": now - 60,
            "user_id": user_id,
            "sub": user_id,
            "iat": now - 10,
            "exp": now + expires_in,
            "email": f"{user_id}@example.com",
            "firebase": {"sign_in_provider": "password"},
        }
        payload.update(overrides)
        return jwt.encode(
            payload,
            self.private_pem,
            algorithm="RS256",
            headers={"kid": kid or self.kid},
        )


class FakeRedisPipeline:
    """Buffers sorted-set commands and applies them on ``execute``."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self._ops: List[Tuple[str, tuple]] = []

    async def __aenter__(self) -> "FakeRedisPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._ops = []

    def zremrangebyscore(self, key, min_score, max_score):
        self._ops.append(("zremrangebyscore", (key, min_score, max_score)))
        return self

    def zadd(self, key, mapping):
        self._ops.append(("zadd", (key, mapping)))
        return self

    def zcard(self, key):
        self._ops.append(("zcard", (key,)))
        return self

    def zrange(self, key, start, end, withscores=False):
        self._ops.append(("zrange", (key, start, end, withscores)))
        return self

    def pexpire(self, key, milliseconds):
        self._ops.append(("pexpire", (key, milliseconds)))
        return self

    async def execute(self) -> List[Any]:
        if self.redis.fail:
            raise RedisConnectionError("Connection refused")
        self.redis.executions += 1
        results = [getattr(self.redis, f"_{name}")(*args) for name, args in self._ops]
        self._ops = []
        return results


class FakeRedis:
    """In-memory stand-in for the sorted-set subset of ``redis.asyncio.Redis``."""

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.expiries: Dict[str, int] = {}
        self.fail = False
        self.executions = 0
        self.closed = False

    def pipeline(self, transaction: bool = True) -> FakeRedisPipeline:
        return FakeRedisPipeline(self)

    async def zrange(self, key, start, end, withscores=False):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        return self._zrange(key, start, end, withscores)

    async def zcount(self, key, min_score, max_score) -> int:
        low, high = float(min_score), float(max_score)
        return sum(1 for score in self.zsets.get(key, {}).values() if low <= score <= high)

    async def delete(self, key) -> int:
        self.expiries.pop(key, None)
        return 1 if self.zsets.pop(key, None) is not None else 0

    async def ping(self) -> bool:
        if self.fail:
            raise RedisConnectionError("Connection refused")
        return True

    async def aclose(self) -> None:
        self.closed = True

    def _zremrangebyscore(self, key, min_score, max_score) -> int:
        low, high = float(min_score), float(max_score)
        zset = self.zsets.get(key, {})
        doomed = [member for member, score in zset.items() if low <= score <= high]
        for member in doomed:
            del zset[member]
        return len(doomed)

    def _zadd(self, key, mapping) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update({member: float(score) for member, score in mapping.items()})
        return added

    def _zcard(self, key) -> int:
        return len(self.zsets.get(key, {}))

    def _zrange(self, key, start, end, withscores=False):
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])
        stop = None if end == -1 else end + 1
        selected = ordered[start:stop]
        return selected if withscores else [member for member, _ in selected]

    def _pexpire(self, key, milliseconds) -> bool:
        self.expiries[key] = milliseconds
        return key in self.zsets


class FakeCollection:
    def __init__(self, client: "FakeFirestoreClient", name: str):
        self.client = client
        self.name = name

    async def add(self, document: Dict[str, Any]):
        if self.client.fail:
            raise RuntimeError("Firestore unavailable")
        self.client.documents.setdefault(self.name, []).append(document)
        return (None, None)


class FakeFirestoreClient:
    """Records documents added through ``collection(name).add``."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.documents: Dict[str, List[Dict[str, Any]]] = {}
        self.closed = False

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced clock for window arithmetic."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


mock_token_generator = MockTokenGenerator()
