"""
CSRF state store for the OAuth authorization handshake.

Each authorization request gets a random one-time state token bound to
the initiating user. The callback consumes it exactly once: lookup and
delete are a single atomic step, so two concurrent callbacks replaying the
same state cannot both succeed. Entries older than the TTL (10 minutes)
are rejected and swept lazily on each issue().

Two backends share one interface:
- AuthorizationStateStore: process-local dict guarded by a lock. Correct
  only for a single process; authorization started on one replica cannot
  be completed on another.
- RedisAuthorizationStateStore: SET with EX + GETDEL, for any deployment
  with more than one process.
"""

import json
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import redis

from src.config.oauth import DEFAULT_STATE_TTL_SECONDS
from src.credentials.errors import InvalidOrExpiredState

logger = logging.getLogger(__name__)

# 16 random bytes -> 32 hex characters
STATE_TOKEN_BYTES = 16


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthorizationState:
    """Ephemeral handshake record. Never persisted durably."""
    state: str
    user_id: str
    issued_at: datetime
    provider: Optional[str] = None
    scopes: List[str] = field(default_factory=list)

    def is_expired(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) - self.issued_at >= ttl

    def to_json(self) -> str:
        return json.dumps({
            "user_id": self.user_id,
            "provider": self.provider,
            "scopes": self.scopes,
            "issued_at": self.issued_at.isoformat(),
        })

    @classmethod
    def from_json(cls, state: str, raw: str) -> "AuthorizationState":
        data = json.loads(raw)
        return cls(
            state=state,
            user_id=data["user_id"],
            provider=data.get("provider"),
            scopes=list(data.get("scopes") or []),
            issued_at=datetime.fromisoformat(data["issued_at"]),
        )


def generate_state_token() -> str:
    """Cryptographically random, 32 hex characters."""
    return secrets.token_hex(STATE_TOKEN_BYTES)


class AuthorizationStateStore:
    """
    In-memory, single-process state store.

    Thread-safe: consume() pops under the lock so a state is handed out
    to at most one caller.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(seconds=DEFAULT_STATE_TTL_SECONDS),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, AuthorizationState] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def issue(
        self,
        user_id: str,
        provider: Optional[str] = None,
        scopes: Optional[List[str]] = None,
    ) -> str:
        """Record a new state bound to user_id and return the token."""
        if not user_id:
            raise ValueError("user_id is required")

        state = generate_state_token()
        entry = AuthorizationState(
            state=state,
            user_id=user_id,
            issued_at=self._clock(),
            provider=provider,
            scopes=list(scopes or []),
        )
        with self._lock:
            self._sweep_locked(self.ttl)
            self._entries[state] = entry

        logger.debug(
            "Authorization state issued",
            extra={"user_id": user_id, "provider": provider},
        )
        return state

    def consume(self, state: str) -> AuthorizationState:
        """
        Atomically look up and delete a state.

        Raises:
            InvalidOrExpiredState: If unknown, already consumed or older than ttl
        """
        if not state:
            raise InvalidOrExpiredState()

        with self._lock:
            entry = self._entries.pop(state, None)

        if entry is None:
            raise InvalidOrExpiredState()
        if entry.is_expired(self.ttl, self._clock()):
            logger.info(
                "Rejected expired authorization state",
                extra={"user_id": entry.user_id, "provider": entry.provider},
            )
            raise InvalidOrExpiredState()
        return entry

    def sweep_expired(self, ttl: Optional[timedelta] = None) -> int:
        """Remove entries older than ttl. Returns the number removed."""
        with self._lock:
            return self._sweep_locked(ttl or self.ttl)

    def _sweep_locked(self, ttl: timedelta) -> int:
        now = self._clock()
        expired = [k for k, v in self._entries.items() if v.is_expired(ttl, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept expired authorization states", extra={"count": len(expired)})
        return len(expired)


class RedisAuthorizationStateStore:
    """
    Redis-backed state store for multi-process deployments.

    Redis expires keys natively; GETDEL makes consume() atomic across
    replicas. Requires Redis >= 6.2.

    Key schema:
    - oauth:state:{state} -> JSON {user_id, provider, scopes, issued_at}
    """

    KEY_PREFIX = "oauth:state:"

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl: timedelta = timedelta(seconds=DEFAULT_STATE_TTL_SECONDS),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._redis = redis_client
        self.ttl = ttl
        self._clock = clock

    def _key(self, state: str) -> str:
        return f"{self.KEY_PREFIX}{state}"

    def issue(
        self,
        user_id: str,
        provider: Optional[str] = None,
        scopes: Optional[List[str]] = None,
    ) -> str:
        if not user_id:
            raise ValueError("user_id is required")

        state = generate_state_token()
        entry = AuthorizationState(
            state=state,
            user_id=user_id,
            issued_at=self._clock(),
            provider=provider,
            scopes=list(scopes or []),
        )
        ttl_seconds = max(int(self.ttl.total_seconds()), 1)
        # nx: a colliding token must never overwrite a live one
        stored = self._redis.set(self._key(state), entry.to_json(), ex=ttl_seconds, nx=True)
        if not stored:
            raise RuntimeError("Authorization state collision")
        return state

    def consume(self, state: str) -> AuthorizationState:
        if not state:
            raise InvalidOrExpiredState()

        raw = self._redis.getdel(self._key(state))
        if raw is None:
            raise InvalidOrExpiredState()
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        entry = AuthorizationState.from_json(state, raw)
        # Redis TTL granularity is one second; enforce the exact bound here
        if entry.is_expired(self.ttl, self._clock()):
            raise InvalidOrExpiredState()
        return entry

    def sweep_expired(self, ttl: Optional[timedelta] = None) -> int:
        """No-op: Redis evicts expired keys itself."""
        return 0


def build_state_store(
    backend: str,
    ttl: timedelta,
    redis_url: Optional[str] = None,
):
    """Build the configured state store ("memory" or "redis")."""
    if backend == "redis":
        if not redis_url:
            raise ValueError("REDIS_URL is required for the redis state backend")
        client = redis.Redis.from_url(redis_url, decode_responses=False)
        logger.info("Using Redis authorization state store")
        return RedisAuthorizationStateStore(client, ttl=ttl)
    if backend != "memory":
        raise ValueError(f"Unknown OAUTH_STATE_BACKEND: {backend}")
    logger.info("Using in-memory authorization state store (single process only)")
    return AuthorizationStateStore(ttl=ttl)
