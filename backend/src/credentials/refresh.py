"""
Token refresh coordination for OAuth credentials.

Implements BOTH refresh strategies on top of one serialisation point:
1. On-demand refresh: get_valid_access_token() finds an expired token
2. Scheduled refresh: background job refreshes tokens before expiry

CONCURRENCY:
- Refreshes are single-flight per (user_id, provider). Concurrent callers
  discovering the same expired token queue on one asyncio.Lock; the first
  one refreshes and commits, the rest re-read the row and see the new
  token instead of issuing a redundant provider call.
- Unrelated keys never contend.
- The coordinator is process-local. Cross-process single-flight is not
  provided.

Usage:
    coordinator = RefreshCoordinator()

    async with coordinator.lock_for(user_id, CredentialProvider.GOOGLE):
        credential = store.get(user_id, CredentialProvider.GOOGLE, reload=True)
        if credential.is_token_expired():
            ...refresh and persist...
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from src.models.oauth_credential import CredentialProvider

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this window
DEFAULT_REFRESH_WINDOW_MINUTES = 30


class RefreshResultStatus(str, Enum):
    """Result status for refresh operations."""
    SUCCESS = "success"
    NOT_NEEDED = "not_needed"
    WOULD_REFRESH = "would_refresh"
    NOT_POSSIBLE = "not_possible"
    FAILED = "failed"


@dataclass
class RefreshResult:
    """
    Result of a token refresh operation.

    SECURITY: Does NOT include token values.
    """
    status: RefreshResultStatus
    credential_id: str
    user_id: str
    provider: str
    new_expires_at: Optional[datetime] = None
    error_message: Optional[str] = None


class RefreshCoordinator:
    """
    Hands out one asyncio.Lock per (user_id, provider).

    Locks are held weakly: once no coroutine holds or waits on a key's
    lock it is dropped, so the table does not grow with the user count.
    Share one instance across every TokenLifecycleManager in the process.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, user_id: str, provider: CredentialProvider) -> asyncio.Lock:
        key = (user_id, provider.value)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
