"""Per-session message quota.

The gate increments first and checks second: the counter is bumped by a
single atomic statement and the returned value decides admission, so two
concurrent requests can never both see the last free slot. Storage
failures deny the request.
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from boardroom.config import Settings
from boardroom.storage.sessions import MessageCount, SessionStore

logger = logging.getLogger(__name__)

QuotaFailure = Literal["tracking_error", "limit_reached"]


class MessageLimitStatus(BaseModel):
    """Counter view returned to clients (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    current_count: int = Field(alias="currentCount")
    message_limit: int = Field(alias="messageLimit")
    remaining: int
    limit_reached: bool = Field(alias="limitReached")
    warning_threshold: bool = Field(alias="warningThreshold")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


UNLIMITED_STATUS = MessageLimitStatus(
    current_count=0,
    message_limit=-1,
    remaining=9999,
    limit_reached=False,
    warning_threshold=False,
)


class QuotaDecision(BaseModel):
    ok: bool
    status: MessageLimitStatus | None = None
    reason: QuotaFailure | None = None


def compute_status(counter: MessageCount, warning_remaining: int) -> MessageLimitStatus:
    """Derive the client-facing status from raw counter values."""
    remaining = max(0, counter.limit - counter.count)
    limit_reached = counter.count > counter.limit
    return MessageLimitStatus(
        current_count=counter.count,
        message_limit=counter.limit,
        remaining=remaining,
        limit_reached=limit_reached,
        warning_threshold=not limit_reached and remaining <= warning_remaining,
    )


def get_limit_reached_message() -> str:
    return (
        "You've reached the message limit for this session. "
        "Start a new session to keep working with the board."
    )


class QuotaGate:
    """Admission control for chat requests against the session counter."""

    def __init__(self, store: SessionStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def try_consume(self, session_id: str, principal: str | None = None) -> QuotaDecision:
        """Count one message against the session and decide admission.

        Unlimited principals are admitted with a synthetic status and no
        counter change. The boundary is inclusive: the message that brings
        the count to exactly the limit is allowed.
        """
        if self._settings.is_unlimited(principal):
            logger.debug("Unlimited principal %s bypasses quota for %s", principal, session_id)
            return QuotaDecision(ok=True, status=UNLIMITED_STATUS)

        try:
            counter = await self._store.increment_message_count(session_id)
        except Exception:
            logger.exception("Failed to increment message count for session %s", session_id)
            return QuotaDecision(ok=False, reason="tracking_error")

        status = compute_status(counter, self._settings.message_warning_remaining)
        if status.limit_reached:
            logger.info("Session %s over message limit (%d/%d)", session_id, counter.count, counter.limit)
            return QuotaDecision(ok=False, status=status, reason="limit_reached")
        return QuotaDecision(ok=True, status=status)

    async def check(self, session_id: str) -> MessageLimitStatus:
        """Current status without consuming; raises SessionNotFoundError."""
        counter = await self._store.get_message_count(session_id)
        return compute_status(counter, self._settings.message_warning_remaining)
