"""Short-lived credentials scoped to one instance's live channel."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Iterable, List

import jwt
from pydantic import BaseModel

from ..constants import ACTIVITY_TYPES
from ..errors import InvalidRequest, Unauthorized
from ..persistence.models import utcnow

_ALGORITHM = "HS256"
_AUDIENCE = "gitfix:realtime"


class SubscriptionToken(BaseModel):
    """Signed token plus the scope it grants, for the client's convenience."""

    token: str
    channel: str
    topics: List[str]
    expires_at: datetime


class SubscriptionClaims(BaseModel):
    """Verified scope carried by a token."""

    channel: str
    topics: List[str]
    subject: str


class SubscriptionTokenService:
    """Issues and verifies HS256 JWTs granting access to one channel.

    Tokens expire after ``ttl_seconds``; clients refresh them before expiry to
    keep streaming. Expiry never affects the workflow itself.
    """

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 300,
        issuer: str = "gitfix",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret
        self._ttl = timedelta(seconds=ttl_seconds)
        self._issuer = issuer
        self._clock = clock

    def issue(self, channel: str, topics: Iterable[str], subject: str) -> SubscriptionToken:
        topics = list(topics)
        unknown = sorted(set(topics) - set(ACTIVITY_TYPES))
        if unknown:
            raise InvalidRequest(f"Unknown topics: {unknown}")
        now = self._clock()
        expires_at = now + self._ttl
        token = jwt.encode(
            {
                "iss": self._issuer,
                "aud": _AUDIENCE,
                "sub": subject,
                "iat": now,
                "exp": expires_at,
                "channel": channel,
                "topics": topics,
            },
            self._secret,
            algorithm=_ALGORITHM,
        )
        return SubscriptionToken(token=token, channel=channel, topics=topics, expires_at=expires_at)

    def verify(self, token: str) -> SubscriptionClaims:
        """Return the token's scope or raise :class:`Unauthorized`."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=_AUDIENCE,
                issuer=self._issuer,
            )
        except jwt.ExpiredSignatureError as exc:
            raise Unauthorized("Subscription token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise Unauthorized(f"Invalid subscription token: {exc}") from exc
        return SubscriptionClaims(
            channel=claims["channel"], topics=claims["topics"], subject=claims["sub"]
        )
