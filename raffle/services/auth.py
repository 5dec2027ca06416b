from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from jose import JWTError, jwt

from ..config import AuthSettings
from ..errors import AuthError, ForbiddenError
from ..types import Principal

logger = logging.getLogger("raffle.auth")


class AuthService(Protocol):
    def verify(self, token: str) -> Principal:
        ...


class JwtAuthService:
    """Verifies bearer tokens issued by the account service."""

    def __init__(self, settings: AuthSettings) -> None:
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm

    def verify(self, token: str) -> Principal:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as exc:
            logger.info("Rejected bearer token: %s", exc)
            raise AuthError("invalid or expired token") from exc
        raw_id = payload.get("id", payload.get("sub"))
        try:
            user_id = int(raw_id)
        except (TypeError, ValueError):
            raise AuthError("token carries no user id")
        return Principal(
            user_id=user_id,
            role=str(payload.get("role", "user")),
            email=payload.get("email"),
            name=payload.get("name"),
        )

    def issue(self, user_id: int, role: str = "user", expires_in: int = 3600, **claims: Any) -> str:
        """Mint a token; used by tooling and tests, login itself lives elsewhere."""
        payload: Dict[str, Any] = {
            "id": user_id,
            "role": role,
            "exp": dt.datetime.utcnow() + dt.timedelta(seconds=expires_in),
        }
        payload.update(claims)
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)


def bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    header = headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(auth: AuthService, headers: Mapping[str, str], role: Optional[str] = None) -> Principal:
    token = bearer_token(headers)
    if token is None:
        raise AuthError("authorization token not provided")
    principal = auth.verify(token)
    if role is not None and principal.role != role:
        raise ForbiddenError(f"{role} role required")
    return principal
