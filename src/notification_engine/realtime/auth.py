"""Handshake token validation."""

from __future__ import annotations

import logging

from joserfc import jwt
from joserfc.errors import (
    BadSignatureError,
    DecodeError,
    ExpiredTokenError,
    InvalidClaimError,
    MissingClaimError,
)
from joserfc.jwk import OctKey

from ..exceptions import AuthenticationError
from ..ports.realtime import ITokenAuthenticator

logger = logging.getLogger(__name__)


class JwtAuthenticator(ITokenAuthenticator):
    """
    Validates HS256 JWTs presented at socket handshake with joserfc.

    ``exp`` is required; the recipient id is read from ``recipient_claim``
    (``sub`` by default).
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithms: list[str] | None = None,
        recipient_claim: str = "sub",
    ) -> None:
        if not secret:
            raise ValueError("JWT secret is required")
        self._key = OctKey.import_key(secret)
        self._algorithms = algorithms or ["HS256"]
        self._recipient_claim = recipient_claim

    async def authenticate(self, token: str) -> str:
        if not token:
            raise AuthenticationError("missing token")
        try:
            decoded = jwt.decode(token, self._key, algorithms=self._algorithms)
            claims_registry = jwt.JWTClaimsRegistry(exp={"essential": True})
            claims_registry.validate(decoded.claims)
        except (DecodeError, BadSignatureError) as e:
            raise AuthenticationError(f"invalid token: {e}") from e
        except (ExpiredTokenError, InvalidClaimError, MissingClaimError) as e:
            raise AuthenticationError(f"rejected claims: {e}") from e
        except ValueError as e:
            raise AuthenticationError(str(e)) from e

        recipient_id = decoded.claims.get(self._recipient_claim)
        if not recipient_id:
            raise AuthenticationError(f"token has no {self._recipient_claim} claim")
        return str(recipient_id)
