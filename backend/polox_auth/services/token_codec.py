"""Signed, time-limited access and refresh tokens."""

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

from polox_auth.core.config import MIN_SECRET_LENGTH, AuthConfigurationError, Settings
from polox_auth.models.base import utc_now
from polox_auth.services.errors import (
    ExpiredTokenError,
    InvalidSignatureError,
    MalformedTokenError,
    TokenAudienceMismatchError,
    TokenIssuerMismatchError,
)

ACCESS = "access"
REFRESH = "refresh"

REQUIRED_CLAIMS = ["sub", "iss", "aud", "jti", "iat", "exp", "typ"]


@dataclass(frozen=True)
class IssuedToken:
    token: str
    jti: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    subject_id: str
    issuer: str
    audience: str
    jti: str
    issued_at: datetime
    expires_at: datetime
    token_type: str


class TokenCodec:
    """Issues and verifies HS256 tokens carrying only registered claims.

    Access and refresh tokens are signed with different secrets and tagged
    with a ``typ`` claim, so one can never be replayed as the other. Expiry
    is checked against the injected clock with no leeway: a token whose
    ``exp`` equals the current second is already expired.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        issuer: str,
        audience: str,
        access_ttl: int,
        refresh_ttl: int,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = utc_now,
    ):
        for name, secret in (("access", access_secret), ("refresh", refresh_secret)):
            if not secret or len(secret) < MIN_SECRET_LENGTH:
                raise AuthConfigurationError(
                    f"The {name} token secret must be at least {MIN_SECRET_LENGTH} characters"
                )
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], datetime] = utc_now
    ) -> "TokenCodec":
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.effective_refresh_token_secret,
            issuer=settings.access_token_issuer,
            audience=settings.access_token_audience,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    def issue(self, subject_id: object, *, token_type: str, ttl: int | None = None) -> IssuedToken:
        """Sign a new token of ``token_type`` for ``subject_id``."""
        now = int(self._clock().timestamp())
        exp = now + (ttl if ttl is not None else self._ttls[token_type])
        jti = secrets.token_hex(16)
        payload = {
            "sub": str(subject_id),
            "iss": self.issuer,
            "aud": self.audience,
            "jti": jti,
            "iat": now,
            "exp": exp,
            "typ": token_type,
        }
        token = jwt.encode(payload, self._secrets[token_type], algorithm=self.algorithm)
        return IssuedToken(
            token=str(token), jti=jti, expires_at=datetime.fromtimestamp(exp, tz=UTC)
        )

    def issue_access_token(self, subject_id: object) -> IssuedToken:
        return self.issue(subject_id, token_type=ACCESS)

    def issue_refresh_token(self, subject_id: object) -> IssuedToken:
        return self.issue(subject_id, token_type=REFRESH)

    def verify(self, token: str, *, token_type: str) -> TokenClaims:
        """Verify signature, issuer, audience, type and expiry of ``token``."""
        try:
            payload = jwt.decode(
                token,
                self._secrets[token_type],
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={
                    # Expiry is checked below against the injected clock
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise InvalidSignatureError() from e
        except jwt.InvalidIssuerError as e:
            raise TokenIssuerMismatchError() from e
        except jwt.InvalidAudienceError as e:
            raise TokenAudienceMismatchError() from e
        except jwt.PyJWTError as e:
            raise MalformedTokenError() from e

        if payload["typ"] != token_type:
            raise MalformedTokenError()
        try:
            exp = int(payload["exp"])
            iat = int(payload["iat"])
        except (TypeError, ValueError) as e:
            raise MalformedTokenError() from e

        if self._clock().timestamp() >= exp:
            raise ExpiredTokenError()

        return TokenClaims(
            subject_id=str(payload["sub"]),
            issuer=payload["iss"],
            audience=payload["aud"],
            jti=str(payload["jti"]),
            issued_at=datetime.fromtimestamp(iat, tz=UTC),
            expires_at=datetime.fromtimestamp(exp, tz=UTC),
            token_type=token_type,
        )

    def verify_access_token(self, token: str) -> TokenClaims:
        return self.verify(token, token_type=ACCESS)

    def verify_refresh_token(self, token: str) -> TokenClaims:
        return self.verify(token, token_type=REFRESH)
