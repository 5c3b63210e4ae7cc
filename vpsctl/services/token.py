"""Session token signing and verification (HS256 JWT)."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import PyJWTError

logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "HS256"

# Claims every token must carry for validate() to accept it
REQUIRED_CLAIMS = ["exp", "iat", "nbf", "iss", "sub"]


class TokenError(Exception):
    """Base session token error."""

    pass


class TokenValidationError(TokenError):
    """Token input data is invalid (e.g. empty username)."""

    pass


class TokenSigningError(TokenError):
    """Token could not be signed."""

    pass


class MalformedTokenError(TokenError):
    """Token is empty or structurally invalid."""

    pass


class TokenSignatureError(TokenError):
    """Signature mismatch or unexpected signing algorithm."""

    pass


class IssuerMismatchError(TokenError):
    """Issuer claim does not match the configured issuer."""

    pass


class TokenExpiredError(TokenError):
    """Token expiry is in the past."""

    pass


class TokenNotYetValidError(TokenError):
    """Token not-before is in the future."""

    pass


@dataclass
class TokenData:
    """Input for issuing a token."""

    user_id: int
    username: str
    jti: str = ""
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)


@dataclass
class Claims:
    """Verified payload of a session token."""

    user_id: int
    username: str
    jti: str
    roles: list[str]
    permissions: list[str]
    issuer: str
    subject: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def has_any_permission(self, *permissions: str) -> bool:
        return any(p in self.permissions for p in permissions)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Claims":
        return cls(
            user_id=int(payload.get("uid", 0)),
            username=str(payload.get("username", "")),
            jti=str(payload.get("jti", "")),
            roles=list(payload.get("roles") or []),
            permissions=list(payload.get("permissions") or []),
            issuer=str(payload.get("iss", "")),
            subject=str(payload.get("sub", "")),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
            not_before=datetime.fromtimestamp(payload["nbf"], tz=UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
        )


class TokenService:
    """Stateless issuer/verifier of session tokens.

    Holds only immutable configuration (secret, issuer, TTL), so a single
    instance is shared by all requests without locking.
    """

    def __init__(
        self,
        secret: str,
        issuer: str,
        ttl: timedelta,
        leeway: timedelta = timedelta(seconds=5),
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self._issuer = issuer
        self._ttl = ttl
        self._leeway = leeway

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, data: TokenData, now: datetime | None = None) -> str:
        """Sign a token for the given identity.

        ``now`` pins the issue time so callers can record the exact expiry.

        Raises:
            TokenValidationError: If the username is empty.
            TokenSigningError: If signing fails.
        """
        if not data.username:
            logger.warning("Token generation failed: empty username")
            raise TokenValidationError("Username cannot be empty")

        now = now or datetime.now(UTC)
        expires_at = now + self._ttl
        payload = {
            "username": data.username,
            "uid": data.user_id,
            "jti": data.jti,
            "roles": list(data.roles),
            "permissions": list(data.permissions),
            "iat": now,
            "nbf": now,
            "exp": expires_at,
            "iss": self._issuer,
            "sub": data.username,
        }
        try:
            token = jwt.encode(payload, self._secret, algorithm=SIGNING_ALGORITHM)
        except (PyJWTError, TypeError, ValueError) as e:
            logger.error(f"Failed to sign token for {data.username}: {e}")
            raise TokenSigningError("Failed to sign token") from e

        logger.debug(
            f"Token issued: user={data.username} uid={data.user_id} jti={data.jti} "
            f"roles={data.roles} permissions={len(data.permissions)} "
            f"expires_at={expires_at.isoformat()}"
        )
        return str(token)

    def validate(self, token: str) -> Claims:
        """Verify a token and return its claims.

        Only HS256 is accepted; a token declaring any other algorithm
        (including "none") fails as a signature error.
        """
        if not token:
            logger.warning("Token validation failed: empty token")
            raise MalformedTokenError("Token is empty")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[SIGNING_ALGORITHM],
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            logger.warning(f"Token expired: {e}")
            raise TokenExpiredError("Token has expired") from e
        except jwt.ImmatureSignatureError as e:
            logger.warning(f"Token not yet valid: {e}")
            raise TokenNotYetValidError("Token is not yet valid") from e
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as e:
            logger.warning(f"Token signature rejected: {e}")
            raise TokenSignatureError("Invalid token signature") from e
        except jwt.InvalidIssuerError as e:
            logger.warning(f"Token issuer mismatch: {e}")
            raise IssuerMismatchError("Token issuer mismatch") from e
        except jwt.MissingRequiredClaimError as e:
            logger.warning(f"Token missing claim: {e.claim}")
            if e.claim == "iss":
                raise IssuerMismatchError("Token issuer missing") from e
            raise MalformedTokenError(f"Token missing claim: {e.claim}") from e
        except PyJWTError as e:
            logger.warning(f"Token parse error: {e}")
            raise MalformedTokenError("Malformed token") from e

        try:
            claims = Claims.from_payload(payload)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Invalid token claims: {e}")
            raise MalformedTokenError("Invalid token claims") from e

        # The decoder applies leeway to expiry; expiry itself is enforced strictly
        if claims.expires_at < datetime.now(UTC):
            logger.warning(
                f"Token expired: user={claims.username} expired_at={claims.expires_at.isoformat()}"
            )
            raise TokenExpiredError("Token has expired")

        logger.debug(f"Token validated: user={claims.username} uid={claims.user_id} jti={claims.jti}")
        return claims
