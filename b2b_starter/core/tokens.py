"""JWT access/refresh token issuance and verification"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import ExpiredSignatureError, JWTError, jwt

from b2b_starter.config import Settings
from b2b_starter.core.exceptions import InvalidTokenError, TokenExpiredError
from b2b_starter.core.timeutil import utcnow

logger = logging.getLogger(__name__)

_DECODE_OPTIONS = {
    "require_exp": True,
    "require_iat": True,
    "require_iss": True,
    "require_aud": True,
    "require_sub": True,
    "require_jti": True,
}


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class SigningKeys:
    """PEM-encoded key pair. Verify-only processes hold just the public key."""

    public_key_pem: str
    private_key_pem: Optional[str] = None

    @property
    def can_sign(self) -> bool:
        return self.private_key_pem is not None

    def verify_only(self) -> "SigningKeys":
        return SigningKeys(public_key_pem=self.public_key_pem)


def generate_signing_keys(key_size: int = 2048) -> SigningKeys:
    """Generate an ephemeral RSA key pair (non-production use)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return SigningKeys(public_key_pem=public_pem.decode("ascii"), private_key_pem=private_pem.decode("ascii"))


def load_signing_keys(private_key_path: str = "", public_key_path: str = "") -> SigningKeys:
    """
    Load the signing key pair from PEM files, or generate an ephemeral one

    Args:
        private_key_path: Path to PEM private key (empty to generate)
        public_key_path: Path to PEM public key (empty to generate)

    Returns:
        SigningKeys

    Raises:
        ValueError: If a configured key file cannot be read or parsed
    """
    if not (private_key_path and public_key_path):
        logger.warning("JWT key paths not configured; generating ephemeral RSA keys")
        return generate_signing_keys()

    try:
        private_data = Path(private_key_path).read_bytes()
        public_data = Path(public_key_path).read_bytes()
    except OSError as exc:
        raise ValueError(f"failed to read signing key: {exc}") from exc

    try:
        serialization.load_pem_private_key(private_data, password=None)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"failed to parse private key: {exc}") from exc
    try:
        serialization.load_pem_public_key(public_data)
    except ValueError as exc:
        raise ValueError(f"failed to parse public key: {exc}") from exc

    return SigningKeys(public_key_pem=public_data.decode("ascii"), private_key_pem=private_data.decode("ascii"))


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "Bearer"


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    email_verified: bool
    role: str
    token_type: TokenType
    token_id: str
    issued_at: datetime
    expires_at: datetime
    raw: Dict[str, Any] = field(default_factory=dict)


def hash_token(token: str) -> str:
    """SHA-256 fingerprint used to store and look up refresh tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenManager:
    """Sign and verify access/refresh JWTs with an asymmetric key pair."""

    def __init__(
        self,
        keys: SigningKeys,
        *,
        issuer: str,
        audience: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "RS256",
    ):
        self.keys = keys
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings, keys: Optional[SigningKeys] = None) -> "TokenManager":
        if keys is None:
            keys = load_signing_keys(settings.JWT_PRIVATE_KEY_PATH, settings.JWT_PUBLIC_KEY_PATH)
        return cls(
            keys,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            access_ttl=timedelta(minutes=settings.JWT_ACCESS_TOKEN_MINUTES),
            refresh_ttl=timedelta(days=settings.JWT_REFRESH_TOKEN_DAYS),
            algorithm=settings.JWT_ALGORITHM,
        )

    def generate_token_pair(self, user_id: int, email: str, email_verified: bool, role: str) -> TokenPair:
        """
        Issue an access token and a refresh token for a user

        Both share the user claims but carry their own token id, type tag and expiry.
        """
        if not self.keys.can_sign:
            raise RuntimeError("TokenManager holds no private key; it can only verify tokens")

        now = utcnow().replace(microsecond=0)
        access_exp = now + self.access_ttl
        refresh_exp = now + self.refresh_ttl

        access_token = self._sign(user_id, email, email_verified, role, TokenType.ACCESS, now, access_exp)
        refresh_token = self._sign(user_id, email, email_verified, role, TokenType.REFRESH, now, refresh_exp)

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=access_exp,
            refresh_expires_at=refresh_exp,
        )

    def verify_access_token(self, token: str) -> TokenClaims:
        return self._verify(token, TokenType.ACCESS)

    def verify_refresh_token(self, token: str) -> TokenClaims:
        return self._verify(token, TokenType.REFRESH)

    def _sign(
        self,
        user_id: int,
        email: str,
        email_verified: bool,
        role: str,
        token_type: TokenType,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        claims = {
            "iss": self.issuer,
            "aud": [self.audience],
            "sub": str(user_id),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": str(uuid.uuid4()),
            "user_id": user_id,
            "email": email,
            "email_verified": bool(email_verified),
            "role": role,
            "token_type": token_type.value,
        }
        return jwt.encode(claims, self.keys.private_key_pem, algorithm=self.algorithm)

    def _verify(self, token: str, expected_type: TokenType) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self.keys.public_key_pem,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options=_DECODE_OPTIONS,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

        if payload.get("token_type") != expected_type.value:
            raise InvalidTokenError()
        if payload.get("iss") != self.issuer:
            raise InvalidTokenError()
        audience = payload.get("aud")
        if isinstance(audience, str):
            audience = [audience]
        if not isinstance(audience, list) or self.audience not in audience:
            raise InvalidTokenError()

        user_id = payload.get("user_id")
        if not isinstance(user_id, int) or isinstance(user_id, bool) or payload.get("sub") != str(user_id):
            raise InvalidTokenError()
        email = payload.get("email")
        role = payload.get("role")
        if not isinstance(email, str) or not isinstance(role, str):
            raise InvalidTokenError()

        return TokenClaims(
            user_id=user_id,
            email=email,
            email_verified=bool(payload.get("email_verified")),
            role=role,
            token_type=expected_type,
            token_id=str(payload["jti"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            raw=payload,
        )
