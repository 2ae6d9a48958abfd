"""Security utilities - password policy and password hashing"""

import unicodedata
from dataclasses import dataclass
from typing import Optional

from argon2 import PasswordHasher as Argon2PasswordHasher, Parameters, Type, extract_parameters
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from argon2.low_level import ARGON2_VERSION

from b2b_starter.config import Settings
from b2b_starter.core.exceptions import PasswordHashDecodeError, PasswordPolicyError

SALT_LENGTH = 16
KEY_LENGTH = 32
MIN_SALT_LENGTH = 8
MIN_KEY_LENGTH = 4

# Upper bounds for parameters read back from stored hashes.
MAX_MEMORY_KIB = 4 * 1024 * 1024
MAX_ITERATIONS = 64
MAX_PARALLELISM = 255


@dataclass(frozen=True)
class PasswordPolicy:
    """Configurable password strength rules."""

    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordPolicy":
        return cls(
            min_length=settings.PASSWORD_MIN_LENGTH,
            require_uppercase=settings.PASSWORD_REQUIRE_UPPERCASE,
            require_lowercase=settings.PASSWORD_REQUIRE_LOWERCASE,
            require_digit=settings.PASSWORD_REQUIRE_DIGIT,
            require_special=settings.PASSWORD_REQUIRE_SPECIAL,
        )

    def validate(self, password: str) -> None:
        """
        Check a password against the policy.

        Args:
            password: Plain text password

        Raises:
            PasswordPolicyError: For the first rule the password violates
        """
        if len(password) < self.min_length:
            raise PasswordPolicyError(
                f"Password must be at least {self.min_length} characters"
            )

        has_upper = has_lower = has_digit = has_special = False
        for char in password:
            category = unicodedata.category(char)
            if char.isupper():
                has_upper = True
            elif char.islower():
                has_lower = True
            elif category == "Nd":
                has_digit = True
            elif category[0] in ("P", "S"):
                has_special = True

        if self.require_uppercase and not has_upper:
            raise PasswordPolicyError("Password must contain at least one uppercase letter")
        if self.require_lowercase and not has_lower:
            raise PasswordPolicyError("Password must contain at least one lowercase letter")
        if self.require_digit and not has_digit:
            raise PasswordPolicyError("Password must contain at least one digit")
        if self.require_special and not has_special:
            raise PasswordPolicyError("Password must contain at least one special character")


@dataclass(frozen=True)
class Argon2Params:
    memory_kib: int = 64 * 1024
    iterations: int = 3
    parallelism: int = 2


class PasswordHasher:
    """
    Argon2id password hashing with self-describing encoded output.

    Encoded form: ``$argon2id$v=19$m=<KiB>,t=<iterations>,p=<parallelism>$<salt>$<hash>``.
    Stored hashes are decoded strictly before use: only Argon2id version 19
    with cost parameters inside sane bounds is accepted.
    """

    def __init__(self, params: Optional[Argon2Params] = None):
        self.params = params or Argon2Params()
        self._argon2 = Argon2PasswordHasher(
            time_cost=self.params.iterations,
            memory_cost=self.params.memory_kib,
            parallelism=self.params.parallelism,
            hash_len=KEY_LENGTH,
            salt_len=SALT_LENGTH,
            type=Type.ID,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHasher":
        return cls(
            Argon2Params(
                memory_kib=settings.PASSWORD_HASH_MEMORY_KIB,
                iterations=settings.PASSWORD_HASH_ITERATIONS,
                parallelism=settings.PASSWORD_HASH_PARALLELISM,
            )
        )

    def hash(self, password: str) -> str:
        """
        Hash a password using Argon2id

        Args:
            password: Plain text password

        Returns:
            str: Encoded hash
        """
        return self._argon2.hash(password)

    def verify(self, password: str, encoded_hash: str) -> bool:
        """
        Verify a password against its encoded hash

        Args:
            password: Plain text password
            encoded_hash: Value produced by :meth:`hash`

        Returns:
            bool: True if password matches

        Raises:
            PasswordHashDecodeError: If the encoded hash cannot be decoded
        """
        self.decode(encoded_hash)
        try:
            return self._argon2.verify(encoded_hash, password)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError) as exc:
            raise PasswordHashDecodeError(f"undecodable hash: {exc}") from exc

    def needs_rehash(self, encoded_hash: str) -> bool:
        """Return True when a stored hash was made with other than the current parameters."""
        self.decode(encoded_hash)
        return self._argon2.check_needs_rehash(encoded_hash)

    @staticmethod
    def decode(encoded_hash: str) -> Parameters:
        """
        Parse and bound-check the parameters of an encoded Argon2id hash.

        Raises:
            PasswordHashDecodeError: Wrong format, algorithm or version, or
                parameters outside the accepted bounds
        """
        if not encoded_hash.isascii():
            raise PasswordHashDecodeError("invalid hash format")
        try:
            params = extract_parameters(encoded_hash)
        except InvalidHashError as exc:
            raise PasswordHashDecodeError("invalid hash format") from exc

        if params.type is not Type.ID:
            raise PasswordHashDecodeError("unsupported hash algorithm")
        if params.version != ARGON2_VERSION:
            raise PasswordHashDecodeError("incompatible argon2 version")
        if not (
            0 < params.memory_cost <= MAX_MEMORY_KIB
            and 0 < params.time_cost <= MAX_ITERATIONS
            and 0 < params.parallelism <= MAX_PARALLELISM
        ):
            raise PasswordHashDecodeError("invalid parameters")
        if params.salt_len < MIN_SALT_LENGTH or params.hash_len < MIN_KEY_LENGTH:
            raise PasswordHashDecodeError("salt or hash too short")
        return params
