import pytest

from b2b_starter.core.exceptions import PasswordHashDecodeError, PasswordPolicyError
from b2b_starter.core.security import Argon2Params, PasswordHasher, PasswordPolicy

FAST = Argon2Params(memory_kib=1024, iterations=1, parallelism=1)


def _with_params(encoded, segment):
    parts = encoded.split("$")
    parts[3] = segment
    return "$".join(parts)


def test_hash_round_trip():
    hasher = PasswordHasher(FAST)
    encoded = hasher.hash("Correct-horse1")
    assert encoded.startswith("$argon2id$v=19$m=1024,t=1,p=1$")
    assert hasher.verify("Correct-horse1", encoded)
    assert not hasher.verify("correct-horse1", encoded)


def test_hash_uses_fresh_salt():
    hasher = PasswordHasher(FAST)
    assert hasher.hash("same-password") != hasher.hash("same-password")


def test_verify_uses_parameters_from_hash():
    old = PasswordHasher(Argon2Params(memory_kib=2048, iterations=2, parallelism=1))
    encoded = old.hash("Correct-horse1")
    current = PasswordHasher(FAST)
    assert current.verify("Correct-horse1", encoded)
    assert current.needs_rehash(encoded)
    assert not old.needs_rehash(encoded)


def test_decode_reports_stored_parameters():
    encoded = PasswordHasher(FAST).hash("Correct-horse1")
    params = PasswordHasher.decode(encoded)
    assert (params.memory_cost, params.time_cost, params.parallelism) == (1024, 1, 1)
    assert params.salt_len == 16
    assert params.hash_len == 32


@pytest.mark.parametrize(
    "encoded",
    [
        "",
        "not-a-hash",
        "$argon2i$v=19$m=1024,t=1,p=1$c2FsdHNhbHRzYWx0$aGFzaGhhc2g",
        "$argon2id$v=16$m=1024,t=1,p=1$c2FsdHNhbHRzYWx0$aGFzaGhhc2g",
        "$argon2id$m=1024,t=1,p=1$c2FsdHNhbHRzYWx0$aGFzaGhhc2g",
        "$argon2id$v=19$m=abc,t=1,p=1$c2FsdHNhbHRzYWx0$aGFzaGhhc2g",
        "$argon2id$v=19$m=0,t=1,p=1$c2FsdHNhbHRzYWx0$aGFzaGhhc2g",
        "$argon2id$v=19$m=99999999999,t=1,p=1$c2FsdHNhbHRzYWx0$aGFzaGhhc2g",
        "$argon2id$v=19$m=1024,t=1,p=1$!!!!!!!!!!!!$aGFzaGhhc2g",
        "$argon2id$v=19$m=1024,t=1,p=1$c2FsdA$aGFzaGhhc2g",
        "$2b$12$KIXQJQ0Y7fW1cQ6Wc0u8IeV1yq1eQ8nS6y8bW0m8q9Vq1yq1eQ8nS",
        "$argon2id$v=19$m=1024,t=1,p=1$sälzsälzsälz$aGFzaGhhc2g",
    ],
)
def test_malformed_hash_raises_decode_error(encoded):
    with pytest.raises(PasswordHashDecodeError):
        PasswordHasher(FAST).verify("whatever", encoded)


@pytest.mark.parametrize(
    "segment",
    [
        "m=99999999999,t=1,p=1",
        "m=8388608,t=1,p=1",
        "m=1024,t=1000,p=1",
        "m=1024,t=1,p=4096",
    ],
)
def test_out_of_range_parameters_raise_decode_error(segment):
    hasher = PasswordHasher(FAST)
    encoded = _with_params(hasher.hash("Passw0rd!"), segment)
    with pytest.raises(PasswordHashDecodeError):
        hasher.verify("Passw0rd!", encoded)
    with pytest.raises(PasswordHashDecodeError):
        hasher.needs_rehash(encoded)


def test_policy_accepts_compliant_password():
    PasswordPolicy().validate("Correct-horse1")


@pytest.mark.parametrize(
    "password, reason",
    [
        ("Sh0rt", "at least 8 characters"),
        ("lowercase1", "uppercase"),
        ("UPPERCASE1", "lowercase"),
        ("NoDigitsHere", "digit"),
    ],
)
def test_policy_rejects_first_violated_rule(password, reason):
    with pytest.raises(PasswordPolicyError) as exc:
        PasswordPolicy().validate(password)
    assert reason in exc.value.reason
    assert exc.value.status_code == 422


def test_policy_special_character_rule():
    policy = PasswordPolicy(require_special=True)
    with pytest.raises(PasswordPolicyError):
        policy.validate("Correcthorse1")
    policy.validate("Correct-horse1")


def test_policy_counts_code_points():
    policy = PasswordPolicy(min_length=8, require_uppercase=False, require_digit=False)
    policy.validate("éééééééé")
