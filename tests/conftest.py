import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DB_INIT_MODE", "create_all")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from b2b_starter.core.database import Base, enable_sqlite_foreign_keys
from b2b_starter.core.security import Argon2Params, PasswordHasher, PasswordPolicy
from b2b_starter.core.tokens import TokenManager, generate_signing_keys
from b2b_starter.services.audit_log import SqlAuditLog
from b2b_starter.services.auth_service import AuthConfig, AuthService
from b2b_starter.services.rate_limiter import rate_limiter
from b2b_starter.services.refresh_token_store import SqlRefreshTokenStore
from b2b_starter.services.user_store import SqlUserStore

# Cheap Argon2 cost so the suite does not spend its time in the KDF.
FAST_ARGON2 = Argon2Params(memory_kib=1024, iterations=1, parallelism=1)
PASSWORD = "Correct-horse1"
ISSUER = "go-b2b-starter"
AUDIENCE = "go-b2b-api"


@pytest.fixture(scope="session")
def signing_keys():
    return generate_signing_keys()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


@pytest.fixture
def hasher():
    return PasswordHasher(FAST_ARGON2)


@pytest.fixture
def token_manager(signing_keys):
    return TokenManager(signing_keys, issuer=ISSUER, audience=AUDIENCE)


@pytest.fixture
def auth_service(session_factory, hasher, token_manager):
    return AuthService(
        users=SqlUserStore(session_factory),
        refresh_tokens=SqlRefreshTokenStore(session_factory),
        hasher=hasher,
        policy=PasswordPolicy(),
        token_manager=token_manager,
        config=AuthConfig(),
        audit=SqlAuditLog(session_factory),
    )


@pytest.fixture
def active_user(auth_service):
    user = auth_service.register("alice@example.com", PASSWORD, "Alice")
    return auth_service.verify_email(user.id)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()
