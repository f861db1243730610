import os

# Settings are read at import time; point them at throwaway backends first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_INIT_MODE", "off")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from authcore.config import settings
from authcore.core.database import Base
from authcore.core.security import BcryptPasswordHasher, Signer
from authcore.core.tokens import TokenCodec
from authcore.services.auth_service import AuthService
from authcore.services.credential_store import CredentialStore
from authcore.services.fast_store import RedisFastStore
from authcore.services.mfa_service import MFAService
from authcore.services.rate_limiter import LockoutService
from authcore.services.token_service import RefreshTokenLedger

PASSWORD = "Str0ng!Passw0rd"
TEST_SECRET = "unit-test-signing-secret-0123456789abcdef"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)

    def now(self):
        return self.current

    def advance(self, seconds=0, **kwargs):
        self.current += timedelta(seconds=seconds, **kwargs)


class RecordingNotifier:
    def __init__(self):
        self.verifications = []
        self.resets = []

    def send_verification(self, email, token):
        self.verifications.append((email, token))

    def send_reset(self, email, token):
        self.resets.append((email, token))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def fast_store(redis_client):
    return RedisFastStore(redis_client, key_prefix="test:")


@pytest.fixture
def signer():
    return Signer(TEST_SECRET)


@pytest.fixture
def codec(signer, clock):
    return TokenCodec(signer, clock, access_ttl_seconds=900)


@pytest.fixture
def hasher():
    return BcryptPasswordHasher(rounds=4)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store(db):
    return CredentialStore(db)


@pytest.fixture
def ledger(store, codec, clock):
    return RefreshTokenLedger(
        store,
        codec,
        clock,
        refresh_ttl_seconds=7 * 24 * 3600,
        reuse_grace_seconds=60,
    )


@pytest.fixture
def lockout(fast_store):
    return LockoutService(fast_store, max_attempts=5, window_seconds=1800, lockout_seconds=1800)


@pytest.fixture
def mfa(store, fast_store, hasher, clock):
    return MFAService(store, fast_store, hasher, clock, issuer="authcore-test", valid_window=1, backup_code_count=4)


@pytest.fixture
def auth(store, ledger, codec, lockout, mfa, fast_store, hasher, notifier, clock):
    return AuthService(
        store=store,
        ledger=ledger,
        codec=codec,
        lockout=lockout,
        mfa=mfa,
        fast_store=fast_store,
        hasher=hasher,
        notifier=notifier,
        clock=clock,
        settings=settings,
    )


@pytest.fixture
def make_account(store, hasher):
    def _make(email="a1@example.com", password=PASSWORD, status="active", **fields):
        account = store.create_account(
            email=email,
            password_hash=hasher.hash(password),
            status=status,
            **fields,
        )
        store.commit()
        return account

    return _make


@pytest.fixture
def client(session_factory, clock, fast_store, hasher, notifier, signer):
    from fastapi.testclient import TestClient

    from authcore.api import deps
    from authcore.core.database import get_db
    from authcore.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_fast_store] = lambda: fast_store
    app.dependency_overrides[deps.get_hasher] = lambda: hasher
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_signer] = lambda: signer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
