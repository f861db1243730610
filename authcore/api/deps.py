"""API dependencies - service assembly and authentication"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.clock import Clock, system_clock
from authcore.core.database import get_db
from authcore.core.exceptions import AccountNotActiveError, AuthenticationError
from authcore.core.security import BcryptPasswordHasher, Signer
from authcore.core.tokens import AccessClaims, TokenCodec
from authcore.models.account import Account
from authcore.services.auth_service import AuthService
from authcore.services.credential_store import CredentialStore
from authcore.services.fast_store import FastStore, RedisFastStore
from authcore.services.mfa_service import MFAService
from authcore.services.notifier import LogNotifier, Notifier
from authcore.services.rate_limiter import LockoutService, RequestThrottle
from authcore.services.token_service import RefreshTokenLedger

# HTTP Bearer token scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)


def get_clock() -> Clock:
    return system_clock


@lru_cache()
def get_signer() -> Signer:
    return Signer(settings.SECRET_KEY, settings.ALGORITHM)


@lru_cache()
def get_hasher() -> BcryptPasswordHasher:
    return BcryptPasswordHasher(rounds=settings.BCRYPT_ROUNDS)


@lru_cache()
def get_fast_store() -> FastStore:
    return RedisFastStore.from_url(
        settings.REDIS_URL,
        key_prefix=settings.REDIS_KEY_PREFIX,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )


@lru_cache()
def get_notifier() -> Notifier:
    return LogNotifier(settings.APP_URL)


def get_codec(
    signer: Signer = Depends(get_signer),
    clock: Clock = Depends(get_clock),
) -> TokenCodec:
    return TokenCodec(signer, clock, access_ttl_seconds=settings.access_token_ttl_seconds)


def get_credential_store(db: Session = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


def get_lockout(fast_store: FastStore = Depends(get_fast_store)) -> LockoutService:
    return LockoutService(
        fast_store,
        max_attempts=settings.MAX_FAILED_LOGIN_ATTEMPTS,
        window_seconds=settings.FAILED_LOGIN_WINDOW_MINUTES * 60,
        lockout_seconds=settings.LOCKOUT_DURATION_MINUTES * 60,
    )


def get_throttle(fast_store: FastStore = Depends(get_fast_store)) -> RequestThrottle:
    return RequestThrottle(fast_store)


def get_mfa_service(
    store: CredentialStore = Depends(get_credential_store),
    fast_store: FastStore = Depends(get_fast_store),
    hasher: BcryptPasswordHasher = Depends(get_hasher),
    clock: Clock = Depends(get_clock),
) -> MFAService:
    return MFAService(
        store,
        fast_store,
        hasher,
        clock,
        issuer=settings.MFA_ISSUER,
        valid_window=settings.MFA_VALID_WINDOW,
        backup_code_count=settings.MFA_BACKUP_CODE_COUNT,
    )


def get_ledger(
    store: CredentialStore = Depends(get_credential_store),
    codec: TokenCodec = Depends(get_codec),
    clock: Clock = Depends(get_clock),
) -> RefreshTokenLedger:
    return RefreshTokenLedger(
        store,
        codec,
        clock,
        refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
        reuse_grace_seconds=settings.REFRESH_REUSE_GRACE_SECONDS,
    )


def get_auth_service(
    store: CredentialStore = Depends(get_credential_store),
    ledger: RefreshTokenLedger = Depends(get_ledger),
    codec: TokenCodec = Depends(get_codec),
    lockout: LockoutService = Depends(get_lockout),
    mfa: MFAService = Depends(get_mfa_service),
    fast_store: FastStore = Depends(get_fast_store),
    hasher: BcryptPasswordHasher = Depends(get_hasher),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> AuthService:
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


def get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def get_access_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    codec: TokenCodec = Depends(get_codec),
) -> AccessClaims:
    """
    Verify the bearer access token

    Raises:
        AuthenticationError: If the header is missing or the token is invalid or expired
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")
    return codec.verify_access_token(credentials.credentials)


def get_current_account(
    claims: AccessClaims = Depends(get_access_claims),
    store: CredentialStore = Depends(get_credential_store),
) -> Account:
    """
    Get the account behind the access token

    Raises:
        AuthenticationError: If the account no longer exists
        AccountNotActiveError: If the account was suspended after the token was issued
    """
    account = store.get_account(claims.account_id)
    if account is None:
        raise AuthenticationError("Account not found")
    if not account.is_active:
        raise AccountNotActiveError(account.status)
    return account
