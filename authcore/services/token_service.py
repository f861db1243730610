"""Refresh token ledger: issuance, rotation with reuse detection, revocation."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from authcore.core.clock import Clock, ensure_utc
from authcore.core.exceptions import (
    AccountNotActiveError,
    RefreshTokenNotFoundError,
    ResourceNotFoundError,
    ReuseDetectedError,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError,
)
from authcore.core.metrics import REFRESH_ROTATIONS
from authcore.core.security import generate_opaque_token
from authcore.core.tokens import TokenCodec
from authcore.models.account import Account
from authcore.models.security import (
    REVOKE_LOGOUT,
    REVOKE_REUSE_CASCADE,
    REVOKE_REUSE_DETECTED,
    REVOKE_SESSION,
    RefreshToken,
)
from authcore.services.audit_service import audit_service
from authcore.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime
    session_id: str


@dataclass(frozen=True)
class SessionView:
    id: str
    created_at: datetime
    last_used: datetime
    expires_at: datetime
    current: bool = False


class RefreshTokenLedger:
    """
    Manage refresh-token families.

    A family is one device session: the chain of rows produced by rotating
    the refresh token issued at login. Each row can be used exactly once;
    presenting a used row again is treated as theft unless it happens inside
    the grace window, where it is a client retry and gets the same successor.
    """

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        clock: Clock,
        *,
        refresh_ttl_seconds: int = 7 * 24 * 3600,
        reuse_grace_seconds: int = 60,
    ) -> None:
        self.store = store
        self.codec = codec
        self.clock = clock
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self.reuse_grace = timedelta(seconds=reuse_grace_seconds)

    def _new_record(self, account_id: int, family_id: str, now: datetime) -> RefreshToken:
        return self.store.create_refresh_record(
            account_id=account_id,
            family_id=family_id,
            token=generate_opaque_token(),
            issued_at=now,
            expires_at=now + self.refresh_ttl,
        )

    def pair_for(self, account: Account, record: RefreshToken) -> TokenPair:
        """Build the client-facing pair for a row. Same row, same strings."""
        issued_at = ensure_utc(record.created_at)
        expires_at = ensure_utc(record.expires_at)
        return TokenPair(
            access_token=self.codec.issue_access_token(
                account.id, account.role, session_id=record.family_id, issued_at=issued_at
            ),
            refresh_token=self.codec.issue_refresh_token(account.id, record.token, issued_at, expires_at),
            expires_in=self.codec.access_ttl_seconds,
            refresh_expires_at=expires_at,
            session_id=record.family_id,
        )

    def issue(self, account: Account) -> TokenPair:
        """Start a new family. Joins the caller's unit of work; caller commits."""
        record = self._new_record(account.id, secrets.token_urlsafe(24), self.clock.now())
        return self.pair_for(account, record)

    def rotate(self, presented: str) -> Tuple[Account, TokenPair]:
        """
        Exchange a refresh token for its successor.

        Decision table, in order: missing row, revoked row, used row outside
        the grace window (reuse: revoke everything), used row inside the
        window (replay the successor), expired row, then rotate.

        Raises:
            TokenInvalidError, RefreshTokenNotFoundError, TokenRevokedError,
            ReuseDetectedError, TokenExpiredError, AccountNotActiveError
        """
        claims = self.codec.verify_refresh_token(presented)

        # Second pass only happens when a concurrent rotation won the CAS.
        for _ in range(2):
            record = self.store.find_refresh_record(claims.value)
            if record is None or record.account_id != claims.account_id:
                REFRESH_ROTATIONS.labels("not_found").inc()
                raise RefreshTokenNotFoundError()

            now = self.clock.now()
            account = self._account_for(record)

            if record.revoked_at is not None:
                if record.revoke_reason == REVOKE_REUSE_DETECTED:
                    REFRESH_ROTATIONS.labels("reuse_detected").inc()
                    raise ReuseDetectedError()
                REFRESH_ROTATIONS.labels("revoked").inc()
                raise TokenRevokedError()

            if record.used_at is not None:
                if now > ensure_utc(record.used_at) + self.reuse_grace:
                    self._handle_reuse(record, now)
                    REFRESH_ROTATIONS.labels("reuse_detected").inc()
                    raise ReuseDetectedError()
                REFRESH_ROTATIONS.labels("replayed").inc()
                return account, self._replay(account, record)

            if ensure_utc(record.expires_at) <= now:
                REFRESH_ROTATIONS.labels("expired").inc()
                raise TokenExpiredError("Refresh token expired")

            if self.store.claim_refresh_record(record.id, now):
                successor = self._new_record(account.id, record.family_id, now)
                self.store.update_refresh_record(record, used_at=now, replaced_by_id=successor.id)
                self.store.commit()
                REFRESH_ROTATIONS.labels("rotated").inc()
                return account, self.pair_for(account, successor)

            # Lost the race; re-read the row and decide again.
            self.store.expire(record)

        raise TokenRevokedError()

    def _account_for(self, record: RefreshToken) -> Account:
        account = self.store.get_account(record.account_id)
        if account is None:
            raise RefreshTokenNotFoundError()
        if not account.is_active:
            raise AccountNotActiveError(account.status)
        return account

    def _replay(self, account: Account, record: RefreshToken) -> TokenPair:
        if record.replaced_by_id is None:
            raise TokenRevokedError()
        successor = self.store.get_refresh_record(record.replaced_by_id)
        if successor is None or successor.revoked_at is not None:
            raise TokenRevokedError()
        logger.info("Refresh retry inside grace window for account %s; replaying successor", account.id)
        return self.pair_for(account, successor)

    def _handle_reuse(self, record: RefreshToken, now: datetime) -> None:
        logger.warning(
            "Refresh token reuse detected for account %s (family %s); revoking all sessions",
            record.account_id,
            record.family_id[:8],
        )
        self.store.revoke_refresh_records(
            record.account_id, now, REVOKE_REUSE_DETECTED, record_id=record.id
        )
        cascaded = self.store.revoke_all_for_account(record.account_id, now, REVOKE_REUSE_CASCADE)
        audit_service.record(
            self.store.db,
            "refresh_reuse_detected",
            account_id=record.account_id,
            session_id=record.family_id,
            revoked=cascaded + 1,
        )
        self.store.commit()

    def revoke(self, presented: str, reason: str = REVOKE_LOGOUT) -> Optional[RefreshToken]:
        """
        End the device session behind a refresh token.

        Revokes every row of the token's family, so presenting an already
        rotated token still signs out its successor. Idempotent; unknown
        tokens are ignored.
        """
        try:
            claims = self.codec.verify_refresh_token(presented)
        except TokenInvalidError:
            return None
        record = self.store.find_refresh_record(claims.value)
        if record is None or record.account_id != claims.account_id:
            return None
        if self.store.revoke_refresh_records(
            record.account_id, self.clock.now(), reason, family_id=record.family_id
        ):
            self.store.commit()
        return record

    def revoke_all(self, account_id: int, reason: str) -> int:
        """Revoke every row of an account. Joins the caller's unit of work."""
        return self.store.revoke_all_for_account(account_id, self.clock.now(), reason)

    def list_sessions(self, account_id: int, current_session_id: Optional[str] = None) -> List[SessionView]:
        now = self.clock.now()
        records = self.store.list_active_refresh_records(account_id, now)
        started = self.store.family_started_at(account_id, [r.family_id for r in records])
        return [
            SessionView(
                id=record.family_id,
                created_at=ensure_utc(started.get(record.family_id, record.created_at)),
                last_used=ensure_utc(record.created_at),
                expires_at=ensure_utc(record.expires_at),
                current=record.family_id == current_session_id,
            )
            for record in records
        ]

    def revoke_session(self, account_id: int, session_id: str) -> int:
        """Revoke one device session, only if it belongs to account_id."""
        active = {r.family_id for r in self.store.list_active_refresh_records(account_id, self.clock.now())}
        if session_id not in active:
            raise ResourceNotFoundError("Session")
        count = self.store.revoke_refresh_records(
            account_id, self.clock.now(), REVOKE_SESSION, family_id=session_id
        )
        self.store.commit()
        return count

    def purge(self, retention_seconds: int) -> int:
        """Delete expired rows and rows revoked longer ago than the retention period."""
        now = self.clock.now()
        count = self.store.purge_refresh_records(
            expired_before=now,
            revoked_before=now - timedelta(seconds=retention_seconds),
        )
        self.store.commit()
        if count:
            logger.info("Purged %d refresh token rows", count)
        return count
