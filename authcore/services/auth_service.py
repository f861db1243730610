"""Session orchestrator - registration, login, MFA step-up, refresh and password flows"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, List, Optional

from authcore.config import Settings
from authcore.core.clock import Clock
from authcore.core.exceptions import (
    AccountLockedError,
    AccountNotActiveError,
    DuplicateEmailError,
    InvalidCredentialsError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
    WeakPasswordError,
)
from authcore.core.metrics import LOGIN_ATTEMPTS
from authcore.core.security import (
    BcryptPasswordHasher,
    credential_stamp,
    is_strong_password,
    is_valid_email,
    mask_email,
    normalize_email,
)
from authcore.core.tokens import EmailVerification, MFAChallenge, PasswordReset, TokenCodec
from authcore.models.account import Account
from authcore.models.security import REVOKE_PASSWORD_CHANGED, REVOKE_PASSWORD_RESET
from authcore.services.audit_service import audit_service
from authcore.services.credential_store import CredentialStore
from authcore.services.fast_store import FastStore
from authcore.services.mfa_service import MFAService
from authcore.services.notifier import Notifier
from authcore.services.rate_limiter import LockoutService
from authcore.services.token_service import RefreshTokenLedger, SessionView, TokenPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    """Either a token pair, or an MFA challenge to complete first."""

    requires_mfa: bool
    tokens: Optional[TokenPair] = None
    mfa_token: Optional[str] = None
    account: Optional[Account] = None


class AuthService:
    """
    Drives a login attempt through
    Unauthenticated -> CredentialsChecked -> (MFARequired -> MFAVerified) -> Authenticated.

    Holds references to its collaborators; none of them refer back here.
    One instance per request, bound to that request's database session.
    """

    def __init__(
        self,
        *,
        store: CredentialStore,
        ledger: RefreshTokenLedger,
        codec: TokenCodec,
        lockout: LockoutService,
        mfa: MFAService,
        fast_store: FastStore,
        hasher: BcryptPasswordHasher,
        notifier: Notifier,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.codec = codec
        self.lockout = lockout
        self.mfa = mfa
        self.fast_store = fast_store
        self.hasher = hasher
        self.notifier = notifier
        self.clock = clock
        self.settings = settings

    def _audit(self, account_id: Optional[int], action: str, ip: Optional[str] = None, **details: Any) -> None:
        audit_service.record(self.store.db, action, account_id=account_id, ip=ip, **details)

    def _check_password_policy(self, password: str) -> None:
        if not is_strong_password(password, self.settings.PASSWORD_MIN_LENGTH):
            raise WeakPasswordError(self.settings.PASSWORD_MIN_LENGTH)

    # Registration

    def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Account:
        """
        Create a pending account and send the verification link.

        No session is created; the account must verify its email first.

        Raises:
            ValidationError: Bad email format
            WeakPasswordError: Password fails the strength policy
            DuplicateEmailError: Email already registered
        """
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("Invalid email address")
        self._check_password_policy(password)
        if self.store.get_account_by_email(email) is not None:
            raise DuplicateEmailError()

        account = self.store.create_account(
            email=email,
            password_hash=self.hasher.hash(password),
            first_name=(first_name or "").strip() or None,
            last_name=(last_name or "").strip() or None,
            status="pending",
            password_changed_at=self.clock.now(),
        )
        self._audit(account.id, "account_registered", ip)
        self.store.commit()
        logger.info("Registered account %s (%s)", account.id, mask_email(email))

        self._send_verification(account)
        return account

    def _send_verification(self, account: Account) -> None:
        ttl = self.settings.EMAIL_VERIFICATION_EXPIRE_HOURS * 3600
        token_id = secrets.token_urlsafe(32)
        self.fast_store.set(
            f"email_verification:{token_id}",
            json.dumps({"account_id": account.id, "email": account.email}),
            ttl,
        )
        token = self.codec.issue_purpose_token(
            EmailVerification(account_id=account.id, email=account.email, token_id=token_id),
            ttl,
        )
        self.notifier.send_verification(account.email, token)

    def resend_verification(self, email: str) -> None:
        """Re-send the verification link. Silent for unknown or already verified emails."""
        account = self.store.get_account_by_email(normalize_email(email))
        if account is None or account.status != "pending":
            return
        try:
            self._send_verification(account)
        except StoreUnavailableError:
            logger.error("Could not queue verification for account %s", account.id)

    def verify_email(self, token: str, ip: Optional[str] = None) -> Account:
        """Consume a single-use verification token and activate the pending account."""
        try:
            payload = self.codec.verify_purpose_token(token, EmailVerification)
        except (TokenInvalidError, TokenExpiredError):
            raise ValidationError("Invalid or expired verification token")

        pending = self.fast_store.pop(f"email_verification:{payload.token_id}")
        if pending is None:
            raise ValidationError("Invalid or expired verification token")

        account = self.store.get_account(payload.account_id)
        if account is None or account.email != payload.email:
            raise ValidationError("Invalid or expired verification token")

        fields = {"email_verified_at": self.clock.now()}
        if account.status == "pending":
            fields["status"] = "active"
        self.store.update_account(account, **fields)
        self._audit(account.id, "email_verified", ip)
        self.store.commit()
        logger.info("Email verified for account %s", account.id)
        return account

    # Login

    def login(self, email: str, password: str, ip: Optional[str] = None) -> LoginResult:
        """
        Check credentials and either issue a session or an MFA challenge.

        Every credential failure renders the same message; only the lock is
        disclosed.

        Raises:
            InvalidCredentialsError, AccountLockedError, AccountNotActiveError,
            StoreUnavailableError
        """
        email = normalize_email(email)
        account = self.store.get_account_by_email(email)
        if account is None:
            self.hasher.burn(password or "")
            LOGIN_ATTEMPTS.labels("invalid").inc()
            logger.warning("Failed login for unknown email %s from %s", mask_email(email), ip)
            raise InvalidCredentialsError()

        self._ensure_not_locked(account, ip)

        if not account.is_active:
            LOGIN_ATTEMPTS.labels("inactive").inc()
            raise AccountNotActiveError(account.status)

        digest = account.password_hash
        if not self.hasher.verify(password or "", digest):
            self._record_failure(account, ip, "login_failed")
            raise InvalidCredentialsError()

        if account.mfa_enabled:
            mfa_token = self._issue_mfa_challenge(account, digest)
            self._audit(account.id, "login_mfa_challenge", ip)
            self.store.commit()
            LOGIN_ATTEMPTS.labels("mfa_required").inc()
            return LoginResult(requires_mfa=True, mfa_token=mfa_token, account=account)

        return self._complete_login(account, digest, ip, method="password")

    def _issue_mfa_challenge(self, account: Account, digest: str) -> str:
        ttl = self.settings.MFA_TOKEN_EXPIRE_MINUTES * 60
        token_id = secrets.token_urlsafe(16)
        self.fast_store.set(f"mfa_challenge:{token_id}", str(account.id), ttl)
        return self.codec.issue_purpose_token(
            MFAChallenge(account_id=account.id, token_id=token_id, credential_stamp=credential_stamp(digest)),
            ttl,
        )

    def complete_mfa(self, mfa_token: str, code: str, ip: Optional[str] = None) -> LoginResult:
        """
        Finish a login that was paused for MFA.

        The challenge is bound to the password digest verified in login() and
        can be completed once. A wrong code leaves it usable until it expires.
        """
        payload = self.codec.verify_purpose_token(mfa_token, MFAChallenge)
        challenge_key = f"mfa_challenge:{payload.token_id}"
        account = self.store.get_account(payload.account_id)
        if account is None:
            raise InvalidCredentialsError()

        self._ensure_not_locked(account, ip)
        if not account.is_active:
            raise AccountNotActiveError(account.status)

        digest = account.password_hash
        if credential_stamp(digest) != payload.credential_stamp:
            self.fast_store.delete(challenge_key)
            logger.warning("MFA challenge for account %s predates a password change", account.id)
            raise InvalidCredentialsError()

        if not self.fast_store.exists(challenge_key):
            raise InvalidCredentialsError()
        if not self.mfa.verify(account.id, code):
            self._record_failure(account, ip, "mfa_failed")
            raise InvalidCredentialsError()
        if self.fast_store.pop(challenge_key) is None:
            # A concurrent completion consumed the challenge first.
            raise InvalidCredentialsError()

        return self._complete_login(account, digest, ip, method="mfa")

    def _ensure_not_locked(self, account: Account, ip: Optional[str]) -> None:
        if self.lockout.is_locked(account.id):
            LOGIN_ATTEMPTS.labels("locked").inc()
            logger.warning("Login blocked for locked account %s from %s", account.id, ip)
            raise AccountLockedError(self.lockout.retry_after(account.id))

    def _record_failure(self, account: Account, ip: Optional[str], action: str) -> None:
        attempts = self.lockout.record_failure(account.id)
        self._audit(account.id, action, ip, attempts=attempts)
        if attempts == self.lockout.max_attempts:
            self._audit(account.id, "account_locked", ip)
        self.store.commit()
        LOGIN_ATTEMPTS.labels("invalid").inc()
        logger.warning("Failed %s for account %s from %s (%d attempts)", action, account.id, ip, attempts)

    def _complete_login(self, account: Account, digest: str, ip: Optional[str], method: str) -> LoginResult:
        # A password change that landed after verification invalidates this login.
        self.store.reload_account(account)
        if account.password_hash != digest:
            logger.warning("Credentials changed during login for account %s", account.id)
            raise InvalidCredentialsError()
        if not account.is_active:
            raise AccountNotActiveError(account.status)

        self.lockout.clear(account.id)
        tokens = self.ledger.issue(account)
        self.store.update_account(
            account,
            last_login=self.clock.now(),
            last_login_ip=ip,
            login_count=(account.login_count or 0) + 1,
        )
        self._audit(account.id, "login_success", ip, method=method, session_id=tokens.session_id)
        self.store.commit()
        LOGIN_ATTEMPTS.labels("success").inc()
        logger.info("Account %s logged in (%s)", account.id, method)
        return LoginResult(requires_mfa=False, tokens=tokens, account=account)

    # Sessions

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. ReuseDetectedError means every session was revoked."""
        _, pair = self.ledger.rotate(refresh_token)
        return pair

    def logout(self, refresh_token: str, ip: Optional[str] = None) -> None:
        record = self.ledger.revoke(refresh_token)
        if record is not None:
            self._audit(record.account_id, "logout", ip, session_id=record.family_id)
            self.store.commit()

    def list_sessions(self, account_id: int, current_session_id: Optional[str] = None) -> List[SessionView]:
        return self.ledger.list_sessions(account_id, current_session_id)

    def revoke_session(self, account_id: int, session_id: str, ip: Optional[str] = None) -> None:
        self.ledger.revoke_session(account_id, session_id)
        self._audit(account_id, "session_revoked", ip, session_id=session_id)
        self.store.commit()
        logger.info("Session %s revoked by account %s", session_id[:8], account_id)

    # Passwords

    def change_password(
        self,
        account_id: int,
        current_password: str,
        new_password: str,
        ip: Optional[str] = None,
    ) -> None:
        account = self.store.get_account(account_id)
        if account is None:
            raise InvalidCredentialsError()
        self._check_current_password(account, current_password, ip, "password_change_failed")
        self._check_password_policy(new_password)
        if current_password == new_password:
            raise ValidationError("New password must be different from the current password")

        self._set_password(account, new_password, REVOKE_PASSWORD_CHANGED, "password_changed", ip)

    def _check_current_password(self, account: Account, password: str, ip: Optional[str], action: str) -> None:
        """Re-authentication inside a session; wrong guesses count toward the lockout."""
        self._ensure_not_locked(account, ip)
        if not self.hasher.verify(password or "", account.password_hash):
            self._record_failure(account, ip, action)
            raise ValidationError("Current password is incorrect")

    def disable_mfa(self, account_id: int, password: str, ip: Optional[str] = None) -> None:
        account = self.store.get_account(account_id)
        if account is None:
            raise InvalidCredentialsError()
        self._check_current_password(account, password, ip, "mfa_disable_failed")
        self.mfa.disable(account.id)

    def request_password_reset(self, email: str, ip: Optional[str] = None) -> None:
        """Send a reset link if the account exists. Looks the same to the caller either way."""
        email = normalize_email(email)
        account = self.store.get_account_by_email(email)
        if account is None or account.status in ("suspended", "banned"):
            logger.info("Password reset requested for unknown or blocked email %s", mask_email(email))
            return

        ttl = self.settings.PASSWORD_RESET_EXPIRE_MINUTES * 60
        token_id = secrets.token_urlsafe(32)
        try:
            self.fast_store.set(f"password_reset:{token_id}", json.dumps({"account_id": account.id}), ttl)
        except StoreUnavailableError:
            # Answering differently for known emails would leak which ones exist.
            logger.error("Could not store reset token for account %s", account.id)
            return

        token = self.codec.issue_purpose_token(PasswordReset(account_id=account.id, token_id=token_id), ttl)
        self.notifier.send_reset(account.email, token)
        self._audit(account.id, "password_reset_requested", ip)
        self.store.commit()

    def reset_password(self, token: str, new_password: str, ip: Optional[str] = None) -> None:
        try:
            payload = self.codec.verify_purpose_token(token, PasswordReset)
        except (TokenInvalidError, TokenExpiredError):
            raise ValidationError("Invalid or expired reset token")
        self._check_password_policy(new_password)

        if self.fast_store.pop(f"password_reset:{payload.token_id}") is None:
            raise ValidationError("Invalid or expired reset token")
        account = self.store.get_account(payload.account_id)
        if account is None:
            raise ValidationError("Invalid or expired reset token")

        self._set_password(account, new_password, REVOKE_PASSWORD_RESET, "password_reset", ip)
        self.lockout.clear(account.id)

    def _set_password(self, account: Account, new_password: str, reason: str, action: str, ip: Optional[str]) -> None:
        self.store.update_account(
            account,
            password_hash=self.hasher.hash(new_password),
            password_changed_at=self.clock.now(),
        )
        revoked = self.ledger.revoke_all(account.id, reason)
        self._audit(account.id, action, ip, revoked_sessions=revoked)
        self.store.commit()
        logger.info("Password updated for account %s (%s); %d refresh tokens revoked", account.id, action, revoked)
