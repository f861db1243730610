"""TOTP multi-factor authentication with single-use backup codes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import pyotp

from authcore.core.clock import Clock
from authcore.core.exceptions import ResourceNotFoundError, ValidationError
from authcore.core.security import BcryptPasswordHasher, generate_backup_code
from authcore.models.account import Account
from authcore.services.audit_service import audit_service
from authcore.services.credential_store import CredentialStore
from authcore.services.fast_store import FastStore

logger = logging.getLogger(__name__)

TOTP_INTERVAL = 30


@dataclass(frozen=True)
class MFASetup:
    secret: str
    provisioning_uri: str
    backup_codes: List[str]


class MFAService:
    """
    Enrolment and verification of authenticator-app codes.

    Enrolment is two-step: enable() stores a pending secret, confirm() turns
    MFA on once the user proves the authenticator produces valid codes.
    An accepted code is remembered until it can no longer be valid, so the
    same code cannot be replayed inside its window.
    """

    def __init__(
        self,
        store: CredentialStore,
        fast_store: FastStore,
        hasher: BcryptPasswordHasher,
        clock: Clock,
        *,
        issuer: str = "AuthCore",
        valid_window: int = 1,
        backup_code_count: int = 10,
    ) -> None:
        self.store = store
        self.fast_store = fast_store
        self.hasher = hasher
        self.clock = clock
        self.issuer = issuer
        self.valid_window = valid_window
        self.backup_code_count = backup_code_count

    def _account(self, account_id: int) -> Account:
        account = self.store.get_account(account_id)
        if account is None:
            raise ResourceNotFoundError("Account")
        return account

    def _audit(self, account: Account, action: str, **details: Any) -> None:
        audit_service.record(self.store.db, action, account_id=account.id, **details)

    def enable(self, account_id: int) -> MFASetup:
        """Generate a secret and backup codes. MFA stays off until confirm()."""
        account = self._account(account_id)
        if account.mfa_enabled:
            raise ValidationError("MFA is already enabled")

        secret = pyotp.random_base32()
        codes = [generate_backup_code() for _ in range(self.backup_code_count)]
        self.store.update_account(
            account,
            mfa_secret=secret,
            mfa_backup_codes=[self.hasher.hash(code) for code in codes],
        )
        self._audit(account, "mfa_setup_started")
        self.store.commit()

        uri = pyotp.TOTP(secret).provisioning_uri(name=account.email, issuer_name=self.issuer)
        return MFASetup(secret=secret, provisioning_uri=uri, backup_codes=codes)

    def confirm(self, account_id: int, code: str) -> bool:
        account = self._account(account_id)
        if account.mfa_enabled:
            raise ValidationError("MFA is already enabled")
        if not account.mfa_secret:
            raise ValidationError("MFA setup has not been started")
        if not self._verify_totp(account, (code or "").strip().replace(" ", "")):
            return False

        self.store.update_account(account, mfa_enabled=True)
        self._audit(account, "mfa_enabled")
        self.store.commit()
        logger.info("MFA enabled for account %s", account.id)
        return True

    def verify(self, account_id: int, code: str) -> bool:
        """Check a TOTP code, falling back to a backup code. Backup codes are consumed."""
        account = self.store.get_account(account_id)
        if account is None or not account.mfa_enabled or not account.mfa_secret:
            return False
        code = (code or "").strip().replace(" ", "")
        if not code:
            return False
        if self._verify_totp(account, code):
            return True
        return self._consume_backup_code(account, code)

    def disable(self, account_id: int) -> None:
        """Turn MFA off. The caller re-authenticates the account first."""
        account = self._account(account_id)
        if not account.mfa_enabled:
            raise ValidationError("MFA is not enabled")

        self.store.update_account(account, mfa_enabled=False, mfa_secret=None, mfa_backup_codes=None)
        self._audit(account, "mfa_disabled")
        self.store.commit()
        logger.info("MFA disabled for account %s", account.id)

    def status(self, account_id: int) -> Dict[str, Any]:
        account = self._account(account_id)
        return {
            "enabled": bool(account.mfa_enabled),
            "backup_codes_remaining": len(account.mfa_backup_codes or []) if account.mfa_enabled else 0,
        }

    def _verify_totp(self, account: Account, code: str) -> bool:
        if not code.isdigit():
            return False
        totp = pyotp.TOTP(account.mfa_secret)
        if not totp.verify(code, for_time=self.clock.now(), valid_window=self.valid_window):
            return False
        # Remember the code for as long as it could still verify.
        ttl = (2 * self.valid_window + 1) * TOTP_INTERVAL
        fresh = self.fast_store.set(f"mfa_used:{account.id}:{code}", "1", ttl, only_if_absent=True)
        if not fresh:
            logger.warning("Replayed TOTP code rejected for account %s", account.id)
        return fresh

    def _consume_backup_code(self, account: Account, code: str) -> bool:
        code = code.upper()
        remaining = list(account.mfa_backup_codes or [])
        for index, digest in enumerate(remaining):
            if self.hasher.verify(code, digest):
                del remaining[index]
                self.store.update_account(account, mfa_backup_codes=remaining)
                self._audit(account, "mfa_backup_code_used", remaining=len(remaining))
                self.store.commit()
                logger.info("Backup code used for account %s (%d left)", account.id, len(remaining))
                return True
        return False
