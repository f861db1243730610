"""Credential store adapter - accounts and refresh-token rows in the relational store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from authcore.core.exceptions import DuplicateEmailError, StoreUnavailableError
from authcore.models.account import Account
from authcore.models.security import RefreshToken

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Thin adapter over a SQLAlchemy session.

    Methods flush but never commit; the caller owns the unit of work and
    calls commit() once per operation so related writes land together.
    Connection-level failures surface as StoreUnavailableError.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except (OperationalError, InterfaceError) as exc:
            logger.error("Database unavailable: %s", exc.__class__.__name__)
            self.db.rollback()
            raise StoreUnavailableError("database") from exc

    def commit(self) -> None:
        with self._guard():
            self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def expire(self, obj) -> None:
        """Drop cached attributes so the next read hits the database."""
        self.db.expire(obj)

    # Accounts

    def get_account(self, account_id: int) -> Optional[Account]:
        with self._guard():
            return self.db.query(Account).filter(Account.id == account_id).first()

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._guard():
            return self.db.query(Account).filter(Account.email == email).first()

    def create_account(self, **fields) -> Account:
        account = Account(**fields)
        with self._guard():
            try:
                self.db.add(account)
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                raise DuplicateEmailError()
        return account

    def update_account(self, account: Account, **fields) -> Account:
        with self._guard():
            for name, value in fields.items():
                setattr(account, name, value)
            self.db.flush()
        return account

    def reload_account(self, account: Account) -> Account:
        """Re-read the row, discarding anything cached in the session."""
        with self._guard():
            self.db.refresh(account)
        return account

    # Refresh records

    def create_refresh_record(
        self,
        *,
        account_id: int,
        family_id: str,
        token: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> RefreshToken:
        record = RefreshToken(
            account_id=account_id,
            family_id=family_id,
            token=token,
            created_at=issued_at,
            expires_at=expires_at,
        )
        with self._guard():
            self.db.add(record)
            self.db.flush()
        return record

    def find_refresh_record(self, token: str) -> Optional[RefreshToken]:
        with self._guard():
            return self.db.query(RefreshToken).filter(RefreshToken.token == token).first()

    def get_refresh_record(self, record_id: int) -> Optional[RefreshToken]:
        with self._guard():
            return self.db.query(RefreshToken).filter(RefreshToken.id == record_id).first()

    def update_refresh_record(self, record: RefreshToken, **fields) -> RefreshToken:
        with self._guard():
            for name, value in fields.items():
                setattr(record, name, value)
            self.db.flush()
        return record

    def claim_refresh_record(self, record_id: int, now: datetime) -> bool:
        """
        Compare-and-swap used_at from NULL to now.

        Returns False when another request already used or revoked the row.
        """
        with self._guard():
            result = self.db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.id == record_id,
                    RefreshToken.used_at.is_(None),
                    RefreshToken.revoked_at.is_(None),
                )
                .values(used_at=now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    def revoke_refresh_records(
        self,
        account_id: int,
        now: datetime,
        reason: str,
        *,
        family_id: Optional[str] = None,
        record_id: Optional[int] = None,
    ) -> int:
        """Set revoked_at on still-unrevoked rows of an account. Idempotent."""
        with self._guard():
            query = self.db.query(RefreshToken).filter(
                RefreshToken.account_id == account_id,
                RefreshToken.revoked_at.is_(None),
            )
            if family_id is not None:
                query = query.filter(RefreshToken.family_id == family_id)
            if record_id is not None:
                query = query.filter(RefreshToken.id == record_id)
            count = query.update(
                {RefreshToken.revoked_at: now, RefreshToken.revoke_reason: reason},
                synchronize_session=False,
            )
            self.db.expire_all()
        return count

    def revoke_all_for_account(self, account_id: int, now: datetime, reason: str) -> int:
        return self.revoke_refresh_records(account_id, now, reason)

    def list_active_refresh_records(self, account_id: int, now: datetime) -> List[RefreshToken]:
        with self._guard():
            return (
                self.db.query(RefreshToken)
                .filter(
                    RefreshToken.account_id == account_id,
                    RefreshToken.used_at.is_(None),
                    RefreshToken.revoked_at.is_(None),
                    RefreshToken.expires_at > now,
                )
                .order_by(RefreshToken.created_at.desc())
                .all()
            )

    def family_started_at(self, account_id: int, family_ids: List[str]) -> Dict[str, datetime]:
        if not family_ids:
            return {}
        with self._guard():
            rows = (
                self.db.query(RefreshToken.family_id, func.min(RefreshToken.created_at))
                .filter(
                    RefreshToken.account_id == account_id,
                    RefreshToken.family_id.in_(family_ids),
                )
                .group_by(RefreshToken.family_id)
                .all()
            )
        return {family_id: started for family_id, started in rows}

    def purge_refresh_records(self, expired_before: datetime, revoked_before: datetime) -> int:
        """Garbage-collect expired rows and rows revoked before the retention horizon."""
        with self._guard():
            stale = self.db.query(RefreshToken.id).filter(
                or_(
                    RefreshToken.expires_at < expired_before,
                    RefreshToken.revoked_at < revoked_before,
                )
            )
            stale_ids = [row_id for (row_id,) in stale.all()]
            if not stale_ids:
                return 0
            # Detach surviving rows that point at rows about to go.
            self.db.query(RefreshToken).filter(
                RefreshToken.replaced_by_id.in_(stale_ids)
            ).update({RefreshToken.replaced_by_id: None}, synchronize_session=False)
            count = (
                self.db.query(RefreshToken)
                .filter(RefreshToken.id.in_(stale_ids))
                .delete(synchronize_session=False)
            )
            self.db.expire_all()
        return count
