import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from authcore.core.database import Base
from authcore.core.exceptions import (
    AccountNotActiveError,
    RefreshTokenNotFoundError,
    ResourceNotFoundError,
    ReuseDetectedError,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError,
)
from authcore.models.audit import AuditEvent
from authcore.models.security import REVOKE_REUSE_CASCADE, REVOKE_REUSE_DETECTED, RefreshToken
from authcore.services.credential_store import CredentialStore
from authcore.services.token_service import RefreshTokenLedger


def _issue(ledger, store, account):
    pair = ledger.issue(account)
    store.commit()
    return pair


def _active_rows(db, account_id):
    return (
        db.query(RefreshToken)
        .filter(
            RefreshToken.account_id == account_id,
            RefreshToken.used_at.is_(None),
            RefreshToken.revoked_at.is_(None),
        )
        .all()
    )


def test_rotate_returns_new_pair_and_marks_old_row_used(ledger, store, db, make_account, clock):
    account = make_account()
    first = _issue(ledger, store, account)

    clock.advance(10)
    _, second = ledger.rotate(first.refresh_token)

    assert second.refresh_token != first.refresh_token
    assert second.access_token != first.access_token
    assert second.session_id == first.session_id

    rows = db.query(RefreshToken).order_by(RefreshToken.id).all()
    assert len(rows) == 2
    assert rows[0].used_at is not None
    assert rows[0].replaced_by_id == rows[1].id
    assert rows[1].used_at is None


def test_replay_within_grace_returns_identical_successor(ledger, store, db, make_account, clock):
    account = make_account()
    first = _issue(ledger, store, account)

    _, second = ledger.rotate(first.refresh_token)
    clock.advance(5)
    _, replayed = ledger.rotate(first.refresh_token)

    assert replayed == second
    assert len(_active_rows(db, account.id)) == 1
    assert db.query(RefreshToken).count() == 2


def test_reuse_after_grace_revokes_every_session(ledger, store, db, make_account, clock):
    account = make_account()
    laptop = _issue(ledger, store, account)
    phone = _issue(ledger, store, account)

    _, rotated = ledger.rotate(laptop.refresh_token)
    clock.advance(61)

    with pytest.raises(ReuseDetectedError):
        ledger.rotate(laptop.refresh_token)

    assert _active_rows(db, account.id) == []
    with pytest.raises(TokenRevokedError):
        ledger.rotate(rotated.refresh_token)
    with pytest.raises(TokenRevokedError):
        ledger.rotate(phone.refresh_token)

    reasons = {row.revoke_reason for row in db.query(RefreshToken).all()}
    assert reasons == {REVOKE_REUSE_DETECTED, REVOKE_REUSE_CASCADE}
    (event,) = db.query(AuditEvent).filter(AuditEvent.action == "refresh_reuse_detected").all()
    assert event.severity == "critical"
    assert event.session_id == laptop.session_id
    assert event.details == {"revoked": 3}


def test_stolen_token_presented_again_still_reports_reuse(ledger, store, make_account, clock):
    account = make_account()
    first = _issue(ledger, store, account)
    ledger.rotate(first.refresh_token)
    clock.advance(120)

    with pytest.raises(ReuseDetectedError):
        ledger.rotate(first.refresh_token)
    with pytest.raises(ReuseDetectedError):
        ledger.rotate(first.refresh_token)


def test_rotation_chain_length(ledger, store, db, make_account, clock):
    account = make_account()
    pair = _issue(ledger, store, account)

    n = 6
    for _ in range(n):
        clock.advance(300)
        _, pair = ledger.rotate(pair.refresh_token)
        assert len(_active_rows(db, account.id)) == 1

    rows = db.query(RefreshToken).filter(RefreshToken.account_id == account.id).all()
    assert len(rows) == n + 1
    assert sum(1 for row in rows if row.used_at is not None) == n


def test_expired_refresh_token(ledger, store, make_account, clock):
    account = make_account()
    pair = _issue(ledger, store, account)
    clock.advance(days=7, seconds=1)

    with pytest.raises(TokenExpiredError):
        ledger.rotate(pair.refresh_token)


def test_unknown_and_malformed_tokens(ledger, store, codec, make_account, clock):
    account = make_account()
    forged = codec.issue_refresh_token(account.id, "f" * 64, clock.now(), clock.now())

    with pytest.raises(RefreshTokenNotFoundError):
        ledger.rotate(forged)
    with pytest.raises(TokenInvalidError):
        ledger.rotate("garbage")


def test_token_bound_to_other_account_is_not_found(ledger, store, codec, make_account, clock):
    alice = make_account("alice@example.com")
    bob = make_account("bob@example.com")
    pair = _issue(ledger, store, alice)
    value = codec.verify_refresh_token(pair.refresh_token).value
    swapped = codec.issue_refresh_token(bob.id, value, clock.now(), clock.now())

    with pytest.raises(RefreshTokenNotFoundError):
        ledger.rotate(swapped)


def test_revoked_row_is_rejected(ledger, store, make_account):
    account = make_account()
    pair = _issue(ledger, store, account)

    assert ledger.revoke(pair.refresh_token) is not None
    with pytest.raises(TokenRevokedError):
        ledger.rotate(pair.refresh_token)
    # Revoking again is harmless.
    ledger.revoke(pair.refresh_token)
    assert ledger.revoke("garbage") is None


def test_revoking_a_rotated_token_ends_its_successor(ledger, store, make_account, clock):
    account = make_account()
    pair = _issue(ledger, store, account)
    _, successor = ledger.rotate(pair.refresh_token)
    clock.advance(5)

    assert ledger.revoke(pair.refresh_token) is not None
    with pytest.raises(TokenRevokedError):
        ledger.rotate(successor.refresh_token)
    assert ledger.list_sessions(account.id) == []


def test_suspended_account_cannot_refresh(ledger, store, make_account):
    account = make_account()
    pair = _issue(ledger, store, account)
    store.update_account(account, status="suspended")
    store.commit()

    with pytest.raises(AccountNotActiveError):
        ledger.rotate(pair.refresh_token)


def test_concurrent_rotation_has_single_winner(tmp_path, codec, clock, hasher):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db_a, db_b = Session(), Session()
    try:
        store_a, store_b = CredentialStore(db_a), CredentialStore(db_b)
        ledger_a = RefreshTokenLedger(store_a, codec, clock)
        ledger_b = RefreshTokenLedger(store_b, codec, clock)

        account = store_a.create_account(email="race@example.com", password_hash=hasher.hash("x"), status="active")
        store_a.commit()
        pair = ledger_a.issue(account)
        store_a.commit()

        winner = {}
        original_claim = store_a.claim_refresh_record

        def claim_after_other_worker(record_id, now):
            # The other worker rotates the same token first.
            winner["pair"] = ledger_b.rotate(pair.refresh_token)[1]
            return original_claim(record_id, now)

        store_a.claim_refresh_record = claim_after_other_worker
        _, loser_pair = ledger_a.rotate(pair.refresh_token)

        assert loser_pair == winner["pair"]
        db_a.rollback()
        assert db_a.query(RefreshToken).count() == 2
    finally:
        db_a.close()
        db_b.close()
        engine.dispose()


def test_list_sessions_projects_families(ledger, store, make_account, clock):
    account = make_account()
    laptop = _issue(ledger, store, account)
    clock.advance(60)
    phone = _issue(ledger, store, account)
    clock.advance(600)
    _, laptop = ledger.rotate(laptop.refresh_token)

    sessions = ledger.list_sessions(account.id, current_session_id=laptop.session_id)

    assert {s.id for s in sessions} == {laptop.session_id, phone.session_id}
    by_id = {s.id: s for s in sessions}
    laptop_view = by_id[laptop.session_id]
    assert laptop_view.current is True
    assert laptop_view.last_used > laptop_view.created_at
    assert by_id[phone.session_id].current is False


def test_revoke_session_is_owner_scoped(ledger, store, make_account):
    alice = make_account("alice@example.com")
    bob = make_account("bob@example.com")
    alice_pair = _issue(ledger, store, alice)

    with pytest.raises(ResourceNotFoundError):
        ledger.revoke_session(bob.id, alice_pair.session_id)
    with pytest.raises(ResourceNotFoundError):
        ledger.revoke_session(alice.id, "no-such-session")

    ledger.revoke_session(alice.id, alice_pair.session_id)
    assert ledger.list_sessions(alice.id) == []
    with pytest.raises(TokenRevokedError):
        ledger.rotate(alice_pair.refresh_token)


def test_purge_removes_expired_and_old_revoked_rows(ledger, store, db, make_account, clock):
    account = make_account()
    stale = _issue(ledger, store, account)
    ledger.revoke(stale.refresh_token)
    clock.advance(days=2)
    live = _issue(ledger, store, account)

    assert ledger.purge(retention_seconds=24 * 3600) == 1
    remaining = db.query(RefreshToken).all()
    assert len(remaining) == 1
    assert ledger.rotate(live.refresh_token)
