import pytest

from authcore.core.exceptions import TokenExpiredError, TokenInvalidError
from authcore.core.security import Signer, credential_stamp, is_strong_password, mask_email, normalize_email
from authcore.core.tokens import EmailVerification, MFAChallenge, PasswordReset, TokenCodec

CHALLENGE = MFAChallenge(account_id=3, token_id="c1", credential_stamp="0f1e2d3c4b5a6978")


def test_access_token_round_trip(codec, clock):
    token = codec.issue_access_token(7, "member", session_id="fam-1")
    claims = codec.verify_access_token(token)
    assert claims.account_id == 7
    assert claims.role == "member"
    assert claims.session_id == "fam-1"
    assert claims.issued_at == clock.now()


def test_access_token_is_deterministic_for_same_issue_time(codec, clock):
    issued = clock.now()
    first = codec.issue_access_token(7, "member", session_id="fam-1", issued_at=issued)
    clock.advance(30)
    second = codec.issue_access_token(7, "member", session_id="fam-1", issued_at=issued)
    assert first == second


def test_access_token_expires_by_injected_clock(codec, clock):
    token = codec.issue_access_token(7, "member")
    clock.advance(899)
    codec.verify_access_token(token)
    clock.advance(1)
    with pytest.raises(TokenExpiredError):
        codec.verify_access_token(token)


def test_access_token_rejects_refresh_typ(codec, clock):
    refresh = codec.issue_refresh_token(1, "a" * 64, clock.now(), clock.now())
    with pytest.raises(TokenInvalidError):
        codec.verify_access_token(refresh)


def test_refresh_token_carries_ledger_value_and_skips_expiry(codec, clock):
    token = codec.issue_refresh_token(9, "value-xyz", clock.now(), clock.now())
    clock.advance(3600)
    claims = codec.verify_refresh_token(token)
    assert claims.account_id == 9
    assert claims.value == "value-xyz"


def test_token_signed_with_other_key_is_rejected(codec, clock):
    foreign = TokenCodec(Signer("some-other-secret-key-0123456789abcdef"), clock)
    token = foreign.issue_access_token(1, "member")
    with pytest.raises(TokenInvalidError):
        codec.verify_access_token(token)


def test_garbage_token_is_rejected(codec):
    with pytest.raises(TokenInvalidError):
        codec.verify_access_token("not-a-jwt")
    with pytest.raises(TokenInvalidError):
        codec.verify_access_token("")


def test_purpose_token_variants_round_trip(codec):
    mfa = codec.issue_purpose_token(CHALLENGE, 300)
    assert codec.verify_purpose_token(mfa, MFAChallenge) == CHALLENGE

    verify = codec.issue_purpose_token(EmailVerification(account_id=3, email="a@b.io", token_id="t1"), 300)
    assert codec.verify_purpose_token(verify, EmailVerification).email == "a@b.io"

    reset = codec.issue_purpose_token(PasswordReset(account_id=3, token_id="t2"), 300)
    assert codec.verify_purpose_token(reset, PasswordReset).token_id == "t2"


def test_purpose_token_for_other_purpose_is_rejected(codec):
    token = codec.issue_purpose_token(CHALLENGE, 300)
    with pytest.raises(TokenInvalidError):
        codec.verify_purpose_token(token, PasswordReset)


def test_purpose_token_is_not_an_access_token(codec):
    token = codec.issue_purpose_token(CHALLENGE, 300)
    with pytest.raises(TokenInvalidError):
        codec.verify_access_token(token)


def test_purpose_token_expires(codec, clock):
    token = codec.issue_purpose_token(CHALLENGE, 300)
    clock.advance(301)
    with pytest.raises(TokenExpiredError):
        codec.verify_purpose_token(token, MFAChallenge)


def test_non_numeric_subject_is_rejected(signer, codec, clock):
    token = signer.sign({"sub": "alice", "typ": "access", "iat": 0, "exp": 4102444800})
    with pytest.raises(TokenInvalidError):
        codec.verify_access_token(token)


@pytest.mark.parametrize(
    "password,ok",
    [
        ("Str0ng!Passw0rd", True),
        ("short1!A", True),
        ("Sh0rt!A", False),
        ("alllowercase1!", False),
        ("ALLUPPERCASE1!", False),
        ("NoDigits!!", False),
        ("NoSymbols123", False),
        ("A1!" + "a" * 80, False),
    ],
)
def test_password_policy(password, ok):
    assert is_strong_password(password, 8) is ok


def test_hasher_verifies_and_rejects(hasher):
    digest = hasher.hash("Str0ng!Passw0rd")
    assert hasher.verify("Str0ng!Passw0rd", digest)
    assert not hasher.verify("wrong", digest)
    assert not hasher.verify("Str0ng!Passw0rd", "not-a-bcrypt-hash")


def test_email_helpers():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
    assert mask_email("alice@example.com") == "a***@example.com"
    assert mask_email("nonsense") == "***"


def test_mfa_challenge_without_credential_stamp_is_rejected(signer, codec, clock):
    token = signer.sign({"sub": "3", "typ": "purpose", "purpose": "mfa", "tid": "c1", "iat": 0, "exp": 4102444800})
    with pytest.raises(TokenInvalidError):
        codec.verify_purpose_token(token, MFAChallenge)


def test_credential_stamp_tracks_the_digest(hasher):
    first = hasher.hash("Str0ng!Passw0rd")
    second = hasher.hash("Str0ng!Passw0rd")
    assert credential_stamp(first) == credential_stamp(first)
    assert credential_stamp(first) != credential_stamp(second)
