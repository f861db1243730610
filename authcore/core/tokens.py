"""Token codec - access, refresh and purpose tokens.

Tokens are self-contained signed claims. Verifying an access token never
touches a store, so access tokens cannot be revoked before they expire;
revocation always targets the refresh ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar, Union

from authcore.core.clock import Clock, to_timestamp
from authcore.core.exceptions import TokenExpiredError, TokenInvalidError
from authcore.core.security import Signer

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
TOKEN_TYPE_PURPOSE = "purpose"


class PurposeKind(str, Enum):
    MFA = "mfa"
    EMAIL_VERIFY = "email_verify"
    PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class MFAChallenge:
    account_id: int
    token_id: str
    # Fingerprint of the password digest that was verified before the challenge.
    credential_stamp: str


@dataclass(frozen=True)
class EmailVerification:
    account_id: int
    email: str
    token_id: str


@dataclass(frozen=True)
class PasswordReset:
    account_id: int
    token_id: str


PurposePayload = Union[MFAChallenge, EmailVerification, PasswordReset]
P = TypeVar("P", MFAChallenge, EmailVerification, PasswordReset)


@dataclass(frozen=True)
class AccessClaims:
    account_id: int
    role: str
    session_id: Optional[str]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    account_id: int
    value: str
    expires_at: datetime


def _purpose_claims(payload: PurposePayload) -> Dict[str, Any]:
    if isinstance(payload, MFAChallenge):
        return {
            "purpose": PurposeKind.MFA.value,
            "tid": payload.token_id,
            "cst": payload.credential_stamp,
        }
    if isinstance(payload, EmailVerification):
        return {
            "purpose": PurposeKind.EMAIL_VERIFY.value,
            "email": payload.email,
            "tid": payload.token_id,
        }
    if isinstance(payload, PasswordReset):
        return {"purpose": PurposeKind.PASSWORD_RESET.value, "tid": payload.token_id}
    raise TypeError(f"Unsupported purpose payload: {type(payload).__name__}")


def _purpose_payload(account_id: int, claims: Dict[str, Any]) -> PurposePayload:
    kind = claims.get("purpose")
    try:
        if kind == PurposeKind.MFA.value:
            return MFAChallenge(
                account_id=account_id,
                token_id=str(claims["tid"]),
                credential_stamp=str(claims["cst"]),
            )
        if kind == PurposeKind.EMAIL_VERIFY.value:
            return EmailVerification(
                account_id=account_id,
                email=str(claims["email"]),
                token_id=str(claims["tid"]),
            )
        if kind == PurposeKind.PASSWORD_RESET.value:
            return PasswordReset(account_id=account_id, token_id=str(claims["tid"]))
    except KeyError:
        raise TokenInvalidError()
    raise TokenInvalidError()


class TokenCodec:
    """Creates and verifies signed bearer tokens. Pure: signer + clock only."""

    def __init__(self, signer: Signer, clock: Clock, access_ttl_seconds: int = 900) -> None:
        self.signer = signer
        self.clock = clock
        self.access_ttl_seconds = access_ttl_seconds

    def issue_access_token(
        self,
        account_id: int,
        role: str,
        session_id: Optional[str] = None,
        issued_at: Optional[datetime] = None,
    ) -> str:
        """
        Issue a short-lived access token.

        The output depends only on the arguments, so re-issuing for the same
        rotation step yields the same string.
        """
        iat = to_timestamp(issued_at or self.clock.now())
        claims = {
            "sub": str(account_id),
            "role": role,
            "sid": session_id,
            "typ": TOKEN_TYPE_ACCESS,
            "iat": iat,
            "exp": iat + self.access_ttl_seconds,
        }
        return self.signer.sign(claims)

    def issue_refresh_token(
        self,
        account_id: int,
        value: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        """Wrap a ledger value so clients cannot mint ledger keys."""
        claims = {
            "sub": str(account_id),
            "jti": value,
            "typ": TOKEN_TYPE_REFRESH,
            "iat": to_timestamp(issued_at),
            "exp": to_timestamp(expires_at),
        }
        return self.signer.sign(claims)

    def issue_purpose_token(self, payload: PurposePayload, ttl_seconds: int) -> str:
        """Issue a token scoped to one follow-up action."""
        iat = to_timestamp(self.clock.now())
        claims = {
            "sub": str(payload.account_id),
            "typ": TOKEN_TYPE_PURPOSE,
            "iat": iat,
            "exp": iat + ttl_seconds,
        }
        claims.update(_purpose_claims(payload))
        return self.signer.sign(claims)

    def verify_access_token(self, token: str) -> AccessClaims:
        claims = self._verify(token, TOKEN_TYPE_ACCESS, check_expiry=True)
        return AccessClaims(
            account_id=self._account_id(claims),
            role=str(claims.get("role") or ""),
            session_id=claims.get("sid"),
            issued_at=self._as_datetime(claims.get("iat")),
            expires_at=self._as_datetime(claims.get("exp")),
        )

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        """
        Verify signature and shape of a refresh token.

        Expiry is left to the ledger: an expired token that was already
        rotated must still be recognised as a reuse.
        """
        claims = self._verify(token, TOKEN_TYPE_REFRESH, check_expiry=False)
        value = claims.get("jti")
        if not value or not isinstance(value, str):
            raise TokenInvalidError("Malformed refresh token")
        return RefreshClaims(
            account_id=self._account_id(claims),
            value=value,
            expires_at=self._as_datetime(claims.get("exp")),
        )

    def verify_purpose_token(self, token: str, expected: Type[P]) -> P:
        claims = self._verify(token, TOKEN_TYPE_PURPOSE, check_expiry=True)
        payload = _purpose_payload(self._account_id(claims), claims)
        if not isinstance(payload, expected):
            raise TokenInvalidError()
        return payload

    def _verify(self, token: str, token_type: str, *, check_expiry: bool) -> Dict[str, Any]:
        if not token or not isinstance(token, str):
            raise TokenInvalidError()
        claims = self.signer.unsign(token)
        if claims.get("typ") != token_type:
            raise TokenInvalidError()
        exp = claims.get("exp")
        if not isinstance(exp, int):
            raise TokenInvalidError()
        if check_expiry and exp <= to_timestamp(self.clock.now()):
            raise TokenExpiredError()
        return claims

    @staticmethod
    def _account_id(claims: Dict[str, Any]) -> int:
        try:
            return int(claims["sub"])
        except (KeyError, TypeError, ValueError):
            raise TokenInvalidError()

    @staticmethod
    def _as_datetime(value: Any) -> datetime:
        if not isinstance(value, int):
            raise TokenInvalidError()
        return datetime.fromtimestamp(value, tz=timezone.utc)
