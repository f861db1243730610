"""Device session routes"""

from typing import List

from fastapi import APIRouter, Depends

from authcore.api.deps import get_access_claims, get_auth_service, get_client_ip, get_current_account
from authcore.core.tokens import AccessClaims
from authcore.models.account import Account
from authcore.schemas.auth import SessionResponse
from authcore.schemas.response import APIResponse
from authcore.services.auth_service import AuthService

router = APIRouter()


@router.get("/sessions", response_model=List[SessionResponse])
def list_sessions(
    claims: AccessClaims = Depends(get_access_claims),
    current_account: Account = Depends(get_current_account),
    auth: AuthService = Depends(get_auth_service),
):
    """
    List active sessions of the current account

    The session that issued the calling access token is flagged as current.
    """
    sessions = auth.list_sessions(current_account.id, claims.session_id)
    return [
        SessionResponse(
            id=session.id,
            created_at=session.created_at,
            last_used=session.last_used,
            expires_at=session.expires_at,
            current=session.current,
        )
        for session in sessions
    ]


@router.delete("/sessions/{session_id}", response_model=APIResponse)
def revoke_session(
    session_id: str,
    client_ip: str = Depends(get_client_ip),
    current_account: Account = Depends(get_current_account),
    auth: AuthService = Depends(get_auth_service),
):
    """Sign out one device. Sessions of other accounts are reported as not found."""
    auth.revoke_session(current_account.id, session_id, ip=client_ip)
    return APIResponse(message="Session revoked")
