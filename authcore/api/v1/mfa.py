"""MFA enrolment routes"""

from fastapi import APIRouter, Depends

from authcore.api.deps import get_auth_service, get_client_ip, get_current_account, get_mfa_service
from authcore.core.exceptions import ValidationError
from authcore.models.account import Account
from authcore.schemas.auth import MFACodeRequest, MFADisableRequest, MFASetupResponse, MFAStatusResponse
from authcore.schemas.response import APIResponse
from authcore.services.auth_service import AuthService
from authcore.services.mfa_service import MFAService

router = APIRouter()


@router.post("/setup", response_model=MFASetupResponse)
def setup_mfa(
    current_account: Account = Depends(get_current_account),
    mfa: MFAService = Depends(get_mfa_service),
):
    """
    Start MFA enrolment

    Returns the secret, an otpauth:// URI for QR rendering and the backup
    codes. MFA is not enforced until /confirm succeeds.
    """
    setup = mfa.enable(current_account.id)
    return MFASetupResponse(
        secret=setup.secret,
        provisioning_uri=setup.provisioning_uri,
        backup_codes=setup.backup_codes,
    )


@router.post("/confirm", response_model=APIResponse)
def confirm_mfa(
    body: MFACodeRequest,
    current_account: Account = Depends(get_current_account),
    mfa: MFAService = Depends(get_mfa_service),
):
    """Turn MFA on with a code from the authenticator app"""
    if not mfa.confirm(current_account.id, body.code):
        raise ValidationError("Invalid authentication code")
    return APIResponse(message="MFA enabled")


@router.post("/disable", response_model=APIResponse)
def disable_mfa(
    body: MFADisableRequest,
    client_ip: str = Depends(get_client_ip),
    current_account: Account = Depends(get_current_account),
    auth: AuthService = Depends(get_auth_service),
):
    """Turn MFA off; requires the current password"""
    auth.disable_mfa(current_account.id, body.password, ip=client_ip)
    return APIResponse(message="MFA disabled")


@router.get("/status", response_model=MFAStatusResponse)
def mfa_status(
    current_account: Account = Depends(get_current_account),
    mfa: MFAService = Depends(get_mfa_service),
):
    return MFAStatusResponse(**mfa.status(current_account.id))
