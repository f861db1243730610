"""Authentication routes"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from authcore.api.deps import (
    get_auth_service,
    get_client_ip,
    get_clock,
    get_current_account,
    get_throttle,
)
from authcore.config import settings
from authcore.core.clock import Clock
from authcore.core.exceptions import RateLimitExceededError, RefreshTokenNotFoundError
from authcore.models.account import Account
from authcore.schemas.auth import (
    AccountResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MFACompleteRequest,
    PasswordChangeRequest,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    TokenRequest,
    TokenResponse,
)
from authcore.schemas.response import APIResponse
from authcore.services.auth_service import AuthService, LoginResult
from authcore.services.rate_limiter import RequestThrottle
from authcore.services.token_service import TokenPair

router = APIRouter()

COOKIE_PATH = "/api/v1/auth"


def set_refresh_cookie(response: Response, pair: TokenPair, clock: Clock) -> None:
    max_age = int((pair.refresh_expires_at - clock.now()).total_seconds())
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=pair.refresh_token,
        max_age=max(0, max_age),
        path=COOKIE_PATH,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=COOKIE_PATH,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )


def _presented_refresh_token(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(settings.REFRESH_COOKIE_NAME)


def _login_response(result: LoginResult, response: Response, clock: Clock) -> LoginResponse:
    if result.requires_mfa:
        return LoginResponse(requires_mfa=True, mfa_token=result.mfa_token)
    pair = result.tokens
    set_refresh_cookie(response, pair, clock)
    return LoginResponse(
        requires_mfa=False,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",
        expires_in=pair.expires_in,
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    client_ip: str = Depends(get_client_ip),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Register a new account

    The account starts out pending; a verification link is sent to the email.
    """
    account = auth.register(
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        ip=client_ip,
    )
    return RegisterResponse(id=account.id, email=account.email)


@router.post("/verify-email", response_model=APIResponse)
def verify_email(
    body: TokenRequest,
    client_ip: str = Depends(get_client_ip),
    auth: AuthService = Depends(get_auth_service),
):
    """Activate a pending account with the emailed verification token"""
    auth.verify_email(body.token, ip=client_ip)
    return APIResponse(message="Email verified successfully")


@router.post("/verify-email/resend", response_model=APIResponse)
def resend_verification(
    body: EmailRequest,
    client_ip: str = Depends(get_client_ip),
    throttle: RequestThrottle = Depends(get_throttle),
    auth: AuthService = Depends(get_auth_service),
):
    """Send the verification link again. Same answer for every email."""
    if not throttle.allow("verify_resend", client_ip, settings.RESET_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many requests. Please try again later.")
    auth.resend_verification(body.email)
    return APIResponse(message="If the account is awaiting verification, a new link has been sent")


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
def login(
    body: LoginRequest,
    response: Response,
    client_ip: str = Depends(get_client_ip),
    throttle: RequestThrottle = Depends(get_throttle),
    clock: Clock = Depends(get_clock),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Login endpoint - check credentials and start a session

    Returns either a token pair or, for MFA accounts, a short-lived mfaToken
    to exchange at /mfa/complete.
    """
    if not throttle.allow("login:min", client_ip, settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many login attempts. Please wait a minute.")
    if not throttle.allow("login:hour", client_ip, settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many login attempts. Please try again later.")

    result = auth.login(body.email, body.password, ip=client_ip)
    return _login_response(result, response, clock)


@router.post("/mfa/complete", response_model=LoginResponse, response_model_exclude_none=True)
def complete_mfa(
    body: MFACompleteRequest,
    response: Response,
    client_ip: str = Depends(get_client_ip),
    throttle: RequestThrottle = Depends(get_throttle),
    clock: Clock = Depends(get_clock),
    auth: AuthService = Depends(get_auth_service),
):
    """Exchange an mfaToken and a TOTP or backup code for a token pair"""
    if not throttle.allow("login:min", client_ip, settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many login attempts. Please wait a minute.")

    result = auth.complete_mfa(body.mfa_token, body.code, ip=client_ip)
    return _login_response(result, response, clock)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    client_ip: str = Depends(get_client_ip),
    throttle: RequestThrottle = Depends(get_throttle),
    clock: Clock = Depends(get_clock),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Rotate the refresh token

    The token comes from the body or the refresh cookie. A ReuseDetected
    error means every session of the account was signed out.
    """
    if not throttle.allow("refresh:min", client_ip, settings.REFRESH_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many refresh attempts. Slow down.")

    presented = _presented_refresh_token(request, body)
    if not presented:
        raise RefreshTokenNotFoundError()

    pair = auth.refresh(presented)
    set_refresh_cookie(response, pair, clock)
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",
        expires_in=pair.expires_in,
    )


@router.post("/logout", response_model=APIResponse)
def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    client_ip: str = Depends(get_client_ip),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke the presented refresh token. Always succeeds."""
    presented = _presented_refresh_token(request, body)
    if presented:
        auth.logout(presented, ip=client_ip)
    clear_refresh_cookie(response)
    return APIResponse(message="Logged out successfully")


@router.get("/me", response_model=AccountResponse)
def get_current_account_info(current_account: Account = Depends(get_current_account)):
    """Get current account information"""
    return AccountResponse.model_validate(current_account)


@router.post("/password/change", response_model=APIResponse)
def change_password(
    body: PasswordChangeRequest,
    response: Response,
    client_ip: str = Depends(get_client_ip),
    current_account: Account = Depends(get_current_account),
    auth: AuthService = Depends(get_auth_service),
):
    """Change password; every refresh token of the account is revoked"""
    auth.change_password(current_account.id, body.current_password, body.new_password, ip=client_ip)
    clear_refresh_cookie(response)
    return APIResponse(message="Password changed. Please log in again on your other devices.")


@router.post("/password/reset-request", response_model=APIResponse)
def request_password_reset(
    body: EmailRequest,
    client_ip: str = Depends(get_client_ip),
    throttle: RequestThrottle = Depends(get_throttle),
    auth: AuthService = Depends(get_auth_service),
):
    """Send a reset link. The answer does not reveal whether the email exists."""
    if not throttle.allow("reset:hour", client_ip, settings.RESET_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many reset requests. Please try again later.")
    auth.request_password_reset(body.email, ip=client_ip)
    return APIResponse(message="If an account exists for this email, a reset link has been sent")


@router.post("/password/reset", response_model=APIResponse)
def reset_password(
    body: PasswordResetRequest,
    client_ip: str = Depends(get_client_ip),
    auth: AuthService = Depends(get_auth_service),
):
    """Set a new password with a single-use reset token"""
    auth.reset_password(body.token, body.new_password, ip=client_ip)
    return APIResponse(message="Password has been reset. Please log in.")
