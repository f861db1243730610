"""Pydantic schemas for API validation"""

from authcore.schemas.auth import (
    AccountResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MFACodeRequest,
    MFACompleteRequest,
    MFADisableRequest,
    MFASetupResponse,
    MFAStatusResponse,
    PasswordChangeRequest,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    TokenRequest,
    TokenResponse,
)
from authcore.schemas.response import APIResponse, ErrorResponse, HealthResponse

__all__ = [
    "AccountResponse", "EmailRequest", "LoginRequest", "LoginResponse",
    "MFACodeRequest", "MFACompleteRequest", "MFADisableRequest", "MFASetupResponse", "MFAStatusResponse",
    "PasswordChangeRequest", "PasswordResetRequest", "RefreshRequest",
    "RegisterRequest", "RegisterResponse", "SessionResponse", "TokenRequest", "TokenResponse",
    "APIResponse", "ErrorResponse", "HealthResponse",
]
