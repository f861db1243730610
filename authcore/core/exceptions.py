"""Error hierarchy; every error carries an HTTP status and a stable `code`"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    code = "InternalError"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Validation Errors
class ValidationError(BaseAPIException):
    """Malformed or unacceptable input, correctable by the caller"""
    code = "ValidationError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=400, details=details)


class DuplicateEmailError(ValidationError):
    """Email already registered"""
    def __init__(self):
        super().__init__("An account with this email already exists")


class WeakPasswordError(ValidationError):
    """Password does not meet the strength policy"""
    def __init__(self, min_length: int = 8):
        super().__init__(
            f"Password must be at least {min_length} characters with uppercase, "
            "lowercase, number, and special character"
        )


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    code = "InvalidCredentials"

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Wrong email or password. Deliberately says nothing about which."""
    def __init__(self):
        super().__init__("Invalid email or password")


class TokenInvalidError(AuthenticationError):
    """Token is malformed, badly signed, or used for the wrong purpose"""
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenExpiredError(AuthenticationError):
    """Token has expired"""
    code = "Expired"

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class TokenRevokedError(AuthenticationError):
    """Refresh token was revoked"""
    code = "Revoked"

    def __init__(self):
        super().__init__("Refresh token has been revoked")


class RefreshTokenNotFoundError(AuthenticationError):
    """Refresh token has no ledger entry"""
    code = "NotFound"

    def __init__(self):
        super().__init__("Refresh token not recognized")


class ReuseDetectedError(AuthenticationError):
    """A rotated refresh token was presented again; every session was revoked"""
    code = "ReuseDetected"

    def __init__(self):
        super().__init__(
            "Refresh token reuse detected. All sessions have been signed out; please log in again.",
            details={"force_logout": True},
        )


class AccountLockedError(AuthenticationError):
    """Account is locked due to failed login attempts"""
    code = "AccountLocked"

    def __init__(self, retry_after: Optional[int] = None):
        details = {"retry_after": retry_after} if retry_after else {}
        super().__init__(
            "Account is temporarily locked due to too many failed attempts",
            details=details,
        )


class AccountNotActiveError(AuthenticationError):
    """Account is pending verification, suspended or banned"""
    code = "AccountNotActive"

    def __init__(self, status: str):
        if status == "pending":
            message = "Please verify your email address before logging in"
        else:
            message = "Your account has been suspended"
        super().__init__(message, details={"status": status})


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    code = "NotFound"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


# Throttling
class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    code = "RateLimited"

    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status_code=429)


# System Errors
class StoreUnavailableError(BaseAPIException):
    """Persistent or fast store could not be reached"""
    code = "StoreUnavailable"

    def __init__(self, store: str = "store"):
        super().__init__(
            "Service temporarily unavailable. Please try again later.",
            status_code=503,
            details={"store": store},
        )
