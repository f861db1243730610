"""Database models"""

from authcore.models.account import Account
from authcore.models.security import RefreshToken
from authcore.models.audit import AuditEvent

__all__ = ["Account", "RefreshToken", "AuditEvent"]
