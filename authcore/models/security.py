"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from authcore.core.database import Base

# revoke_reason values
REVOKE_LOGOUT = "logout"
REVOKE_SESSION = "session_revoked"
REVOKE_PASSWORD_CHANGED = "password_changed"
REVOKE_PASSWORD_RESET = "password_reset"
REVOKE_REUSE_DETECTED = "reuse_detected"
REVOKE_REUSE_CASCADE = "reuse_cascade"


class RefreshToken(Base):
    """
    One row per issued refresh credential.

    Rows sharing a family_id form one rotation chain, i.e. one device
    session. A row goes issued -> used exactly once; replaced_by_id points
    at the row it was rotated into.
    """

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    family_id = Column(String(64), nullable=False, index=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    replaced_by_id = Column(
        Integer, ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoke_reason = Column(String(32), nullable=True)

    account = relationship("Account", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_account_family", "account_id", "family_id"),
        Index("idx_refresh_tokens_expires_at", "expires_at"),
    )

    def __repr__(self):
        return (
            f"<RefreshToken(id={self.id}, account_id={self.account_id}, family_id='{self.family_id[:8]}', "
            f"used={self.used_at is not None}, revoked={self.revoked_at is not None})>"
        )
