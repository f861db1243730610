"""Account model"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, JSON, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from authcore.core.database import Base

ACCOUNT_STATUSES = ("pending", "active", "suspended", "banned")


class Account(Base):
    """Identity root: credentials, status and MFA state"""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(254), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(20), default="member", nullable=False, index=True)
    status = Column(String(20), default="pending", nullable=False)
    mfa_enabled = Column(Boolean, default=False, nullable=False)
    mfa_secret = Column(String(64), nullable=True)
    mfa_backup_codes = Column(JSON, nullable=True)
    email_verified_at = Column(DateTime(timezone=True))
    password_changed_at = Column(DateTime(timezone=True))
    last_login = Column(DateTime(timezone=True))
    last_login_ip = Column(String(64))
    login_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    refresh_tokens = relationship("RefreshToken", cascade="all, delete-orphan", back_populates="account")
    audit_events = relationship("AuditEvent", back_populates="account")

    __table_args__ = (
        Index("idx_accounts_status", "status"),
        CheckConstraint(
            "status IN ('pending', 'active', 'suspended', 'banned')",
            name="chk_account_status",
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<Account(id={self.id}, email='{self.email}', role='{self.role}', status='{self.status}')>"
