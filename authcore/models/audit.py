"""Security audit trail"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from authcore.core.database import Base

AUDIT_SEVERITIES = ("info", "warning", "critical")


class AuditEvent(Base):
    """One security-relevant transition of an account. Rows are never updated."""

    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(64), nullable=False, index=True)
    severity = Column(String(16), default="info", nullable=False)
    session_id = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    occurred_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    account = relationship("Account", back_populates="audit_events")

    __table_args__ = (
        Index("idx_audit_events_account_time", "account_id", "occurred_at"),
    )

    def __repr__(self):
        return f"<AuditEvent(account_id={self.account_id}, action='{self.action}', severity='{self.severity}')>"
