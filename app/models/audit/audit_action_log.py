from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.base import BaseModel

class AuditActionLog(BaseModel):
    """Append-only trail of everything done to an audit session"""
    __tablename__ = 'audit_action_logs'

    audit_session_id = Column(Integer, ForeignKey('audit_sessions.id'), nullable=False, index=True)
    audit_verification_id = Column(Integer, ForeignKey('audit_verifications.id'), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    performed_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    performed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    previous_value = Column(JSON)
    new_value = Column(JSON)
    notes = Column(Text)

    # Relationships
    audit_session = relationship("AuditSession", back_populates="action_logs")
    performer = relationship("User", foreign_keys=[performed_by])
