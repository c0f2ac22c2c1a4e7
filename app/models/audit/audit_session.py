from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text, CheckConstraint
from sqlalchemy.orm import relationship
from app.db.base import BaseModel
from app.models.shared.enums import AuditSessionStatus

class AuditSession(BaseModel):
    __tablename__ = 'audit_sessions'

    audit_code = Column(String(30), unique=True, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=AuditSessionStatus.OPEN.value, index=True)
    notes = Column(Text)

    started_at = Column(DateTime(timezone=True))
    reconciliation_at = Column(DateTime(timezone=True))
    completed_by = Column(Integer, ForeignKey('users.id'))
    completed_at = Column(DateTime(timezone=True))
    cancelled_by = Column(Integer, ForeignKey('users.id'))
    cancelled_at = Column(DateTime(timezone=True))
    cancel_reason = Column(Text)

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_audit_session_dates"),
    )

    # Relationships
    warehouse = relationship("Warehouse", back_populates="audit_sessions")
    verifications = relationship(
        "AuditVerification",
        back_populates="audit_session",
        order_by="AuditVerification.serial_number",
        cascade="all, delete-orphan",
    )
    action_logs = relationship("AuditActionLog", back_populates="audit_session", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<AuditSession {self.audit_code} ({self.status})>"
