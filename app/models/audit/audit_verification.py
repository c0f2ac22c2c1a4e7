from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship, validates
from app.db.base import BaseModel
from app.models.shared.enums import VerificationStatus

class AuditVerification(BaseModel):
    """One snapshot line of an audit: system quantity frozen at creation, physical count entered later"""
    __tablename__ = 'audit_verifications'

    audit_session_id = Column(Integer, ForeignKey('audit_sessions.id'), nullable=False, index=True)
    serial_number = Column(Integer, nullable=False)
    item_id = Column(Integer, ForeignKey('items.id'), nullable=False)
    batch_number = Column(String(50))
    system_quantity = Column(Integer, nullable=False)
    physical_quantity = Column(Integer)
    discrepancy = Column(Integer)
    status = Column(String(20), nullable=False, default=VerificationStatus.PENDING.value, index=True)
    confirmed_by = Column(Integer, ForeignKey('users.id'))
    confirmed_at = Column(DateTime(timezone=True))
    notes = Column(Text)
    override_by = Column(Integer, ForeignKey('users.id'))
    override_at = Column(DateTime(timezone=True))
    override_notes = Column(Text)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("audit_session_id", "serial_number", name="uq_audit_verification_serial"),
    )
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    audit_session = relationship("AuditSession", back_populates="verifications")
    item = relationship("Item")
    confirmer = relationship("User", foreign_keys=[confirmed_by])
    overrider = relationship("User", foreign_keys=[override_by])

    @validates("system_quantity")
    def _freeze_system_quantity(self, key, value):
        if self.system_quantity is not None and value != self.system_quantity:
            raise ValueError("system_quantity is a snapshot and cannot be changed")
        return value

    def __repr__(self):
        return f"<AuditVerification s{self.audit_session_id} #{self.serial_number} {self.status}>"
