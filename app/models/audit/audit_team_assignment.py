from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import relationship
from app.db.base import BaseModel

class AuditTeamAssignment(BaseModel):
    """An audit user allowed to verify items in a warehouse under a given audit manager"""
    __tablename__ = 'audit_team_assignments'

    audit_user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    audit_manager_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    removed_at = Column(DateTime(timezone=True), nullable=True)

    # At most one active assignment per user and warehouse
    __table_args__ = (
        Index(
            "uq_active_team_assignment",
            "audit_user_id", "warehouse_id",
            unique=True,
            postgresql_where=(is_active == True),
            sqlite_where=(is_active == True),
        ),
    )

    # Relationships
    audit_user = relationship("User", foreign_keys=[audit_user_id])
    audit_manager = relationship("User", foreign_keys=[audit_manager_id])
    warehouse = relationship("Warehouse")
