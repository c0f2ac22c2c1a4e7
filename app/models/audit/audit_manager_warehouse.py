from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer
from sqlalchemy.orm import relationship
from app.db.base import BaseModel

class AuditManagerWarehouse(BaseModel):
    __tablename__ = 'audit_manager_warehouses'

    audit_manager_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index(
            "uq_active_manager_warehouse",
            "audit_manager_id", "warehouse_id",
            unique=True,
            postgresql_where=(is_active == True),
            sqlite_where=(is_active == True),
        ),
    )

    # Relationships
    audit_manager = relationship("User", foreign_keys=[audit_manager_id])
    warehouse = relationship("Warehouse")
