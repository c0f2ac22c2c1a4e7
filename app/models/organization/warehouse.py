from sqlalchemy import Boolean, Column, String, Text
from sqlalchemy.orm import relationship
from app.db.base import BaseModel

class Warehouse(BaseModel):
    __tablename__ = 'warehouses'

    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    address = Column(Text)
    city = Column(String(50))
    country = Column(String(50), default="Bangladesh")
    is_active = Column(Boolean, default=True)

    # Relationships
    stock_levels = relationship("StockLevel", back_populates="warehouse")
    audit_sessions = relationship("AuditSession", back_populates="warehouse")
