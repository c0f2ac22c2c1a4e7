from sqlalchemy import Column, String, Boolean, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.db.base import BaseModel
from app.models.shared.enums import UnitType

class Item(BaseModel):
    __tablename__ = 'items'

    item_code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    unit_type = Column(SQLEnum(UnitType), nullable=False, default=UnitType.PCS)
    barcode = Column(String(100))
    is_batch_tracked = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)

    # Relationships
    stock_levels = relationship("StockLevel", back_populates="item")
