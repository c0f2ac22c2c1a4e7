from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from app.db.base import BaseModel

class StockLevel(BaseModel):
    """On-hand quantity per item and batch in a warehouse (owned by the inventory ledger)"""
    __tablename__ = 'stock_levels'

    item_id = Column(Integer, ForeignKey('items.id'), nullable=False)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=False, index=True)
    batch_number = Column(String(50), nullable=True)
    current_stock = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("item_id", "warehouse_id", "batch_number", name="uq_stock_level_item_warehouse_batch"),
    )

    # Relationships
    item = relationship("Item", back_populates="stock_levels")
    warehouse = relationship("Warehouse", back_populates="stock_levels")
