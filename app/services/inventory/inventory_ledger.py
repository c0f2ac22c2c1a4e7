from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, func
from app.models.inventory.stock_level import StockLevel
from app.models.inventory.item import Item


class InventoryLedger:
    """
    Read-only view of the transactional inventory ledger.

    The audit engine only ever reads on-hand quantities from here, once per
    stock line, when a session snapshot is taken.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_stock_lines(self, warehouse_id: int) -> List[Tuple[int, Optional[str]]]:
        """Distinct (item_id, batch_number) for every active item stocked in the warehouse, in item-code order"""
        result = await self.db.execute(
            select(StockLevel.item_id, StockLevel.batch_number)
            .join(Item, StockLevel.item_id == Item.id)
            .where(and_(
                StockLevel.warehouse_id == warehouse_id,
                Item.is_active == True
            ))
            .group_by(Item.item_code, StockLevel.item_id, StockLevel.batch_number)
            .order_by(Item.item_code, StockLevel.batch_number)
        )
        return [(row.item_id, row.batch_number) for row in result.all()]

    async def get_current_quantity(self, warehouse_id: int, item_id: int, batch_number: Optional[str] = None) -> int:
        conditions = [
            StockLevel.warehouse_id == warehouse_id,
            StockLevel.item_id == item_id,
        ]
        if batch_number is None:
            conditions.append(StockLevel.batch_number.is_(None))
        else:
            conditions.append(StockLevel.batch_number == batch_number)

        # A line may be split over several ledger rows; the on-hand quantity is their total
        result = await self.db.execute(
            select(func.coalesce(func.sum(StockLevel.current_stock), 0)).where(and_(*conditions))
        )
        quantity = result.scalar()
        return int(quantity or 0)
