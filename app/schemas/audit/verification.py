from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from app.schemas.audit.team import UserRef

class PhysicalCountEntry(BaseModel):
    physical_quantity: int = Field(..., ge=0)
    notes: Optional[str] = None
    # Required when re-entering a count confirmed by someone else
    override_notes: Optional[str] = None

class ItemRef(BaseModel):
    id: int
    item_code: str
    name: str
    class Config:
        from_attributes = True

class AuditVerificationResponse(BaseModel):
    id: int
    audit_session_id: int
    serial_number: int
    item_id: int
    batch_number: Optional[str] = None
    system_quantity: int
    physical_quantity: Optional[int] = None
    discrepancy: Optional[int] = None
    status: str
    confirmed_by: Optional[int] = None
    confirmed_at: Optional[datetime] = None
    notes: Optional[str] = None
    override_by: Optional[int] = None
    override_at: Optional[datetime] = None
    override_notes: Optional[str] = None
    version: int
    item: Optional[ItemRef] = None
    confirmer: Optional[UserRef] = None
    class Config:
        from_attributes = True
