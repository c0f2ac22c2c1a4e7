from pydantic import BaseModel, Field, validator
from typing import Any, Dict, Optional
from datetime import datetime, date
from app.schemas.audit.team import WarehouseRef

class AuditSessionCreate(BaseModel):
    warehouse_id: int
    title: str = Field(..., min_length=1, max_length=200)
    start_date: date
    end_date: date
    notes: Optional[str] = None
    allow_overlap: bool = False

    @validator('end_date')
    def validate_date_range(cls, v, values):
        if 'start_date' in values and v < values['start_date']:
            raise ValueError('End date cannot be before start date')
        return v

class AuditSessionCancel(BaseModel):
    reason: str = Field(..., min_length=1)

class AuditSummary(BaseModel):
    total_items: int
    confirmed_items: int
    pending_items: int
    complete_items: int
    short_items: int
    excess_items: int
    discrepancy_items: int
    completion_percent: int

class AuditSessionResponse(BaseModel):
    id: int
    audit_code: str
    title: str
    warehouse_id: int
    start_date: date
    end_date: date
    status: str
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    reconciliation_at: Optional[datetime] = None
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    warehouse: Optional[WarehouseRef] = None
    class Config:
        from_attributes = True

class AuditSessionDetail(AuditSessionResponse):
    summary: AuditSummary

class CompletionReadiness(BaseModel):
    status: str
    total_items: int
    pending_count: int
    discrepancy_count: int
    can_advance: bool
    can_complete: bool

class AuditActionLogResponse(BaseModel):
    id: int
    audit_session_id: int
    audit_verification_id: Optional[int] = None
    action: str
    performed_by: int
    performed_at: Optional[datetime] = None
    previous_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    class Config:
        from_attributes = True
