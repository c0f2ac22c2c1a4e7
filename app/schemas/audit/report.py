from pydantic import BaseModel
from typing import List, Optional, Union
from datetime import datetime, date
from app.schemas.audit.session import AuditSummary

NOT_ENTERED = "Not Entered"
NO_REASON = "No reason provided"

class ReportHeader(BaseModel):
    report_type: str
    title: str
    organization_name: str
    audit_code: str
    audit_title: str
    warehouse_code: str
    warehouse_name: str
    status: str
    start_date: date
    end_date: date
    generated_at: datetime

# =================== PHYSICAL QUANTITY ENTRY ===================

class PhysicalQuantityRow(BaseModel):
    serial: int
    item_code: str
    item_name: str
    batch_number: Optional[str] = None
    physical_quantity: Union[int, str]
    confirmer_name: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    notes: Optional[str] = None

class PhysicalQuantityReport(BaseModel):
    header: ReportHeader
    rows: List[PhysicalQuantityRow]
    total_items: int
    counted_items: int

# =================== VARIANCE ===================

class VarianceRow(BaseModel):
    serial: int
    item_code: str
    item_name: str
    batch_number: Optional[str] = None
    system_quantity: int
    physical_quantity: int
    discrepancy: int      # absolute value; the sub-list tells the direction
    notes: str

class VarianceSummary(BaseModel):
    total_variances: int
    short_count: int
    excess_count: int

class VarianceReport(BaseModel):
    header: ReportHeader
    short_items: List[VarianceRow]
    excess_items: List[VarianceRow]
    summary: VarianceSummary

# =================== FINAL AUDIT ===================

class FinalAuditRow(BaseModel):
    serial: int
    item_code: str
    item_name: str
    batch_number: Optional[str] = None
    system_quantity: int
    physical_quantity: Optional[int] = None
    variance: Optional[int] = None
    status: str
    verified_by: Optional[str] = None
    notes: Optional[str] = None

class SignatureSlot(BaseModel):
    role: str
    name: Optional[str] = None
    signed_at: Optional[datetime] = None

class FinalAuditReport(BaseModel):
    header: ReportHeader
    rows: List[FinalAuditRow]
    summary: AuditSummary
    signatures: List[SignatureSlot]

AuditReport = Union[PhysicalQuantityReport, VarianceReport, FinalAuditReport]
