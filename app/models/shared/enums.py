from enum import Enum

# Enums
class UserRole(str, Enum):
    ADMIN = "admin"
    AUDIT_MANAGER = "audit_manager"
    AUDIT_USER = "audit_user"

class AuditSessionStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RECONCILIATION = "reconciliation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class VerificationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"     # display-only, never stored once a count exists
    COMPLETE = "complete"
    SHORT = "short"
    EXCESS = "excess"

class AuditAction(str, Enum):
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_STARTED = "SESSION_STARTED"
    RECONCILIATION_STARTED = "RECONCILIATION_STARTED"
    SESSION_COMPLETED = "SESSION_COMPLETED"
    SESSION_CANCELLED = "SESSION_CANCELLED"
    COUNT_RECORDED = "COUNT_RECORDED"
    COUNT_OVERRIDDEN = "COUNT_OVERRIDDEN"

class AuditReportType(str, Enum):
    PHYSICAL_QUANTITY = "physical-quantity"
    VARIANCE = "variance"
    FINAL_AUDIT = "final-audit"

class ExportFormat(str, Enum):
    PDF = "pdf"
    EXCEL = "excel"
    CSV = "csv"

class UnitType(str, Enum):
    PCS = "PCS"        # Piece
    KG = "KG"          # Kilogram
    L = "L"            # Liter
    BAG = "BAG"
    BOX = "BOX"
    CARTON = "CARTON"
    BTL = "BTL"        # Bottle
    DOZEN = "DOZEN"
