from app.models.auth.user import User
from app.models.organization.warehouse import Warehouse
from app.models.inventory.item import Item
from app.models.inventory.stock_level import StockLevel
from app.models.audit.audit_manager_warehouse import AuditManagerWarehouse
from app.models.audit.audit_team_assignment import AuditTeamAssignment
from app.models.audit.audit_session import AuditSession
from app.models.audit.audit_verification import AuditVerification
from app.models.audit.audit_action_log import AuditActionLog


__all__ = [
    "User",
    "Warehouse",
    "Item",
    "StockLevel",
    "AuditManagerWarehouse",
    "AuditTeamAssignment",
    "AuditSession",
    "AuditVerification",
    "AuditActionLog",
]
