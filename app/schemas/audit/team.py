from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class UserRef(BaseModel):
    id: int
    username: str
    full_name: str
    role: str
    class Config:
        from_attributes = True

class WarehouseRef(BaseModel):
    id: int
    code: str
    name: str
    city: Optional[str] = None
    class Config:
        from_attributes = True

class ManagerWarehouseCreate(BaseModel):
    audit_manager_id: int
    warehouse_id: int

class ManagerWarehouseResponse(BaseModel):
    id: int
    audit_manager_id: int
    warehouse_id: int
    is_active: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class TeamAssignmentCreate(BaseModel):
    audit_user_id: int
    warehouse_id: int
    # Admins assign on behalf of a manager; managers default to themselves
    audit_manager_id: Optional[int] = None

class TeamAssignmentResponse(BaseModel):
    id: int
    audit_user_id: int
    audit_manager_id: int
    warehouse_id: int
    is_active: bool
    created_at: Optional[datetime] = None
    removed_at: Optional[datetime] = None
    audit_user: Optional[UserRef] = None
    warehouse: Optional[WarehouseRef] = None
    class Config:
        from_attributes = True
