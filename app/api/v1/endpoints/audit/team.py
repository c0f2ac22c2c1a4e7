from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from app.api.dependencies import get_current_user
from app.core.database import get_async_session
from app.models.auth.user import User
from app.schemas.audit.team import (
    ManagerWarehouseCreate, ManagerWarehouseResponse, TeamAssignmentCreate,
    TeamAssignmentResponse, UserRef, WarehouseRef
)
from app.services.audit.team_service import AuditTeamService

router = APIRouter()

# =================== MANAGER WAREHOUSES ===================

@router.post("/manager-warehouses", response_model=ManagerWarehouseResponse, status_code=status.HTTP_201_CREATED)
async def assign_warehouse_to_manager(
    data: ManagerWarehouseCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Assign a warehouse to an audit manager (admin only)"""
    service = AuditTeamService(db)
    return await service.assign_warehouse_to_manager(current_user, data.audit_manager_id, data.warehouse_id)

@router.delete("/manager-warehouses/{manager_id}/{warehouse_id}")
async def remove_warehouse_from_manager(
    manager_id: int,
    warehouse_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Remove a warehouse from an audit manager"""
    service = AuditTeamService(db)
    await service.remove_warehouse_from_manager(current_user, manager_id, warehouse_id)
    return {"message": "Warehouse removed from audit manager successfully"}

@router.get("/managers/{manager_id}/warehouses", response_model=List[WarehouseRef])
async def get_manager_warehouses(
    manager_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get warehouses managed by an audit manager"""
    service = AuditTeamService(db)
    return await service.list_manager_warehouses(current_user, manager_id)

# =================== TEAM ===================

@router.post("/team", response_model=TeamAssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_team_member(
    data: TeamAssignmentCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Assign an audit user to a warehouse"""
    service = AuditTeamService(db)
    return await service.assign_team_member(
        current_user,
        audit_user_id=data.audit_user_id,
        warehouse_id=data.warehouse_id,
        audit_manager_id=data.audit_manager_id
    )

@router.delete("/team/{assignment_id}", response_model=TeamAssignmentResponse)
async def remove_team_member(
    assignment_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Deactivate a team assignment"""
    service = AuditTeamService(db)
    return await service.remove_team_member(current_user, assignment_id)

@router.get("/team", response_model=List[TeamAssignmentResponse])
async def get_team(
    manager_id: Optional[int] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get active team assignments"""
    service = AuditTeamService(db)
    return await service.list_team(current_user, manager_id=manager_id, warehouse_id=warehouse_id)

@router.get("/available-users", response_model=List[UserRef])
async def get_available_audit_users(
    warehouse_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get audit users not yet assigned to the warehouse"""
    service = AuditTeamService(db)
    return await service.list_available_audit_users(current_user, warehouse_id)

@router.get("/users/{user_id}/warehouses", response_model=List[WarehouseRef])
async def get_assigned_warehouses(
    user_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get warehouses an audit user is assigned to"""
    service = AuditTeamService(db)
    return await service.list_assigned_warehouses(current_user, user_id)
