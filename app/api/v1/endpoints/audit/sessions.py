from datetime import date
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from app.api.dependencies import get_current_user
from app.core.database import get_async_session
from app.models.auth.user import User
from app.schemas.common.pagination import PaginatedResponse
from app.schemas.audit.session import (
    AuditActionLogResponse, AuditSessionCancel, AuditSessionCreate, AuditSessionDetail,
    AuditSessionResponse, AuditSummary, CompletionReadiness
)
from app.services.audit.audit_session_service import AuditSessionService

router = APIRouter()

async def _session_detail(service: AuditSessionService, audit_session) -> AuditSessionDetail:
    summary = await service.get_summary(audit_session.id)
    return AuditSessionDetail(
        **AuditSessionResponse.model_validate(audit_session).model_dump(),
        summary=AuditSummary(**summary.as_dict())
    )

@router.post("/sessions", response_model=AuditSessionDetail, status_code=status.HTTP_201_CREATED)
async def create_audit_session(
    session_data: AuditSessionCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Create an audit session and snapshot the warehouse stock"""
    service = AuditSessionService(db)
    audit_session = await service.create_session(current_user, session_data)
    return await _session_detail(service, audit_session)

@router.get("/sessions", response_model=PaginatedResponse[AuditSessionResponse])
async def get_audit_sessions(
    page_index: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=1000),
    warehouse_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get audit sessions visible to the current user"""
    service = AuditSessionService(db)
    return await service.list_sessions(
        current_user,
        warehouse_id=warehouse_id,
        status=status,
        page_index=page_index,
        page_size=page_size
    )

@router.get("/sessions/history", response_model=PaginatedResponse[AuditSessionResponse])
async def get_audit_history(
    page_index: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get completed and cancelled audit sessions"""
    service = AuditSessionService(db)
    return await service.list_session_history(current_user, page_index=page_index, page_size=page_size)

@router.get("/warehouses/under-audit", response_model=List[int])
async def get_warehouses_under_audit(
    on_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get ids of warehouses in scope with a running audit on the given date (default today)"""
    service = AuditSessionService(db)
    return await service.get_warehouses_under_audit(current_user, on_date)

@router.get("/sessions/{session_id}", response_model=AuditSessionDetail)
async def get_audit_session(
    session_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get an audit session with its progress summary"""
    service = AuditSessionService(db)
    audit_session = await service.get_session(current_user, session_id)
    return await _session_detail(service, audit_session)

@router.post("/sessions/{session_id}/start", response_model=AuditSessionDetail)
async def start_audit_session(
    session_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Start counting on an open session"""
    service = AuditSessionService(db)
    audit_session = await service.start_session(current_user, session_id)
    return await _session_detail(service, audit_session)

@router.post("/sessions/{session_id}/start-reconciliation", response_model=AuditSessionDetail)
async def start_reconciliation(
    session_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Move a fully counted session to reconciliation"""
    service = AuditSessionService(db)
    audit_session = await service.advance_to_reconciliation(current_user, session_id)
    return await _session_detail(service, audit_session)

@router.post("/sessions/{session_id}/complete", response_model=AuditSessionDetail)
async def complete_audit_session(
    session_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Finalize a reconciled session"""
    service = AuditSessionService(db)
    audit_session = await service.complete_session(current_user, session_id)
    return await _session_detail(service, audit_session)

@router.post("/sessions/{session_id}/cancel", response_model=AuditSessionDetail)
async def cancel_audit_session(
    session_id: int,
    data: AuditSessionCancel,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Cancel a running session"""
    service = AuditSessionService(db)
    audit_session = await service.cancel_session(current_user, session_id, data.reason)
    return await _session_detail(service, audit_session)

@router.get("/sessions/{session_id}/can-complete", response_model=CompletionReadiness)
async def get_completion_readiness(
    session_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Check whether the session can move to reconciliation or be completed"""
    service = AuditSessionService(db)
    return await service.get_completion_readiness(current_user, session_id)

@router.get("/sessions/{session_id}/logs", response_model=List[AuditActionLogResponse])
async def get_audit_logs(
    session_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get the action log of a session, newest first"""
    service = AuditSessionService(db)
    return await service.list_action_logs(current_user, session_id)
