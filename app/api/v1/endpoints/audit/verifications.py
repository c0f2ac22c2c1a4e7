from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from app.api.dependencies import get_current_user
from app.core.database import get_async_session
from app.models.auth.user import User
from app.schemas.audit.verification import AuditVerificationResponse, PhysicalCountEntry
from app.services.audit.audit_session_service import AuditSessionService

router = APIRouter()

@router.get("/sessions/{session_id}/verifications", response_model=List[AuditVerificationResponse])
async def get_verifications(
    session_id: int,
    status: Optional[str] = Query(None, description="pending, confirmed, complete, short or excess"),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get verification rows of a session in serial order"""
    service = AuditSessionService(db)
    return await service.list_verifications(current_user, session_id, status)

@router.post("/sessions/{session_id}/verifications/{verification_id}/count", response_model=AuditVerificationResponse)
async def record_physical_count(
    session_id: int,
    verification_id: int,
    entry: PhysicalCountEntry,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Enter the physical quantity for one item"""
    service = AuditSessionService(db)
    return await service.record_physical_count(current_user, session_id, verification_id, entry)
