from io import BytesIO
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from app.api.dependencies import get_current_user
from app.core.database import get_async_session
from app.models.auth.user import User
from app.models.shared.enums import AuditReportType, ExportFormat
from app.services.audit.audit_report_service import AuditReportService
from app.utils.data_exporter import AuditReportExporter

router = APIRouter()

@router.get("/sessions/{session_id}/reports/{report_type}")
async def get_audit_report(
    session_id: int,
    report_type: AuditReportType,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get a report document: physical-quantity, variance or final-audit"""
    service = AuditReportService(db)
    return await service.compile_report(current_user, session_id, report_type)

@router.get("/sessions/{session_id}/reports/{report_type}/download")
async def download_audit_report(
    session_id: int,
    report_type: AuditReportType,
    format: ExportFormat = Query(ExportFormat.PDF),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Download a report as pdf, excel or csv"""
    service = AuditReportService(db)
    report = await service.compile_report(current_user, session_id, report_type)
    exported = AuditReportExporter().export(report, format)
    return StreamingResponse(
        BytesIO(exported.content),
        media_type=exported.media_type,
        headers={"Content-Disposition": f"attachment; filename={exported.filename}"}
    )
