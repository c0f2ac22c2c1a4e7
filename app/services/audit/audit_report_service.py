import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from app.auth.permissions import get_policy
from app.core.config import settings
from app.core.exceptions import NotFoundError, ReportNotAvailableError, ValidationError
from app.models.audit.audit_session import AuditSession
from app.models.audit.audit_verification import AuditVerification
from app.models.auth.user import User
from app.models.shared.enums import AuditReportType, AuditSessionStatus, VerificationStatus
from app.schemas.audit.report import (
    NO_REASON, NOT_ENTERED, AuditReport, FinalAuditReport, FinalAuditRow, PhysicalQuantityReport,
    PhysicalQuantityRow, ReportHeader, SignatureSlot, VarianceReport, VarianceRow, VarianceSummary
)
from app.schemas.audit.session import AuditSummary
from app.services.audit.reconciliation import summarize
from app.services.audit.team_service import AuditTeamService

logger = logging.getLogger(__name__)

REPORT_TITLES = {
    AuditReportType.PHYSICAL_QUANTITY: "Physical Quantity Entry Report",
    AuditReportType.VARIANCE: "Variance Report",
    AuditReportType.FINAL_AUDIT: "Final Audit Report",
}

# report type -> session statuses in which it can be produced
REPORT_AVAILABILITY = {
    AuditReportType.PHYSICAL_QUANTITY: (AuditSessionStatus.RECONCILIATION.value, AuditSessionStatus.COMPLETED.value),
    AuditReportType.VARIANCE: (AuditSessionStatus.RECONCILIATION.value, AuditSessionStatus.COMPLETED.value),
    AuditReportType.FINAL_AUDIT: (AuditSessionStatus.COMPLETED.value,),
}


class AuditReportService:
    """
    Report compiler. Builds read-only report documents from a session's
    verification rows; rendering to files is done by AuditReportExporter.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.team = AuditTeamService(db)

    async def compile_report(self, current_user, session_id: int, report_type) -> AuditReport:
        try:
            report_type = AuditReportType(report_type)
        except ValueError:
            raise ValidationError(f"Unknown report type: {report_type}")

        get_policy(current_user).require("report:view")
        audit_session = await self._get_session(session_id)
        await self.team.require_warehouse_scope(current_user, audit_session.warehouse_id)

        if audit_session.status not in REPORT_AVAILABILITY[report_type]:
            raise ReportNotAvailableError(
                f"{REPORT_TITLES[report_type]} is not available while the audit is {audit_session.status}"
            )

        rows = await self._get_rows(session_id)
        header = self._build_header(audit_session, report_type)

        if report_type == AuditReportType.PHYSICAL_QUANTITY:
            report = self.build_physical_quantity_report(header, rows)
        elif report_type == AuditReportType.VARIANCE:
            report = self.build_variance_report(header, rows)
        else:
            completer = await self._get_user(audit_session.completed_by) if audit_session.completed_by else None
            report = self.build_final_audit_report(header, rows, audit_session, completer)

        logger.info(f"📊 {REPORT_TITLES[report_type]} generated for {audit_session.audit_code} by user {current_user.id}")
        return report

    # =================== BUILDERS ===================

    @staticmethod
    def build_physical_quantity_report(header: ReportHeader, rows: List[AuditVerification]) -> PhysicalQuantityReport:
        report_rows = [
            PhysicalQuantityRow(
                serial=row.serial_number,
                item_code=row.item.item_code,
                item_name=row.item.name,
                batch_number=row.batch_number,
                physical_quantity=row.physical_quantity if row.physical_quantity is not None else NOT_ENTERED,
                confirmer_name=row.confirmer.full_name if row.confirmer else None,
                confirmed_at=row.confirmed_at,
                notes=row.notes
            )
            for row in rows
        ]
        return PhysicalQuantityReport(
            header=header,
            rows=report_rows,
            total_items=len(report_rows),
            counted_items=sum(1 for row in rows if row.physical_quantity is not None)
        )

    @staticmethod
    def build_variance_report(header: ReportHeader, rows: List[AuditVerification]) -> VarianceReport:
        def _variance_rows(status: VerificationStatus) -> List[VarianceRow]:
            selected = [row for row in rows if row.status == status.value]
            return [
                VarianceRow(
                    serial=index,
                    item_code=row.item.item_code,
                    item_name=row.item.name,
                    batch_number=row.batch_number,
                    system_quantity=row.system_quantity,
                    physical_quantity=row.physical_quantity,
                    discrepancy=abs(row.discrepancy),
                    notes=row.notes or NO_REASON
                )
                for index, row in enumerate(selected, start=1)
            ]

        short_items = _variance_rows(VerificationStatus.SHORT)
        excess_items = _variance_rows(VerificationStatus.EXCESS)
        return VarianceReport(
            header=header,
            short_items=short_items,
            excess_items=excess_items,
            summary=VarianceSummary(
                total_variances=len(short_items) + len(excess_items),
                short_count=len(short_items),
                excess_count=len(excess_items)
            )
        )

    @staticmethod
    def build_final_audit_report(
        header: ReportHeader,
        rows: List[AuditVerification],
        audit_session: AuditSession,
        completer: Optional[User] = None
    ) -> FinalAuditReport:
        report_rows = [
            FinalAuditRow(
                serial=row.serial_number,
                item_code=row.item.item_code,
                item_name=row.item.name,
                batch_number=row.batch_number,
                system_quantity=row.system_quantity,
                physical_quantity=row.physical_quantity,
                variance=row.discrepancy,
                status=row.status,
                verified_by=row.confirmer.full_name if row.confirmer else None,
                notes=row.notes
            )
            for row in rows
        ]
        signatures = [
            SignatureSlot(
                role="Audit Manager",
                name=completer.full_name if completer else None,
                signed_at=audit_session.completed_at
            ),
            SignatureSlot(role="Warehouse Manager"),
        ]
        return FinalAuditReport(
            header=header,
            rows=report_rows,
            summary=AuditSummary(**summarize(rows).as_dict()),
            signatures=signatures
        )

    # =================== HELPERS ===================

    @staticmethod
    def _build_header(audit_session: AuditSession, report_type: AuditReportType) -> ReportHeader:
        return ReportHeader(
            report_type=report_type.value,
            title=REPORT_TITLES[report_type],
            organization_name=settings.ORGANIZATION_NAME,
            audit_code=audit_session.audit_code,
            audit_title=audit_session.title,
            warehouse_code=audit_session.warehouse.code,
            warehouse_name=audit_session.warehouse.name,
            status=audit_session.status,
            start_date=audit_session.start_date,
            end_date=audit_session.end_date,
            generated_at=datetime.now(timezone.utc)
        )

    async def _get_session(self, session_id: int) -> AuditSession:
        result = await self.db.execute(
            select(AuditSession)
            .options(selectinload(AuditSession.warehouse))
            .where(AuditSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        audit_session = result.scalar_one_or_none()
        if not audit_session:
            raise NotFoundError(f"Audit session {session_id} not found")
        return audit_session

    async def _get_rows(self, session_id: int) -> List[AuditVerification]:
        result = await self.db.execute(
            select(AuditVerification)
            .options(
                selectinload(AuditVerification.item),
                selectinload(AuditVerification.confirmer)
            )
            .where(AuditVerification.audit_session_id == session_id)
            .order_by(AuditVerification.serial_number)
        )
        return list(result.scalars().all())

    async def _get_user(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()
