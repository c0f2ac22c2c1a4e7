import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import IntegrityError
from sqlalchemy import and_, desc, func, update
from app.auth.permissions import get_policy
from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError, ConflictError, IncompletePrecondition, InvalidStateError,
    NotFoundError, ValidationError
)
from app.models.audit.audit_action_log import AuditActionLog
from app.models.audit.audit_session import AuditSession
from app.models.audit.audit_verification import AuditVerification
from app.models.organization.warehouse import Warehouse
from app.models.shared.enums import AuditAction, AuditSessionStatus, UserRole, VerificationStatus
from app.schemas.audit.session import AuditSessionCreate
from app.schemas.audit.verification import PhysicalCountEntry
from app.services.audit.events import SessionTransitioned, VerificationRecorded, event_bus
from app.services.audit.reconciliation import SessionSummary, classify, summarize
from app.services.audit.team_service import AuditTeamService
from app.services.inventory.inventory_ledger import InventoryLedger

logger = logging.getLogger(__name__)

OPEN = AuditSessionStatus.OPEN.value
IN_PROGRESS = AuditSessionStatus.IN_PROGRESS.value
RECONCILIATION = AuditSessionStatus.RECONCILIATION.value
COMPLETED = AuditSessionStatus.COMPLETED.value
CANCELLED = AuditSessionStatus.CANCELLED.value

COUNTABLE_STATUSES = (OPEN, IN_PROGRESS)
ACTIVE_STATUSES = (OPEN, IN_PROGRESS, RECONCILIATION)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)

AUDIT_CODE_ATTEMPTS = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuditSessionService:
    """
    Audit session manager.

    Owns the session state machine (open -> in_progress -> reconciliation ->
    completed, or cancelled from any non-terminal state) and the single write
    path for physical counts. Status changes are compare-and-swap updates on
    the session row, so two managers racing on the same session cannot both
    win. Verification rows carry a version counter checked on every write.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.team = AuditTeamService(db)
        self.ledger = InventoryLedger(db)

    # =================== CREATE ===================

    async def create_session(self, current_user, session_data: AuditSessionCreate) -> AuditSession:
        """Open a session and snapshot the warehouse's on-hand quantities"""
        get_policy(current_user).require("session:create")
        user_id = current_user.id
        warehouse_id = session_data.warehouse_id

        warehouse = await self.db.execute(select(Warehouse).where(Warehouse.id == warehouse_id))
        if not warehouse.scalar_one_or_none():
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        await self.team.require_warehouse_scope(current_user, warehouse_id)

        if session_data.end_date < session_data.start_date:
            raise ValidationError("End date cannot be before start date")

        if not session_data.allow_overlap:
            running = await self.db.execute(
                select(AuditSession.audit_code).where(and_(
                    AuditSession.warehouse_id == warehouse_id,
                    AuditSession.status.in_(COUNTABLE_STATUSES)
                ))
            )
            running_code = running.scalars().first()
            if running_code:
                raise ConflictError(f"Warehouse {warehouse_id} already has an audit in progress ({running_code})")

        # One ledger read per line; these numbers are the baseline for the whole audit
        lines = await self.ledger.list_stock_lines(warehouse_id)
        snapshot = []
        for item_id, batch_number in lines:
            quantity = await self.ledger.get_current_quantity(warehouse_id, item_id, batch_number)
            snapshot.append((item_id, batch_number, quantity))

        for attempt in range(1, AUDIT_CODE_ATTEMPTS + 1):
            audit_code = await self._generate_audit_code()
            audit_session = AuditSession(
                audit_code=audit_code,
                title=session_data.title,
                warehouse_id=warehouse_id,
                start_date=session_data.start_date,
                end_date=session_data.end_date,
                status=OPEN,
                notes=session_data.notes,
                created_by=user_id
            )
            audit_session.verifications = [
                AuditVerification(
                    serial_number=serial,
                    item_id=item_id,
                    batch_number=batch_number,
                    system_quantity=quantity,
                    status=VerificationStatus.PENDING.value,
                    created_by=user_id
                )
                for serial, (item_id, batch_number, quantity) in enumerate(snapshot, start=1)
            ]
            audit_session.action_logs = [
                AuditActionLog(
                    action=AuditAction.SESSION_CREATED.value,
                    performed_by=user_id,
                    new_value={"status": OPEN, "audit_code": audit_code, "total_items": len(snapshot)},
                    notes=session_data.notes
                )
            ]
            self.db.add(audit_session)
            try:
                await self.db.commit()
                break
            except IntegrityError:
                await self.db.rollback()
                logger.warning(f"Audit code {audit_code} taken, retrying ({attempt}/{AUDIT_CODE_ATTEMPTS})")
        else:
            raise ConflictError("Could not allocate a unique audit code, please retry")

        session_id = audit_session.id
        logger.info(f"📋 Audit session {audit_code} created for warehouse {warehouse_id} with {len(snapshot)} items by user {user_id}")
        await event_bus.publish(SessionTransitioned(session_id, None, OPEN, user_id))
        return await self.get_session_by_id(session_id)

    async def _generate_audit_code(self) -> str:
        """Generate the next audit code for the current year, e.g. AUD-2024-0007"""
        prefix = f"{settings.AUDIT_CODE_PREFIX}-{date.today().year}-"
        result = await self.db.execute(
            select(func.max(AuditSession.audit_code)).where(AuditSession.audit_code.like(f"{prefix}%"))
        )
        last_code = result.scalar()
        sequence = int(last_code.rsplit("-", 1)[-1]) + 1 if last_code else 1
        return f"{prefix}{sequence:04d}"

    # =================== READ ===================

    async def get_session_by_id(self, session_id: int) -> Optional[AuditSession]:
        result = await self.db.execute(
            select(AuditSession)
            .options(selectinload(AuditSession.warehouse))
            .where(AuditSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_session(self, current_user, session_id: int) -> AuditSession:
        """Get a session the caller is allowed to see"""
        get_policy(current_user).require("session:view")
        audit_session = await self._get_session_or_404(session_id)
        await self.team.require_warehouse_scope(current_user, audit_session.warehouse_id)
        return audit_session

    async def get_summary(self, session_id: int) -> SessionSummary:
        """Aggregates are always derived from the verification rows"""
        result = await self.db.execute(
            select(AuditVerification.status, AuditVerification.physical_quantity)
            .where(AuditVerification.audit_session_id == session_id)
        )
        return summarize(result.all())

    async def list_sessions(
        self,
        current_user,
        warehouse_id: Optional[int] = None,
        status: Optional[str] = None,
        page_index: int = 1,
        page_size: Optional[int] = None
    ) -> Dict[str, Any]:
        """Sessions in the caller's scope; audit users only see running audits"""
        get_policy(current_user).require("session:view")

        conditions = []
        visible = await self.team.visible_warehouse_ids(current_user)
        if visible is not None:
            conditions.append(AuditSession.warehouse_id.in_(visible))
        if current_user.role == UserRole.AUDIT_USER.value:
            conditions.append(AuditSession.status.in_(ACTIVE_STATUSES))
        if warehouse_id:
            conditions.append(AuditSession.warehouse_id == warehouse_id)
        if status:
            conditions.append(AuditSession.status == status)

        return await self._paginate_sessions(conditions, page_index, page_size)

    async def list_session_history(self, current_user, page_index: int = 1, page_size: Optional[int] = None) -> Dict[str, Any]:
        """Completed and cancelled sessions in the caller's scope"""
        get_policy(current_user).require("session:view")

        conditions = [AuditSession.status.in_(TERMINAL_STATUSES)]
        visible = await self.team.visible_warehouse_ids(current_user)
        if visible is not None:
            conditions.append(AuditSession.warehouse_id.in_(visible))

        return await self._paginate_sessions(conditions, page_index, page_size)

    async def _paginate_sessions(self, conditions: List, page_index: int, page_size: Optional[int]) -> Dict[str, Any]:
        page_size = page_size or settings.DEFAULT_PAGE_SIZE
        query = (
            select(AuditSession)
            .options(selectinload(AuditSession.warehouse))
            .order_by(desc(AuditSession.created_at), desc(AuditSession.id))
        )
        if conditions:
            query = query.where(and_(*conditions))

        # Get total count
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        skip = (page_index - 1) * page_size
        result = await self.db.execute(query.offset(skip).limit(page_size))

        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total,
            "data": list(result.scalars().all())
        }

    async def list_verifications(self, current_user, session_id: int, status: Optional[str] = None) -> List[AuditVerification]:
        """Verification rows in snapshot order. status=confirmed means any counted row"""
        audit_session = await self.get_session(current_user, session_id)

        query = (
            select(AuditVerification)
            .options(
                selectinload(AuditVerification.item),
                selectinload(AuditVerification.confirmer)
            )
            .where(AuditVerification.audit_session_id == audit_session.id)
        )
        if status == VerificationStatus.CONFIRMED.value:
            query = query.where(AuditVerification.physical_quantity.is_not(None))
        elif status:
            query = query.where(AuditVerification.status == status)

        result = await self.db.execute(query.order_by(AuditVerification.serial_number))
        return list(result.scalars().all())

    async def list_action_logs(self, current_user, session_id: int) -> List[AuditActionLog]:
        audit_session = await self.get_session(current_user, session_id)
        result = await self.db.execute(
            select(AuditActionLog)
            .where(AuditActionLog.audit_session_id == audit_session.id)
            .order_by(desc(AuditActionLog.performed_at), desc(AuditActionLog.id))
        )
        return list(result.scalars().all())

    async def get_completion_readiness(self, current_user, session_id: int) -> Dict[str, Any]:
        audit_session = await self.get_session(current_user, session_id)
        summary = await self.get_summary(session_id)
        return {
            "status": audit_session.status,
            "total_items": summary.total_items,
            "pending_count": summary.pending_items,
            "discrepancy_count": summary.discrepancy_items,
            "can_advance": audit_session.status in COUNTABLE_STATUSES and summary.pending_items == 0,
            "can_complete": audit_session.status == RECONCILIATION,
        }

    async def get_warehouses_under_audit(self, current_user, on_date: Optional[date] = None) -> List[int]:
        """Warehouses in the caller's scope with a running audit whose date window covers on_date"""
        get_policy(current_user).require("session:view")
        on_date = on_date or date.today()

        conditions = [
            AuditSession.status.in_(COUNTABLE_STATUSES),
            AuditSession.start_date <= on_date,
            AuditSession.end_date >= on_date
        ]
        visible = await self.team.visible_warehouse_ids(current_user)
        if visible is not None:
            conditions.append(AuditSession.warehouse_id.in_(visible))

        result = await self.db.execute(
            select(AuditSession.warehouse_id)
            .where(and_(*conditions))
            .distinct()
            .order_by(AuditSession.warehouse_id)
        )
        return list(result.scalars().all())

    # =================== PHYSICAL COUNTS ===================

    async def record_physical_count(
        self,
        current_user,
        session_id: int,
        verification_id: int,
        entry: PhysicalCountEntry
    ) -> AuditVerification:
        """
        Enter the physical quantity for one verification row.

        The only write path for physical_quantity, discrepancy and status. The
        first count on an open session moves it to in_progress. Re-entering a
        row last entered by someone else is an override and needs a manager.
        """
        policy = get_policy(current_user)
        policy.require("verification:record")
        user_id = current_user.id

        if entry.physical_quantity < 0:
            raise ValidationError("Physical quantity cannot be negative")

        audit_session = await self._get_session_or_404(session_id)
        await self.team.require_warehouse_scope(current_user, audit_session.warehouse_id)
        verification = await self._get_verification_or_404(session_id, verification_id)

        if audit_session.status not in COUNTABLE_STATUSES:
            raise InvalidStateError(f"Cannot record counts on a session that is {audit_session.status}")

        # The current value belongs to whoever entered it last
        entered_by = verification.override_by or verification.confirmed_by
        is_override = verification.physical_quantity is not None and entered_by != user_id
        revises_override = is_override or (verification.override_by is not None and verification.override_by == user_id)
        if is_override:
            if policy.cannot("verification:override"):
                logger.warning(f"User {user_id} tried to overwrite count on verification {verification_id} entered by {entered_by}")
                raise AuthorizationError("This item was counted by another user; only an audit manager can override it")
            if not (entry.override_notes or "").strip():
                raise ValidationError("Override notes are required when changing another user's count")

        previous_value = self._verification_values(verification)
        started = await self._claim_session_for_count(session_id, user_id)

        status, discrepancy = classify(verification.system_quantity, entry.physical_quantity)
        now = _now()
        verification.physical_quantity = entry.physical_quantity
        verification.discrepancy = discrepancy
        verification.status = status.value
        if entry.notes is not None:
            verification.notes = entry.notes
        if revises_override:
            verification.override_by = user_id
            verification.override_at = now
            if (entry.override_notes or "").strip():
                verification.override_notes = entry.override_notes
        else:
            verification.confirmed_by = user_id
            verification.confirmed_at = now
            verification.override_by = None
            verification.override_at = None
            verification.override_notes = None
        verification.updated_by = user_id

        action = AuditAction.COUNT_OVERRIDDEN if revises_override else AuditAction.COUNT_RECORDED
        self.db.add(AuditActionLog(
            audit_session_id=session_id,
            audit_verification_id=verification_id,
            action=action.value,
            performed_by=user_id,
            previous_value=previous_value,
            new_value=self._verification_values(verification),
            notes=verification.override_notes if revises_override else entry.notes
        ))

        try:
            await self.db.flush()
        except StaleDataError:
            await self.db.rollback()
            logger.warning(f"Concurrent update on verification {verification_id} in session {session_id}")
            raise ConflictError(f"Verification {verification_id} was changed by someone else, reload and retry")
        await self.db.commit()

        logger.info(
            f"Count {entry.physical_quantity} recorded on verification {verification_id} "
            f"(session {session_id}) by user {user_id}: {status.value}"
            + (" [override]" if revises_override else "")
        )
        if started:
            await event_bus.publish(SessionTransitioned(session_id, OPEN, IN_PROGRESS, user_id))
        await event_bus.publish(VerificationRecorded(
            session_id=session_id,
            verification_id=verification_id,
            status=status.value,
            discrepancy=discrepancy,
            recorded_by=user_id,
            is_override=revises_override
        ))

        return await self._get_verification_or_404(session_id, verification_id)

    async def _claim_session_for_count(self, session_id: int, user_id: int) -> bool:
        """
        Lock the session row for this count. Returns True when this count
        moved the session from open to in_progress.
        """
        result = await self.db.execute(
            update(AuditSession)
            .where(and_(AuditSession.id == session_id, AuditSession.status == OPEN))
            .values(status=IN_PROGRESS, started_at=_now(), updated_by=user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self.db.add(AuditActionLog(
                audit_session_id=session_id,
                action=AuditAction.SESSION_STARTED.value,
                performed_by=user_id,
                previous_value={"status": OPEN},
                new_value={"status": IN_PROGRESS},
                notes="Started by first physical count"
            ))
            return True

        result = await self.db.execute(
            update(AuditSession)
            .where(and_(AuditSession.id == session_id, AuditSession.status == IN_PROGRESS))
            .values(updated_by=user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return False

        await self.db.rollback()
        current = await self._current_status(session_id)
        raise InvalidStateError(f"Cannot record counts on a session that is {current}")

    # =================== TRANSITIONS ===================

    async def start_session(self, current_user, session_id: int) -> AuditSession:
        """Explicitly move an open session to in_progress"""
        get_policy(current_user).require("session:start")
        return await self._transition(
            current_user, session_id,
            allowed_from=(OPEN,),
            to_status=IN_PROGRESS,
            action=AuditAction.SESSION_STARTED,
            values={"started_at": _now()}
        )

    async def advance_to_reconciliation(self, current_user, session_id: int) -> AuditSession:
        """Move to reconciliation once every row has a physical count"""
        get_policy(current_user).require("session:transition")

        async def _all_counted():
            summary = await self.get_summary(session_id)
            if summary.pending_items > 0:
                raise IncompletePrecondition(summary.pending_items)

        return await self._transition(
            current_user, session_id,
            allowed_from=COUNTABLE_STATUSES,
            to_status=RECONCILIATION,
            action=AuditAction.RECONCILIATION_STARTED,
            values={"reconciliation_at": _now()},
            precondition=_all_counted
        )

    async def complete_session(self, current_user, session_id: int) -> AuditSession:
        """Finalize a reconciled session; no further edits after this"""
        get_policy(current_user).require("session:transition")
        return await self._transition(
            current_user, session_id,
            allowed_from=(RECONCILIATION,),
            to_status=COMPLETED,
            action=AuditAction.SESSION_COMPLETED,
            values={"completed_by": current_user.id, "completed_at": _now()}
        )

    async def cancel_session(self, current_user, session_id: int, reason: str) -> AuditSession:
        get_policy(current_user).require("session:transition")
        if not (reason or "").strip():
            raise ValidationError("A reason is required to cancel an audit")
        return await self._transition(
            current_user, session_id,
            allowed_from=ACTIVE_STATUSES,
            to_status=CANCELLED,
            action=AuditAction.SESSION_CANCELLED,
            values={"cancelled_by": current_user.id, "cancelled_at": _now(), "cancel_reason": reason.strip()},
            notes=reason.strip()
        )

    async def _transition(
        self,
        current_user,
        session_id: int,
        allowed_from: Iterable[str],
        to_status: str,
        action: AuditAction,
        values: Optional[Dict[str, Any]] = None,
        precondition=None,
        notes: Optional[str] = None
    ) -> AuditSession:
        user_id = current_user.id
        audit_session = await self._get_session_or_404(session_id)
        await self.team.require_warehouse_scope(current_user, audit_session.warehouse_id)

        from_status = audit_session.status
        if from_status not in allowed_from:
            raise InvalidStateError(f"Cannot move session {audit_session.audit_code} from {from_status} to {to_status}")
        if precondition:
            await precondition()

        await self._compare_and_set_status(session_id, allowed_from, to_status, user_id, values)
        self.db.add(AuditActionLog(
            audit_session_id=session_id,
            action=action.value,
            performed_by=user_id,
            previous_value={"status": from_status},
            new_value={"status": to_status},
            notes=notes
        ))
        await self.db.commit()

        logger.info(f"🔄 Audit session {session_id}: {from_status} -> {to_status} by user {user_id}")
        await event_bus.publish(SessionTransitioned(session_id, from_status, to_status, user_id))
        return await self.get_session_by_id(session_id)

    async def _compare_and_set_status(
        self,
        session_id: int,
        allowed_from: Iterable[str],
        to_status: str,
        user_id: int,
        values: Optional[Dict[str, Any]] = None
    ):
        """Single guarded UPDATE; loses cleanly if someone else moved the session first"""
        result = await self.db.execute(
            update(AuditSession)
            .where(and_(AuditSession.id == session_id, AuditSession.status.in_(tuple(allowed_from))))
            .values(status=to_status, updated_by=user_id, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            current = await self._current_status(session_id)
            logger.warning(f"Lost transition race on session {session_id}: wanted {to_status}, found {current}")
            raise InvalidStateError(f"Session is already {current}, cannot move it to {to_status}")

    # =================== HELPERS ===================

    async def _current_status(self, session_id: int) -> Optional[str]:
        result = await self.db.execute(select(AuditSession.status).where(AuditSession.id == session_id))
        return result.scalar_one_or_none()

    async def _get_session_or_404(self, session_id: int) -> AuditSession:
        audit_session = await self.get_session_by_id(session_id)
        if not audit_session:
            raise NotFoundError(f"Audit session {session_id} not found")
        return audit_session

    async def _get_verification_or_404(self, session_id: int, verification_id: int) -> AuditVerification:
        result = await self.db.execute(
            select(AuditVerification)
            .options(
                selectinload(AuditVerification.item),
                selectinload(AuditVerification.confirmer)
            )
            .where(and_(
                AuditVerification.id == verification_id,
                AuditVerification.audit_session_id == session_id
            ))
            .execution_options(populate_existing=True)
        )
        verification = result.scalar_one_or_none()
        if not verification:
            raise NotFoundError(f"Verification {verification_id} not found in session {session_id}")
        return verification

    @staticmethod
    def _verification_values(verification: AuditVerification) -> Dict[str, Any]:
        return {
            "physical_quantity": verification.physical_quantity,
            "discrepancy": verification.discrepancy,
            "status": verification.status,
            "confirmed_by": verification.confirmed_by,
            "override_by": verification.override_by,
            "notes": verification.notes,
        }
