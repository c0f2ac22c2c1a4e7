import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import and_, exists
from app.auth.permissions import get_policy
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.audit.audit_manager_warehouse import AuditManagerWarehouse
from app.models.audit.audit_team_assignment import AuditTeamAssignment
from app.models.auth.user import User
from app.models.organization.warehouse import Warehouse
from app.models.shared.enums import UserRole

logger = logging.getLogger(__name__)


class AuditTeamService:
    """
    Team directory: which audit managers run which warehouses, and which
    audit users verify for them. Also answers the warehouse-scope questions
    the session manager asks before every operation.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # =================== SCOPE ===================

    async def is_warehouse_manager(self, manager_id: int, warehouse_id: int) -> bool:
        result = await self.db.execute(
            select(exists().where(and_(
                AuditManagerWarehouse.audit_manager_id == manager_id,
                AuditManagerWarehouse.warehouse_id == warehouse_id,
                AuditManagerWarehouse.is_active == True
            )))
        )
        return bool(result.scalar())

    async def get_warehouse_manager_ids(self, warehouse_id: int) -> List[int]:
        result = await self.db.execute(
            select(AuditManagerWarehouse.audit_manager_id)
            .where(and_(
                AuditManagerWarehouse.warehouse_id == warehouse_id,
                AuditManagerWarehouse.is_active == True
            ))
            .order_by(AuditManagerWarehouse.id)
        )
        return list(result.scalars().all())

    async def has_active_assignment(self, audit_user_id: int, warehouse_id: int) -> bool:
        result = await self.db.execute(
            select(exists().where(and_(
                AuditTeamAssignment.audit_user_id == audit_user_id,
                AuditTeamAssignment.warehouse_id == warehouse_id,
                AuditTeamAssignment.is_active == True
            )))
        )
        return bool(result.scalar())

    async def can_access_warehouse(self, current_user, warehouse_id: int) -> bool:
        role = current_user.role
        if role == UserRole.ADMIN.value:
            return True
        if role == UserRole.AUDIT_MANAGER.value:
            return await self.is_warehouse_manager(current_user.id, warehouse_id)
        if role == UserRole.AUDIT_USER.value:
            return await self.has_active_assignment(current_user.id, warehouse_id)
        return False

    async def require_warehouse_scope(self, current_user, warehouse_id: int):
        if not await self.can_access_warehouse(current_user, warehouse_id):
            logger.warning(f"User {current_user.id} ({current_user.role}) has no scope on warehouse {warehouse_id}")
            raise AuthorizationError(f"You are not assigned to warehouse {warehouse_id}")

    async def visible_warehouse_ids(self, current_user) -> Optional[List[int]]:
        """Warehouse ids the user may see; None means unrestricted"""
        role = current_user.role
        if role == UserRole.ADMIN.value:
            return None
        if role == UserRole.AUDIT_MANAGER.value:
            query = select(AuditManagerWarehouse.warehouse_id).where(and_(
                AuditManagerWarehouse.audit_manager_id == current_user.id,
                AuditManagerWarehouse.is_active == True
            ))
        else:
            query = select(AuditTeamAssignment.warehouse_id).where(and_(
                AuditTeamAssignment.audit_user_id == current_user.id,
                AuditTeamAssignment.is_active == True
            ))
        result = await self.db.execute(query.distinct())
        return list(result.scalars().all())

    # =================== MANAGER WAREHOUSES ===================

    async def assign_warehouse_to_manager(self, current_user, manager_id: int, warehouse_id: int) -> AuditManagerWarehouse:
        get_policy(current_user).require("manager_warehouse:assign")
        admin_id = current_user.id

        manager = await self._get_user(manager_id)
        if not manager or not manager.is_active or manager.role != UserRole.AUDIT_MANAGER.value:
            raise ValidationError(f"User {manager_id} is not an active audit manager")
        await self._get_warehouse_or_404(warehouse_id)

        if await self.is_warehouse_manager(manager_id, warehouse_id):
            raise ConflictError(f"Warehouse {warehouse_id} is already assigned to manager {manager_id}")

        assignment = AuditManagerWarehouse(
            audit_manager_id=manager_id,
            warehouse_id=warehouse_id,
            is_active=True,
            created_by=admin_id
        )
        self.db.add(assignment)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Warehouse {warehouse_id} is already assigned to manager {manager_id}")
        await self.db.refresh(assignment)

        logger.info(f"🏬 Warehouse {warehouse_id} assigned to audit manager {manager_id} by {admin_id}")
        return assignment

    async def remove_warehouse_from_manager(self, current_user, manager_id: int, warehouse_id: int) -> bool:
        get_policy(current_user).require("manager_warehouse:assign")

        result = await self.db.execute(
            select(AuditManagerWarehouse).where(and_(
                AuditManagerWarehouse.audit_manager_id == manager_id,
                AuditManagerWarehouse.warehouse_id == warehouse_id,
                AuditManagerWarehouse.is_active == True
            ))
        )
        assignment = result.scalar_one_or_none()
        if not assignment:
            raise NotFoundError(f"No active assignment of warehouse {warehouse_id} to manager {manager_id}")

        assignment.is_active = False
        assignment.updated_by = current_user.id
        await self.db.commit()

        logger.info(f"Warehouse {warehouse_id} removed from audit manager {manager_id}")
        return True

    async def list_manager_warehouses(self, current_user, manager_id: int) -> List[Warehouse]:
        if not get_policy(current_user).is_admin and current_user.id != manager_id:
            raise AuthorizationError("You can only view your own warehouses")

        result = await self.db.execute(
            select(Warehouse)
            .join(AuditManagerWarehouse, AuditManagerWarehouse.warehouse_id == Warehouse.id)
            .where(and_(
                AuditManagerWarehouse.audit_manager_id == manager_id,
                AuditManagerWarehouse.is_active == True
            ))
            .order_by(Warehouse.code)
        )
        return list(result.scalars().all())

    # =================== TEAM ===================

    async def assign_team_member(
        self,
        current_user,
        audit_user_id: int,
        warehouse_id: int,
        audit_manager_id: Optional[int] = None
    ) -> AuditTeamAssignment:
        """Give an audit user verification rights on a warehouse"""
        policy = get_policy(current_user)
        policy.require("team:manage")
        caller_id = current_user.id

        await self._get_warehouse_or_404(warehouse_id)

        if policy.is_admin:
            if audit_manager_id:
                if not await self.is_warehouse_manager(audit_manager_id, warehouse_id):
                    raise ValidationError(f"User {audit_manager_id} does not manage warehouse {warehouse_id}")
                manager_id = audit_manager_id
            else:
                manager_ids = await self.get_warehouse_manager_ids(warehouse_id)
                if len(manager_ids) != 1:
                    raise ValidationError(
                        f"Warehouse {warehouse_id} has {len(manager_ids)} audit managers; pass audit_manager_id"
                    )
                manager_id = manager_ids[0]
        else:
            if audit_manager_id and audit_manager_id != caller_id:
                raise AuthorizationError("Audit managers can only assign team members for themselves")
            if not await self.is_warehouse_manager(caller_id, warehouse_id):
                logger.warning(f"Manager {caller_id} tried to assign a team member on unmanaged warehouse {warehouse_id}")
                raise AuthorizationError(f"You do not manage warehouse {warehouse_id}")
            manager_id = caller_id

        audit_user = await self._get_user(audit_user_id)
        if not audit_user or not audit_user.is_active or audit_user.role != UserRole.AUDIT_USER.value:
            raise ValidationError(f"User {audit_user_id} is not an active audit user")

        if await self.has_active_assignment(audit_user_id, warehouse_id):
            raise ConflictError(f"User {audit_user_id} is already assigned to warehouse {warehouse_id}")

        assignment = AuditTeamAssignment(
            audit_user_id=audit_user_id,
            audit_manager_id=manager_id,
            warehouse_id=warehouse_id,
            is_active=True,
            created_by=caller_id
        )
        self.db.add(assignment)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with another assignment of the same user
            await self.db.rollback()
            logger.warning(f"Duplicate active assignment for user {audit_user_id} on warehouse {warehouse_id}")
            raise ConflictError(f"User {audit_user_id} is already assigned to warehouse {warehouse_id}")

        logger.info(f"👥 Audit user {audit_user_id} assigned to warehouse {warehouse_id} under manager {manager_id}")
        return await self.get_assignment(assignment.id)

    async def remove_team_member(self, current_user, assignment_id: int) -> AuditTeamAssignment:
        """Soft-deactivate an assignment; history stays for attribution"""
        policy = get_policy(current_user)
        policy.require("team:manage")

        assignment = await self.get_assignment(assignment_id)
        if not assignment:
            raise NotFoundError(f"Team assignment {assignment_id} not found")

        if not policy.is_admin and not await self.is_warehouse_manager(current_user.id, assignment.warehouse_id):
            raise AuthorizationError(f"You do not manage warehouse {assignment.warehouse_id}")

        if not assignment.is_active:
            return assignment

        assignment.is_active = False
        assignment.removed_at = datetime.now(timezone.utc)
        assignment.updated_by = current_user.id
        await self.db.commit()

        logger.info(f"Audit user {assignment.audit_user_id} removed from warehouse {assignment.warehouse_id}")
        return assignment

    async def get_assignment(self, assignment_id: int) -> Optional[AuditTeamAssignment]:
        result = await self.db.execute(
            select(AuditTeamAssignment)
            .options(
                selectinload(AuditTeamAssignment.audit_user),
                selectinload(AuditTeamAssignment.warehouse)
            )
            .where(AuditTeamAssignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_team(
        self,
        current_user,
        manager_id: Optional[int] = None,
        warehouse_id: Optional[int] = None
    ) -> List[AuditTeamAssignment]:
        policy = get_policy(current_user)
        policy.require("team:view")
        if not policy.is_admin:
            # Managers only ever see their own team
            manager_id = current_user.id

        query = select(AuditTeamAssignment).options(
            selectinload(AuditTeamAssignment.audit_user),
            selectinload(AuditTeamAssignment.warehouse)
        )
        conditions = [AuditTeamAssignment.is_active == True]
        if manager_id:
            conditions.append(AuditTeamAssignment.audit_manager_id == manager_id)
        if warehouse_id:
            conditions.append(AuditTeamAssignment.warehouse_id == warehouse_id)

        result = await self.db.execute(query.where(and_(*conditions)).order_by(AuditTeamAssignment.id))
        return list(result.scalars().all())

    async def list_assigned_warehouses(self, current_user, audit_user_id: int) -> List[Warehouse]:
        policy = get_policy(current_user)
        if current_user.id != audit_user_id and policy.cannot("team:view"):
            raise AuthorizationError("You can only view your own warehouses")

        result = await self.db.execute(
            select(Warehouse)
            .join(AuditTeamAssignment, AuditTeamAssignment.warehouse_id == Warehouse.id)
            .where(and_(
                AuditTeamAssignment.audit_user_id == audit_user_id,
                AuditTeamAssignment.is_active == True
            ))
            .distinct()
            .order_by(Warehouse.code)
        )
        return list(result.scalars().all())

    async def list_available_audit_users(self, current_user, warehouse_id: Optional[int] = None) -> List[User]:
        """Active audit users, minus those already assigned to the warehouse"""
        get_policy(current_user).require("team:view")

        query = select(User).where(and_(
            User.role == UserRole.AUDIT_USER.value,
            User.is_active == True
        ))
        if warehouse_id:
            assigned = select(AuditTeamAssignment.audit_user_id).where(and_(
                AuditTeamAssignment.warehouse_id == warehouse_id,
                AuditTeamAssignment.is_active == True
            ))
            query = query.where(User.id.not_in(assigned))

        result = await self.db.execute(query.order_by(User.full_name))
        return list(result.scalars().all())

    # =================== HELPERS ===================

    async def _get_user(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def _get_warehouse_or_404(self, warehouse_id: int) -> Warehouse:
        result = await self.db.execute(select(Warehouse).where(Warehouse.id == warehouse_id))
        warehouse = result.scalar_one_or_none()
        if not warehouse:
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        return warehouse
