import re
import pytest
import pydantic
from datetime import date, timedelta
from sqlalchemy import update
from sqlalchemy.future import select
from app.core.exceptions import (
    AuthorizationError, ConflictError, IncompletePrecondition, InvalidStateError,
    NotFoundError, ValidationError
)
from app.models.audit.audit_session import AuditSession
from app.models.inventory.stock_level import StockLevel
from app.schemas.audit.session import AuditSessionCreate
from app.schemas.audit.verification import PhysicalCountEntry
from app.services.audit.audit_session_service import AuditSessionService
from app.services.audit.events import SessionTransitioned, VerificationRecorded


async def _create(db, seed, session_payload, **overrides):
    return await AuditSessionService(db).create_session(seed.manager, session_payload(**overrides))


async def _count(service, user, session_id, verification_id, quantity, **kwargs):
    return await service.record_physical_count(
        user, session_id, verification_id, PhysicalCountEntry(physical_quantity=quantity, **kwargs)
    )


async def _count_all(service, user, session_id, quantities):
    rows = await service.list_verifications(user, session_id)
    for row, quantity in zip(rows, quantities):
        await _count(service, user, session_id, row.id, quantity)
    return await service.list_verifications(user, session_id)


class TestCreateSession:
    """Session creation and snapshot"""

    async def test_snapshot_rows(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        service = AuditSessionService(db)
        rows = await service.list_verifications(seed.manager, audit_session.id)

        assert audit_session.status == "open"
        assert audit_session.created_by == seed.manager.id
        assert [r.serial_number for r in rows] == [1, 2, 3]
        assert [r.item.item_code for r in rows] == ["ITM-001", "ITM-002", "ITM-003"]
        assert [r.system_quantity for r in rows] == [10, 5, 0]
        assert all(r.status == "pending" for r in rows)
        assert all(r.physical_quantity is None and r.discrepancy is None for r in rows)

    async def test_inactive_items_are_not_snapshotted(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        rows = await AuditSessionService(db).list_verifications(seed.manager, audit_session.id)
        assert seed.retired.id not in {r.item_id for r in rows}

    async def test_audit_codes_are_sequential_per_year(self, db, seed, session_payload):
        first = await _create(db, seed, session_payload)
        second = await _create(db, seed, session_payload, allow_overlap=True)

        year = date.today().year
        assert first.audit_code == f"AUD-{year}-0001"
        assert second.audit_code == f"AUD-{year}-0002"
        assert re.fullmatch(r"AUD-\d{4}-\d{4}", first.audit_code)

    async def test_overlapping_running_session_is_refused(self, db, seed, session_payload):
        await _create(db, seed, session_payload)
        with pytest.raises(ConflictError):
            await _create(db, seed, session_payload)

    async def test_overlap_allowed_after_cancel(self, db, seed, session_payload):
        service = AuditSessionService(db)
        first = await _create(db, seed, session_payload)
        await service.cancel_session(seed.manager, first.id, "Wrong date range")

        second = await _create(db, seed, session_payload)
        assert second.status == "open"

    async def test_end_before_start_is_rejected_by_schema(self, session_payload):
        with pytest.raises(pydantic.ValidationError):
            session_payload(end_date=date.today() - timedelta(days=1))

    async def test_end_before_start_is_rejected_by_service(self, db, seed):
        payload = AuditSessionCreate.model_construct(
            warehouse_id=seed.main.id, title="Backwards", notes=None, allow_overlap=False,
            start_date=date.today(), end_date=date.today() - timedelta(days=1),
        )
        with pytest.raises(ValidationError):
            await AuditSessionService(db).create_session(seed.manager, payload)

    async def test_audit_user_cannot_create(self, db, seed, session_payload):
        with pytest.raises(AuthorizationError):
            await AuditSessionService(db).create_session(seed.auditor, session_payload())

    async def test_manager_needs_the_warehouse(self, db, seed, session_payload):
        with pytest.raises(AuthorizationError):
            await AuditSessionService(db).create_session(seed.other_manager, session_payload())

    async def test_unknown_warehouse(self, db, seed, session_payload):
        with pytest.raises(NotFoundError):
            await AuditSessionService(db).create_session(seed.admin, session_payload(warehouse_id=9999))

    async def test_creation_is_logged_and_published(self, db, seed, session_payload, captured_events):
        audit_session = await _create(db, seed, session_payload)
        logs = await AuditSessionService(db).list_action_logs(seed.manager, audit_session.id)

        assert [log.action for log in logs] == ["SESSION_CREATED"]
        assert logs[0].new_value["total_items"] == 3
        created = captured_events[0]
        assert isinstance(created, SessionTransitioned)
        assert (created.session_id, created.from_status, created.to_status) == (audit_session.id, None, "open")
        assert created.performed_by == seed.manager.id


class TestSnapshotImmutability:

    async def test_ledger_changes_do_not_touch_the_snapshot(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)

        await db.execute(
            update(StockLevel)
            .where(StockLevel.item_id == seed.rice.id, StockLevel.warehouse_id == seed.main.id)
            .values(current_stock=99)
        )
        await db.commit()

        rows = await AuditSessionService(db).list_verifications(seed.manager, audit_session.id)
        assert rows[0].system_quantity == 10

    async def test_system_quantity_cannot_be_reassigned(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        rows = await AuditSessionService(db).list_verifications(seed.manager, audit_session.id)

        with pytest.raises(ValueError):
            rows[0].system_quantity = 11

    async def test_split_null_batch_line_is_snapshotted_once(self, db, seed, session_payload):
        # The same item stored on two ledger rows without a batch number
        db.add(StockLevel(item_id=seed.sugar.id, warehouse_id=seed.main.id, current_stock=2))
        await db.commit()

        audit_session = await _create(db, seed, session_payload)
        rows = await AuditSessionService(db).list_verifications(seed.manager, audit_session.id)

        assert [r.item.item_code for r in rows] == ["ITM-001", "ITM-002", "ITM-003"]
        assert [r.system_quantity for r in rows] == [10, 7, 0]


class TestRecordPhysicalCount:
    """The single write path for counts"""

    async def test_scenario_complete_short_excess(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)

        rows = await _count_all(service, seed.auditor, audit_session.id, [10, 3, 2])

        assert [r.status for r in rows] == ["complete", "short", "excess"]
        assert [r.discrepancy for r in rows] == [0, -2, 2]
        assert all(r.confirmed_by == seed.auditor.id and r.confirmed_at is not None for r in rows)
        summary = await service.get_summary(audit_session.id)
        assert summary.completion_percent == 100

        reconciled = await service.advance_to_reconciliation(seed.manager, audit_session.id)
        assert reconciled.status == "reconciliation"
        assert reconciled.reconciliation_at is not None

    async def test_first_count_starts_the_session(self, db, seed, session_payload, captured_events):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.auditor, audit_session.id)

        counted = await _count(service, seed.auditor, audit_session.id, rows[1].id, 3, notes="Two bags torn")

        assert counted.notes == "Two bags torn"
        assert counted.version == 2
        refreshed = await service.get_session(seed.auditor, audit_session.id)
        assert refreshed.status == "in_progress"
        assert refreshed.started_at is not None

        transitions = [e for e in captured_events if isinstance(e, SessionTransitioned)]
        assert [(e.from_status, e.to_status) for e in transitions] == [(None, "open"), ("open", "in_progress")]
        recorded = [e for e in captured_events if isinstance(e, VerificationRecorded)]
        assert len(recorded) == 1
        assert (recorded[0].status, recorded[0].discrepancy, recorded[0].is_override) == ("short", -2, False)

        actions = [log.action for log in await service.list_action_logs(seed.manager, audit_session.id)]
        assert sorted(actions) == ["COUNT_RECORDED", "SESSION_CREATED", "SESSION_STARTED"]

    async def test_unassigned_user_is_rejected_and_row_unchanged(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.manager, audit_session.id)

        with pytest.raises(AuthorizationError):
            await _count(service, seed.outsider, audit_session.id, rows[0].id, 10)

        rows = await service.list_verifications(seed.manager, audit_session.id)
        assert rows[0].status == "pending"
        assert rows[0].physical_quantity is None
        assert (await service.get_session(seed.manager, audit_session.id)).status == "open"

    async def test_removed_team_member_loses_access(self, db, seed, session_payload):
        from app.services.audit.team_service import AuditTeamService

        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        team = await AuditTeamService(db).list_team(seed.manager)
        assignment = next(a for a in team if a.audit_user_id == seed.auditor.id)
        await AuditTeamService(db).remove_team_member(seed.manager, assignment.id)

        rows = await service.list_verifications(seed.manager, audit_session.id)
        with pytest.raises(AuthorizationError):
            await _count(service, seed.auditor, audit_session.id, rows[0].id, 10)

    async def test_unknown_verification(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        with pytest.raises(NotFoundError):
            await _count(AuditSessionService(db), seed.auditor, audit_session.id, 9999, 1)

    async def test_out_of_scope_user_is_refused_before_row_lookup(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        with pytest.raises(AuthorizationError):
            await _count(AuditSessionService(db), seed.outsider, audit_session.id, 9999, 1)

    async def test_verification_of_another_session_is_not_found(self, db, seed, session_payload):
        service = AuditSessionService(db)
        first = await _create(db, seed, session_payload)
        second = await _create(db, seed, session_payload, allow_overlap=True)
        rows = await service.list_verifications(seed.manager, first.id)

        with pytest.raises(NotFoundError):
            await _count(service, seed.auditor, second.id, rows[0].id, 1)

    async def test_negative_quantity(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.manager, audit_session.id)

        with pytest.raises(pydantic.ValidationError):
            PhysicalCountEntry(physical_quantity=-1)
        with pytest.raises(ValidationError):
            await service.record_physical_count(
                seed.auditor, audit_session.id, rows[0].id,
                PhysicalCountEntry.model_construct(physical_quantity=-1, notes=None, override_notes=None)
            )

    async def test_counts_refused_after_reconciliation(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await _count_all(service, seed.auditor, audit_session.id, [10, 5, 0])
        await service.advance_to_reconciliation(seed.manager, audit_session.id)

        with pytest.raises(InvalidStateError):
            await _count(service, seed.auditor, audit_session.id, rows[0].id, 9)

    async def test_counts_refused_on_terminal_session(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.manager, audit_session.id)
        await service.cancel_session(seed.manager, audit_session.id, "Stock moved to new site")

        with pytest.raises(InvalidStateError):
            await _count(service, seed.auditor, audit_session.id, rows[0].id, 10)
        rows = await service.list_verifications(seed.manager, audit_session.id)
        assert rows[0].physical_quantity is None

    async def test_completion_is_monotonic_and_recount_is_idempotent(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.auditor, audit_session.id)

        progress = [(await service.get_summary(audit_session.id)).completion_percent]
        for row, quantity in zip(rows, [10, 3, 2]):
            await _count(service, seed.auditor, audit_session.id, row.id, quantity)
            progress.append((await service.get_summary(audit_session.id)).completion_percent)
        assert progress == sorted(progress)
        assert progress == [0, 33, 67, 100]

        await _count(service, seed.auditor, audit_session.id, rows[1].id, 3)
        assert (await service.get_summary(audit_session.id)).completion_percent == 100

    async def test_recount_by_same_verifier_is_not_an_override(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.auditor, audit_session.id)

        await _count(service, seed.auditor, audit_session.id, rows[1].id, 3)
        recounted = await _count(service, seed.auditor, audit_session.id, rows[1].id, 5)

        assert recounted.status == "complete"
        assert recounted.discrepancy == 0
        assert recounted.confirmed_by == seed.auditor.id
        assert recounted.override_by is None


class TestOverride:
    """Re-entering a row counted by someone else"""

    async def _counted_row(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.auditor, audit_session.id)
        await _count(service, seed.auditor, audit_session.id, rows[1].id, 3)
        return service, audit_session, rows[1]

    async def test_other_audit_user_cannot_overwrite(self, db, seed, session_payload):
        service, audit_session, row = await self._counted_row(db, seed, session_payload)

        with pytest.raises(AuthorizationError):
            await _count(service, seed.auditor2, audit_session.id, row.id, 5, override_notes="Recounted")

        rows = await service.list_verifications(seed.manager, audit_session.id)
        assert rows[1].physical_quantity == 3

    async def test_manager_override_needs_notes(self, db, seed, session_payload):
        service, audit_session, row = await self._counted_row(db, seed, session_payload)

        with pytest.raises(ValidationError):
            await _count(service, seed.manager, audit_session.id, row.id, 5)

    async def test_manager_override(self, db, seed, session_payload, captured_events):
        service, audit_session, row = await self._counted_row(db, seed, session_payload)

        overridden = await _count(service, seed.manager, audit_session.id, row.id, 5, override_notes="Found two bags in aisle 4")

        assert overridden.physical_quantity == 5
        assert overridden.status == "complete"
        assert overridden.confirmed_by == seed.auditor.id
        assert overridden.override_by == seed.manager.id
        assert overridden.override_at is not None
        assert overridden.override_notes == "Found two bags in aisle 4"

        logs = await service.list_action_logs(seed.manager, audit_session.id)
        assert logs[0].action == "COUNT_OVERRIDDEN"
        assert logs[0].previous_value["physical_quantity"] == 3
        assert logs[0].new_value["physical_quantity"] == 5
        assert captured_events[-1].is_override is True

    async def test_original_verifier_cannot_revert_an_override(self, db, seed, session_payload):
        service, audit_session, row = await self._counted_row(db, seed, session_payload)
        await _count(service, seed.manager, audit_session.id, row.id, 5, override_notes="Found bags")

        with pytest.raises(AuthorizationError):
            await _count(service, seed.auditor, audit_session.id, row.id, 3)

        rows = await service.list_verifications(seed.manager, audit_session.id)
        assert rows[1].physical_quantity == 5
        assert rows[1].status == "complete"
        assert rows[1].override_by == seed.manager.id
        assert rows[1].override_notes == "Found bags"

    async def test_overriding_manager_can_recount_own_entry(self, db, seed, session_payload, captured_events):
        service, audit_session, row = await self._counted_row(db, seed, session_payload)
        await _count(service, seed.manager, audit_session.id, row.id, 5, override_notes="Found bags")

        recounted = await _count(service, seed.manager, audit_session.id, row.id, 6)

        assert recounted.physical_quantity == 6
        assert recounted.status == "excess"
        assert recounted.confirmed_by == seed.auditor.id
        assert recounted.override_by == seed.manager.id
        assert recounted.override_notes == "Found bags"
        assert captured_events[-1].is_override is True

    async def test_second_override_replaces_override_fields(self, db, seed, session_payload):
        service, audit_session, row = await self._counted_row(db, seed, session_payload)
        await _count(service, seed.manager, audit_session.id, row.id, 5, override_notes="Found bags")

        overridden = await _count(service, seed.admin, audit_session.id, row.id, 4, override_notes="Bag was empty")

        assert overridden.physical_quantity == 4
        assert overridden.override_by == seed.admin.id
        assert overridden.override_notes == "Bag was empty"

        with pytest.raises(ValidationError):
            await _count(service, seed.manager, audit_session.id, row.id, 5)


class TestTransitions:
    """Session state machine"""

    async def test_explicit_start(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)

        started = await service.start_session(seed.auditor, audit_session.id)
        assert started.status == "in_progress"
        with pytest.raises(InvalidStateError):
            await service.start_session(seed.auditor, audit_session.id)

    async def test_outsider_cannot_start(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        with pytest.raises(AuthorizationError):
            await AuditSessionService(db).start_session(seed.outsider, audit_session.id)

    async def test_advance_reports_pending_count(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.auditor, audit_session.id)
        await _count(service, seed.auditor, audit_session.id, rows[0].id, 10)

        with pytest.raises(IncompletePrecondition) as exc_info:
            await service.advance_to_reconciliation(seed.manager, audit_session.id)
        assert exc_info.value.pending_count == 2
        assert exc_info.value.to_dict()["pending_count"] == 2
        assert (await service.get_session(seed.manager, audit_session.id)).status == "in_progress"

    async def test_advance_blocked_on_uncounted_open_session(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await service.create_session(seed.other_manager, session_payload(warehouse_id=seed.north.id))
        rows = await service.list_verifications(seed.other_manager, audit_session.id)
        assert len(rows) == 1

        with pytest.raises(IncompletePrecondition):
            await service.advance_to_reconciliation(seed.other_manager, audit_session.id)

    async def test_audit_user_cannot_advance(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        await _count_all(service, seed.auditor, audit_session.id, [10, 5, 0])

        with pytest.raises(AuthorizationError):
            await service.advance_to_reconciliation(seed.auditor, audit_session.id)

    @pytest.mark.parametrize("counted", [False, True])
    async def test_complete_requires_reconciliation(self, db, seed, session_payload, counted):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        if counted:
            await _count_all(service, seed.auditor, audit_session.id, [10, 5, 0])

        with pytest.raises(InvalidStateError):
            await service.complete_session(seed.manager, audit_session.id)

    async def test_full_lifecycle(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        await _count_all(service, seed.auditor, audit_session.id, [10, 3, 2])
        await service.advance_to_reconciliation(seed.manager, audit_session.id)

        completed = await service.complete_session(seed.manager, audit_session.id)
        assert completed.status == "completed"
        assert completed.completed_by == seed.manager.id
        assert completed.completed_at is not None

        with pytest.raises(InvalidStateError):
            await service.complete_session(seed.manager, audit_session.id)
        with pytest.raises(InvalidStateError):
            await service.cancel_session(seed.manager, audit_session.id, "Too late")

        actions = [log.action for log in await service.list_action_logs(seed.manager, audit_session.id)]
        assert actions[0] == "SESSION_COMPLETED"
        assert "RECONCILIATION_STARTED" in actions

    @pytest.mark.parametrize("stage", ["open", "in_progress", "reconciliation"])
    async def test_cancel_from_any_running_state(self, db, seed, session_payload, stage):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        if stage in ("in_progress", "reconciliation"):
            await _count_all(service, seed.auditor, audit_session.id, [10, 5, 0])
        if stage == "reconciliation":
            await service.advance_to_reconciliation(seed.manager, audit_session.id)

        cancelled = await service.cancel_session(seed.manager, audit_session.id, "  Duplicate audit  ")
        assert cancelled.status == "cancelled"
        assert cancelled.cancel_reason == "Duplicate audit"
        assert cancelled.cancelled_by == seed.manager.id

        logs = await service.list_action_logs(seed.manager, audit_session.id)
        assert logs[0].action == "SESSION_CANCELLED"
        assert logs[0].notes == "Duplicate audit"
        assert logs[0].previous_value == {"status": stage}

    async def test_cancel_needs_a_reason(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        with pytest.raises(ValidationError):
            await AuditSessionService(db).cancel_session(seed.manager, audit_session.id, "   ")

    async def test_unknown_session(self, db, seed):
        with pytest.raises(NotFoundError):
            await AuditSessionService(db).complete_session(seed.manager, 9999)

    async def test_status_only_changes_through_transitions(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        await _count_all(service, seed.auditor, audit_session.id, [10, 5, 0])
        await service.advance_to_reconciliation(seed.manager, audit_session.id)
        await service.complete_session(seed.manager, audit_session.id)

        statuses = [
            (log.previous_value or {}).get("status")
            for log in reversed(await service.list_action_logs(seed.manager, audit_session.id))
            if log.action.startswith("SESSION") or log.action == "RECONCILIATION_STARTED"
        ]
        assert statuses == [None, "open", "in_progress", "reconciliation"]


class TestQueries:

    async def test_completion_readiness(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.auditor, audit_session.id)
        await _count(service, seed.auditor, audit_session.id, rows[1].id, 3)

        readiness = await service.get_completion_readiness(seed.manager, audit_session.id)
        assert readiness == {
            "status": "in_progress",
            "total_items": 3,
            "pending_count": 2,
            "discrepancy_count": 1,
            "can_advance": False,
            "can_complete": False,
        }

        await _count(service, seed.auditor, audit_session.id, rows[0].id, 10)
        await _count(service, seed.auditor, audit_session.id, rows[2].id, 0)
        readiness = await service.get_completion_readiness(seed.manager, audit_session.id)
        assert readiness["can_advance"] is True

        await service.advance_to_reconciliation(seed.manager, audit_session.id)
        readiness = await service.get_completion_readiness(seed.manager, audit_session.id)
        assert (readiness["can_advance"], readiness["can_complete"]) == (False, True)

    async def test_list_sessions_by_scope(self, db, seed, session_payload):
        service = AuditSessionService(db)
        main_session = await _create(db, seed, session_payload)
        north_session = await service.create_session(seed.other_manager, session_payload(warehouse_id=seed.north.id))

        admin_view = await service.list_sessions(seed.admin)
        assert admin_view["count"] == 2
        assert {s.id for s in admin_view["data"]} == {main_session.id, north_session.id}

        manager_view = await service.list_sessions(seed.manager)
        assert [s.id for s in manager_view["data"]] == [main_session.id]

        assert (await service.list_sessions(seed.auditor))["count"] == 1
        assert (await service.list_sessions(seed.outsider))["count"] == 0

    async def test_audit_users_only_see_running_sessions(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        await service.cancel_session(seed.manager, audit_session.id, "Postponed")

        assert (await service.list_sessions(seed.auditor))["count"] == 0
        assert (await service.list_sessions(seed.manager))["count"] == 1

        history = await service.list_session_history(seed.auditor)
        assert [s.id for s in history["data"]] == [audit_session.id]

    async def test_list_sessions_filters_and_pages(self, db, seed, session_payload):
        service = AuditSessionService(db)
        first = await _create(db, seed, session_payload)
        await service.cancel_session(seed.manager, first.id, "Redo")
        second = await _create(db, seed, session_payload)

        open_only = await service.list_sessions(seed.admin, status="open")
        assert [s.id for s in open_only["data"]] == [second.id]

        page = await service.list_sessions(seed.admin, page_index=2, page_size=1)
        assert page["count"] == 2
        assert page["page_size"] == 1
        assert len(page["data"]) == 1

    async def test_outsider_cannot_read_session(self, db, seed, session_payload):
        audit_session = await _create(db, seed, session_payload)
        with pytest.raises(AuthorizationError):
            await AuditSessionService(db).get_session(seed.outsider, audit_session.id)

    async def test_list_verifications_by_status(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        rows = await service.list_verifications(seed.auditor, audit_session.id)
        await _count(service, seed.auditor, audit_session.id, rows[1].id, 3)

        pending = await service.list_verifications(seed.auditor, audit_session.id, "pending")
        assert [r.serial_number for r in pending] == [1, 3]
        short = await service.list_verifications(seed.auditor, audit_session.id, "short")
        assert [r.serial_number for r in short] == [2]
        confirmed = await service.list_verifications(seed.auditor, audit_session.id, "confirmed")
        assert [r.serial_number for r in confirmed] == [2]

    async def test_warehouses_under_audit(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)

        assert await service.get_warehouses_under_audit(seed.manager) == [seed.main.id]
        assert await service.get_warehouses_under_audit(seed.manager, date.today() + timedelta(days=30)) == []

        await service.cancel_session(seed.manager, audit_session.id, "Called off")
        assert await service.get_warehouses_under_audit(seed.manager) == []

    async def test_reconciliation_is_not_under_audit(self, db, seed, session_payload):
        service = AuditSessionService(db)
        audit_session = await _create(db, seed, session_payload)
        await _count_all(service, seed.auditor, audit_session.id, [10, 5, 0])
        await service.advance_to_reconciliation(seed.manager, audit_session.id)

        assert await service.get_warehouses_under_audit(seed.manager) == []
        stored = (await db.execute(select(AuditSession.status).where(AuditSession.id == audit_session.id))).scalar()
        assert stored == "reconciliation"

    async def test_warehouses_under_audit_follow_scope(self, db, seed, session_payload):
        service = AuditSessionService(db)
        await _create(db, seed, session_payload)

        assert await service.get_warehouses_under_audit(seed.admin) == [seed.main.id]
        assert await service.get_warehouses_under_audit(seed.auditor) == [seed.main.id]
        assert await service.get_warehouses_under_audit(seed.other_manager) == []
        assert await service.get_warehouses_under_audit(seed.outsider) == []
