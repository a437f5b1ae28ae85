"""
Unit tests for operator sessions and the approve/reject dialogue
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from zlink.core.enums import AdminSessionError, AdminStep
from zlink.database.models import AdminSession, utcnow
from zlink.services.admin_sessions import AdminSessionService

from tests.conftest import ADMIN_ID


@pytest.mark.asyncio
async def test_activate_and_get(db_session):
    sessions = AdminSessionService(ttl_hours=24)

    state = await sessions.activate(db_session, ADMIN_ID)
    active = await sessions.get_active(db_session, ADMIN_ID)

    assert state.step.is_idle
    assert active is not None
    assert active.operator_id == ADMIN_ID
    assert await sessions.get_active(db_session, 12345) is None


@pytest.mark.asyncio
async def test_expired_session_is_dropped(db_session):
    sessions = AdminSessionService(ttl_hours=24)
    await sessions.activate(db_session, ADMIN_ID)
    await db_session.execute(
        update(AdminSession)
        .where(AdminSession.operator_id == ADMIN_ID)
        .values(expires_at=utcnow() - timedelta(seconds=1))
    )
    await db_session.commit()

    assert await sessions.get_active(db_session, ADMIN_ID) is None
    assert await db_session.get(AdminSession, ADMIN_ID) is None


@pytest.mark.asyncio
async def test_approval_dialogue(db_session):
    sessions = AdminSessionService()
    await sessions.activate(db_session, ADMIN_ID)

    begun = await sessions.begin_approval(db_session, ADMIN_ID, "claim-1")
    assert begun.ok
    assert begun.state.step.kind == AdminStep.AWAITING_APPROVAL_PROOF
    assert begun.state.step.claim_id == "claim-1"

    cleared = await sessions.clear_step(db_session, ADMIN_ID)
    assert cleared.step.is_idle


@pytest.mark.asyncio
async def test_rejection_dialogue_carries_reason(db_session):
    sessions = AdminSessionService()
    await sessions.activate(db_session, ADMIN_ID)

    await sessions.begin_rejection(db_session, ADMIN_ID, "claim-2")
    submitted = await sessions.submit_rejection_reason(db_session, ADMIN_ID, "  duplicate  ")

    assert submitted.ok
    assert submitted.state.step.kind == AdminStep.AWAITING_REFUND_REFERENCE
    assert submitted.state.step.claim_id == "claim-2"
    assert submitted.state.step.reason == "duplicate"


@pytest.mark.asyncio
async def test_step_survives_a_new_session_object(session_maker):
    """The pending step is persisted, not held in memory"""
    sessions = AdminSessionService()
    async with session_maker() as session:
        await sessions.activate(session, ADMIN_ID)
        await sessions.begin_rejection(session, ADMIN_ID, "claim-3")

    async with session_maker() as session:
        state = await AdminSessionService().get_active(session, ADMIN_ID)

    assert state.step.kind == AdminStep.AWAITING_REJECTION_REASON
    assert state.step.claim_id == "claim-3"


@pytest.mark.asyncio
async def test_new_action_refused_while_step_pending(db_session):
    sessions = AdminSessionService()
    await sessions.activate(db_session, ADMIN_ID)
    await sessions.begin_approval(db_session, ADMIN_ID, "claim-1")

    result = await sessions.begin_rejection(db_session, ADMIN_ID, "claim-2")

    assert result.ok is False
    assert result.error == AdminSessionError.STEP_IN_PROGRESS
    assert result.state.step.claim_id == "claim-1"


@pytest.mark.asyncio
async def test_reason_outside_rejection_step(db_session):
    sessions = AdminSessionService()
    await sessions.activate(db_session, ADMIN_ID)
    await sessions.begin_approval(db_session, ADMIN_ID, "claim-1")

    result = await sessions.submit_rejection_reason(db_session, ADMIN_ID, "why")

    assert result.error == AdminSessionError.UNEXPECTED_STEP


@pytest.mark.asyncio
async def test_actions_without_session(db_session):
    sessions = AdminSessionService()

    result = await sessions.begin_approval(db_session, ADMIN_ID, "claim-1")

    assert result.error == AdminSessionError.NO_SESSION
    assert await sessions.clear_step(db_session, ADMIN_ID) is None


@pytest.mark.asyncio
async def test_deactivate(db_session):
    sessions = AdminSessionService()
    await sessions.activate(db_session, ADMIN_ID)

    await sessions.deactivate(db_session, ADMIN_ID)

    assert await sessions.get_active(db_session, ADMIN_ID) is None


@pytest.mark.asyncio
async def test_reactivate_resets_step(db_session):
    sessions = AdminSessionService()
    await sessions.activate(db_session, ADMIN_ID)
    await sessions.begin_approval(db_session, ADMIN_ID, "claim-1")

    state = await sessions.activate(db_session, ADMIN_ID)

    assert state.step.is_idle
