# coding: utf-8
"""
Operator sessions and the approve/reject dialogue

Steps per action, strictly forward:
    approve: NONE -> AWAITING_APPROVAL_PROOF -> NONE
    reject:  NONE -> AWAITING_REJECTION_REASON -> AWAITING_REFUND_REFERENCE -> NONE
Any step can be cancelled back to NONE; an expired session is dropped.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import ADMIN_SESSION_TTL_HOURS
from zlink.core.enums import AdminSessionError, AdminStep
from zlink.database.models import AdminSession, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingStep:
    kind: AdminStep = AdminStep.NONE
    claim_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_idle(self) -> bool:
        return self.kind == AdminStep.NONE


@dataclass(frozen=True)
class AdminState:
    operator_id: int
    activated_at: datetime
    expires_at: datetime
    step: PendingStep


@dataclass(frozen=True)
class StepResult:
    ok: bool
    state: Optional[AdminState] = None
    error: Optional[AdminSessionError] = None


def _to_state(row: AdminSession) -> AdminState:
    return AdminState(
        operator_id=row.operator_id,
        activated_at=row.activated_at,
        expires_at=row.expires_at,
        step=PendingStep(
            kind=AdminStep(row.pending_step),
            claim_id=row.step_claim_id,
            reason=row.step_reason,
        ),
    )


class AdminSessionService:
    """Per-operator interaction state, persisted to survive restarts"""

    def __init__(self, ttl_hours: int = ADMIN_SESSION_TTL_HOURS):
        self.ttl = timedelta(hours=ttl_hours)

    async def activate(self, session: AsyncSession, operator_id: int) -> AdminState:
        """Start (or restart) a session with no pending step"""
        now = utcnow()
        row = await session.get(AdminSession, operator_id, populate_existing=True)
        if row is None:
            row = AdminSession(operator_id=operator_id)
            session.add(row)
        row.activated_at = now
        row.expires_at = now + self.ttl
        self._set_step(row, PendingStep())
        await session.commit()

        logger.info(f"Admin session activated for {operator_id}")
        return _to_state(row)

    async def get_active(self, session: AsyncSession, operator_id: int) -> Optional[AdminState]:
        """Current session, or None if absent or expired (expired ones are removed)"""
        row = await session.get(AdminSession, operator_id, populate_existing=True)
        if row is None:
            return None
        if utcnow() > row.expires_at:
            await session.delete(row)
            await session.commit()
            logger.info(f"Admin session expired for {operator_id}")
            return None
        return _to_state(row)

    async def begin_approval(self, session: AsyncSession, operator_id: int, claim_id: str) -> StepResult:
        return await self._begin(
            session, operator_id, PendingStep(AdminStep.AWAITING_APPROVAL_PROOF, claim_id)
        )

    async def begin_rejection(self, session: AsyncSession, operator_id: int, claim_id: str) -> StepResult:
        return await self._begin(
            session, operator_id, PendingStep(AdminStep.AWAITING_REJECTION_REASON, claim_id)
        )

    async def submit_rejection_reason(self, session: AsyncSession, operator_id: int, reason: str) -> StepResult:
        """AWAITING_REJECTION_REASON -> AWAITING_REFUND_REFERENCE, carrying the reason"""
        row, error = await self._active_row(session, operator_id)
        if error:
            return StepResult(ok=False, error=error)
        if row.pending_step != AdminStep.AWAITING_REJECTION_REASON.value:
            return StepResult(ok=False, state=_to_state(row), error=AdminSessionError.UNEXPECTED_STEP)

        self._set_step(
            row,
            PendingStep(AdminStep.AWAITING_REFUND_REFERENCE, row.step_claim_id, reason.strip()),
        )
        await session.commit()
        return StepResult(ok=True, state=_to_state(row))

    async def clear_step(self, session: AsyncSession, operator_id: int) -> Optional[AdminState]:
        """Back to NONE after completion or cancel"""
        row, error = await self._active_row(session, operator_id)
        if error:
            return None
        self._set_step(row, PendingStep())
        await session.commit()
        return _to_state(row)

    async def deactivate(self, session: AsyncSession, operator_id: int) -> None:
        await session.execute(delete(AdminSession).where(AdminSession.operator_id == operator_id))
        await session.commit()
        logger.info(f"Admin session closed for {operator_id}")

    async def _begin(self, session: AsyncSession, operator_id: int, step: PendingStep) -> StepResult:
        row, error = await self._active_row(session, operator_id)
        if error:
            return StepResult(ok=False, error=error)
        if row.pending_step != AdminStep.NONE.value:
            return StepResult(ok=False, state=_to_state(row), error=AdminSessionError.STEP_IN_PROGRESS)

        self._set_step(row, step)
        await session.commit()
        return StepResult(ok=True, state=_to_state(row))

    async def _active_row(self, session: AsyncSession, operator_id: int):
        state = await self.get_active(session, operator_id)
        if state is None:
            return None, AdminSessionError.NO_SESSION
        row = await session.get(AdminSession, operator_id)
        return row, None

    @staticmethod
    def _set_step(row: AdminSession, step: PendingStep) -> None:
        row.pending_step = step.kind.value
        row.step_claim_id = step.claim_id
        row.step_reason = step.reason
