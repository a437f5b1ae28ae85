# coding: utf-8
"""
Admin panel: pending payout review

/admin opens an operator session and lists pending payouts oldest
first. Approve asks for the payout transaction id; reject asks for a
reason and then a refund reference. Each prompt is one AdminStep of the
persisted operator session, so a restart does not lose a half-finished
action. /reconcile re-runs unprocessed transfers.
"""
from html import escape
from typing import Optional

from aiogram import F, Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import ADMIN_IDS, PAYOUT_COIN, REFERENCE_CURRENCY
from zlink.core.enums import AdminSessionError, AdminStep, PayoutError
from zlink.database.models import PendingPayout
from zlink.services.admin_sessions import AdminState
from zlink.services.container import Services
from zlink.services.notifications import display_user, format_amount
from zlink.utils.i18n import i18n

router = Router(name="admin")

# Payouts listed in the panel at once
PANEL_PAGE_SIZE = 20


async def safe_edit_message(
    callback: CallbackQuery, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None
) -> bool:
    """
    Safely edit message, handling "message is not modified" error

    Returns:
        bool: True if message was edited, False if it was already the same
    """
    try:
        await callback.message.edit_text(text, reply_markup=reply_markup)
        return True
    except TelegramBadRequest as e:
        if "message is not modified" in str(e):
            return False
        raise


# ===========================
# Keyboards
# ===========================


def get_panel_keyboard(payouts) -> InlineKeyboardMarkup:
    rows = [
        [
            InlineKeyboardButton(
                text=i18n.get(
                    "admin.payout_button",
                    amount=format_amount(p.payout_amount),
                    payout_coin=PAYOUT_COIN,
                    user=display_user(p.beneficiary_user_id, p.beneficiary_username),
                ),
                callback_data=f"admin_view:{p.claim_id}",
            )
        ]
        for p in payouts
    ]
    rows.append(
        [
            InlineKeyboardButton(text=i18n.get("admin.buttons.refresh"), callback_data="admin_refresh"),
            InlineKeyboardButton(text=i18n.get("admin.buttons.exit"), callback_data="admin_exit"),
        ]
    )
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_payout_keyboard(claim_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text=i18n.get("admin.buttons.approve"), callback_data=f"admin_approve:{claim_id}"),
                InlineKeyboardButton(text=i18n.get("admin.buttons.reject"), callback_data=f"admin_reject:{claim_id}"),
            ],
            [InlineKeyboardButton(text=i18n.get("admin.buttons.back"), callback_data="admin_refresh")],
        ]
    )


def get_cancel_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text=i18n.get("admin.buttons.cancel"), callback_data="admin_cancel")]
        ]
    )


# ===========================
# Rendering
# ===========================


async def render_panel(session: AsyncSession, services: Services):
    pending = await services.queue.list_pending(session)
    if not pending:
        return i18n.get("admin.panel_empty"), get_panel_keyboard([])
    text = i18n.get("admin.panel_header", count=len(pending))
    return text, get_panel_keyboard(pending[:PANEL_PAGE_SIZE])


def render_payout(payout: PendingPayout) -> str:
    return i18n.get(
        "admin.payout_details",
        claim_id=payout.claim_id,
        user=display_user(payout.beneficiary_user_id, payout.beneficiary_username),
        user_id=payout.beneficiary_user_id,
        amount=format_amount(payout.payout_amount),
        payout_coin=PAYOUT_COIN,
        source_amount=format_amount(payout.source_amount),
        source_coin=payout.source_coin,
        value=format_amount(payout.source_value, 2),
        currency=REFERENCE_CURRENCY.upper(),
        address=escape(payout.payout_address),
        created_at=payout.created_at.strftime("%Y-%m-%d %H:%M"),
        status=payout.status,
    )


def payout_error_text(error: PayoutError, services: Services) -> str:
    return i18n.get(f"payout_error.{error.value}", min_length=services.queue.reason_min_length)


def session_error_text(error: AdminSessionError) -> str:
    if error == AdminSessionError.STEP_IN_PROGRESS:
        return i18n.get("admin.step_in_progress")
    return i18n.get("admin.session_expired")


def _claim_id(callback: CallbackQuery) -> Optional[str]:
    _, _, claim_id = (callback.data or "").partition(":")
    return claim_id or None


# ===========================
# Panel
# ===========================


@router.message(Command("admin"))
async def cmd_admin(message: Message, session: AsyncSession, services: Services):
    """Activate an operator session and show pending payouts"""
    operator_id = message.from_user.id
    await services.admin_sessions.activate(session, operator_id)
    logger.info(f"Admin panel opened by {operator_id} (@{message.from_user.username})")

    text, keyboard = await render_panel(session, services)
    await message.answer(text, reply_markup=keyboard)


@router.callback_query(F.data == "admin_refresh")
async def admin_refresh(callback: CallbackQuery, session: AsyncSession, services: Services):
    if await services.admin_sessions.get_active(session, callback.from_user.id) is None:
        await callback.answer(i18n.get("admin.session_expired"), show_alert=True)
        return

    text, keyboard = await render_panel(session, services)
    await safe_edit_message(callback, text, keyboard)
    await callback.answer()


@router.callback_query(F.data == "admin_exit")
async def admin_exit(callback: CallbackQuery, session: AsyncSession, services: Services):
    await services.admin_sessions.deactivate(session, callback.from_user.id)
    await safe_edit_message(callback, i18n.get("admin.exited"))
    await callback.answer()


@router.callback_query(F.data.startswith("admin_view:"))
async def admin_view(callback: CallbackQuery, session: AsyncSession, services: Services):
    claim_id = _claim_id(callback)
    payout = await services.queue.get(session, claim_id) if claim_id else None
    if payout is None:
        await callback.answer(payout_error_text(PayoutError.NOT_FOUND, services), show_alert=True)
        return

    keyboard = get_payout_keyboard(payout.claim_id) if not payout.status_enum.is_terminal else None
    await safe_edit_message(callback, render_payout(payout), keyboard)
    await callback.answer()


# ===========================
# Approve / reject dialogue
# ===========================


@router.callback_query(F.data.startswith("admin_approve:"))
async def admin_approve(callback: CallbackQuery, session: AsyncSession, services: Services):
    claim_id = _claim_id(callback)
    payout = await services.queue.get(session, claim_id) if claim_id else None
    if payout is None or payout.status_enum.is_terminal:
        error = PayoutError.NOT_FOUND if payout is None else PayoutError.NOT_PENDING
        await callback.answer(payout_error_text(error, services), show_alert=True)
        return

    result = await services.admin_sessions.begin_approval(session, callback.from_user.id, claim_id)
    if not result.ok:
        await callback.answer(session_error_text(result.error), show_alert=True)
        return

    await callback.message.answer(
        i18n.get("admin.ask_proof", payout_coin=PAYOUT_COIN, claim_id=claim_id),
        reply_markup=get_cancel_keyboard(),
    )
    await callback.answer()


@router.callback_query(F.data.startswith("admin_reject:"))
async def admin_reject(callback: CallbackQuery, session: AsyncSession, services: Services):
    claim_id = _claim_id(callback)
    payout = await services.queue.get(session, claim_id) if claim_id else None
    if payout is None or payout.status_enum.is_terminal:
        error = PayoutError.NOT_FOUND if payout is None else PayoutError.NOT_PENDING
        await callback.answer(payout_error_text(error, services), show_alert=True)
        return

    result = await services.admin_sessions.begin_rejection(session, callback.from_user.id, claim_id)
    if not result.ok:
        await callback.answer(session_error_text(result.error), show_alert=True)
        return

    await callback.message.answer(
        i18n.get("admin.ask_reason", claim_id=claim_id, min_length=services.queue.reason_min_length),
        reply_markup=get_cancel_keyboard(),
    )
    await callback.answer()


@router.callback_query(F.data == "admin_cancel")
async def admin_cancel(callback: CallbackQuery, session: AsyncSession, services: Services):
    state = await services.admin_sessions.clear_step(session, callback.from_user.id)
    text = i18n.get("admin.cancelled") if state is not None else i18n.get("admin.session_expired")
    await safe_edit_message(callback, text)
    await callback.answer()


@router.message(F.text, ~F.text.startswith("/"), F.from_user.id.in_(set(ADMIN_IDS)))
async def admin_step_input(message: Message, session: AsyncSession, services: Services):
    """Free text from an operator answers the pending step, if any"""
    operator_id = message.from_user.id
    state = await services.admin_sessions.get_active(session, operator_id)
    if state is None or state.step.is_idle:
        return

    text = message.text.strip()
    step = state.step.kind

    if step == AdminStep.AWAITING_APPROVAL_PROOF:
        await _finish_approval(message, session, services, state, text)
    elif step == AdminStep.AWAITING_REJECTION_REASON:
        if not services.queue.validate_reason(text):
            await message.answer(
                i18n.get("admin.reason_too_short", min_length=services.queue.reason_min_length),
                reply_markup=get_cancel_keyboard(),
            )
            return
        result = await services.admin_sessions.submit_rejection_reason(session, operator_id, text)
        if not result.ok:
            await message.answer(session_error_text(result.error))
            return
        await message.answer(i18n.get("admin.ask_refund"), reply_markup=get_cancel_keyboard())
    elif step == AdminStep.AWAITING_REFUND_REFERENCE:
        await _finish_rejection(message, session, services, state, text)


async def _finish_approval(
    message: Message, session: AsyncSession, services: Services, state: AdminState, proof: str
) -> None:
    if not proof:
        await message.answer(i18n.get("admin.proof_empty"), reply_markup=get_cancel_keyboard())
        return

    result = await services.queue.approve(
        session, state.step.claim_id, proof, operator_id=state.operator_id
    )
    if not result.ok and result.error == PayoutError.INVALID_PROOF:
        await message.answer(i18n.get("admin.proof_empty"), reply_markup=get_cancel_keyboard())
        return

    await services.admin_sessions.clear_step(session, state.operator_id)
    if result.ok:
        await message.answer(i18n.get("admin.approved", claim_id=state.step.claim_id))
    else:
        await message.answer(payout_error_text(result.error, services))


async def _finish_rejection(
    message: Message, session: AsyncSession, services: Services, state: AdminState, refund: str
) -> None:
    result = await services.queue.reject(
        session,
        state.step.claim_id,
        reason=state.step.reason or "",
        refund_reference=refund,
        operator_id=state.operator_id,
    )

    await services.admin_sessions.clear_step(session, state.operator_id)
    if result.ok:
        await message.answer(i18n.get("admin.rejected", claim_id=state.step.claim_id))
    else:
        await message.answer(payout_error_text(result.error, services))


# ===========================
# Reconciliation
# ===========================


@router.message(Command("reconcile"))
async def cmd_reconcile(message: Message, services: Services):
    """Re-run transfers that were not attributed when they arrived"""
    logger.info(f"Reconciliation requested by admin {message.from_user.id}")
    outcomes = await services.orchestrator.reconcile_pending()
    if not outcomes:
        await message.answer(i18n.get("admin.reconcile_empty"))
        return

    summary = "\n".join(f"• {outcome.value}: {count}" for outcome, count in sorted(
        outcomes.items(), key=lambda item: item[0].value
    ))
    await message.answer(i18n.get("admin.reconcile_done", summary=summary))
