# coding: utf-8
"""
Claim page endpoints

GET  /claim/{token_id}      - HTML status page (read-only)
GET  /api/claim/{token_id}  - JSON status
POST /claim/{token_id}      - web redemption, only when enabled; sharing
                              is never allowed on this channel
"""
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from loguru import logger
from pydantic import BaseModel, Field

from config.config import PAYOUT_COIN
from zlink.core.enums import Chain, ClaimError
from zlink.services.claim_tokens import ClaimInfo, extract_token_id
from zlink.services.container import Services
from zlink.services.notifications import format_amount
from zlink.api.auth import get_telegram_user

router = APIRouter(tags=["claim"])

# HTTP status per redemption failure
CLAIM_ERROR_STATUS = {
    ClaimError.NOT_FOUND: 404,
    ClaimError.ALREADY_CLAIMED: 409,
    ClaimError.EXPIRED: 410,
    ClaimError.NOT_INTENDED_RECIPIENT: 403,
    ClaimError.INVALID_ADDRESS: 422,
    ClaimError.BELOW_MINIMUM: 422,
    ClaimError.PRICE_UNAVAILABLE: 503,
    ClaimError.MALFORMED_TOKEN: 400,
}


class ClaimInfoResponse(BaseModel):
    token_id: str
    recipient: Optional[str] = None
    estimated_payout: Decimal
    payout_coin: str
    source_chain: str
    source_coin: Optional[str] = None
    source_amount: Optional[Decimal] = None
    created_at: datetime
    expires_at: datetime
    claimed: bool
    expired: bool


class RedeemRequest(BaseModel):
    payout_address: str = Field(..., min_length=1, max_length=512)


class RedeemResponse(BaseModel):
    claim_id: str
    payout_amount: Decimal
    payout_coin: str
    payout_address: str
    status: str


def get_services(request: Request) -> Services:
    return request.app.state.services


async def require_web_redemption(request: Request) -> None:
    if not request.app.state.web_redemption_enabled:
        raise HTTPException(status_code=403, detail="Web redemption is disabled, use the Telegram bot")


def _to_response(info: ClaimInfo) -> ClaimInfoResponse:
    try:
        source_coin = Chain(info.source_chain).coin
    except ValueError:
        source_coin = None
    return ClaimInfoResponse(
        token_id=info.token_id,
        recipient=info.recipient,
        estimated_payout=info.estimated_payout,
        payout_coin=PAYOUT_COIN,
        source_chain=info.source_chain,
        source_coin=source_coin,
        source_amount=info.source_amount,
        created_at=info.created_at,
        expires_at=info.expires_at,
        claimed=info.claimed,
        expired=info.expired,
    )


async def _load_info(services: Services, token_id: str) -> Optional[ClaimInfo]:
    if extract_token_id(token_id) is None:
        return None
    async with services.session_maker() as session:
        return await services.claims.info(session, token_id)


PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
body {{ font-family: system-ui, sans-serif; max-width: 32rem; margin: 3rem auto; padding: 0 1rem; color: #222; }}
.card {{ border: 1px solid #ddd; border-radius: 12px; padding: 1.5rem; }}
.status {{ font-weight: 600; }}
.muted {{ color: #777; font-size: 0.9rem; }}
</style>
</head>
<body>
<div class="card">
{body}
</div>
</body>
</html>"""


def render_claim_page(info: Optional[ClaimInfo], bot_username: str = "") -> str:
    """HTML for a claim link; the page never redeems anything itself"""
    if info is None:
        return PAGE_TEMPLATE.format(
            title="Claim not found",
            body="<h1>Claim not found</h1><p>This claim link does not exist.</p>",
        )

    if info.claimed:
        status = "Already claimed"
    elif info.expired:
        status = "Expired"
    else:
        status = "Available"

    rows = [
        f"<h1>~{format_amount(info.estimated_payout)} {escape(PAYOUT_COIN)}</h1>",
        f'<p class="status">{status}</p>',
    ]
    if info.source_amount is not None:
        try:
            chain = Chain(info.source_chain)
            source = f"{format_amount(info.source_amount)} {chain.coin} on {chain.display_name}"
        except ValueError:
            source = f"{format_amount(info.source_amount)} on {escape(info.source_chain)}"
        rows.append(f"<p>Deposit: {source}</p>")
    if info.recipient:
        rows.append(f"<p>Issued to: @{escape(info.recipient.lstrip('@'))}</p>")
    rows.append(f'<p class="muted">Expires: {info.expires_at.strftime("%Y-%m-%d %H:%M")} UTC</p>')

    if not info.claimed and not info.expired:
        if bot_username:
            handle = escape(bot_username.lstrip("@"))
            rows.append(
                f'<p>Redeem in Telegram: send <code>/claim {escape(info.token_id)}</code> '
                f'to <a href="https://t.me/{handle}">@{handle}</a></p>'
            )
        else:
            rows.append(f"<p>Redeem in Telegram: send <code>/claim {escape(info.token_id)}</code> to the bot</p>")
        rows.append('<p class="muted">The final amount is set at current prices when claimed.</p>')

    return PAGE_TEMPLATE.format(title="Claim", body="\n".join(rows))


@router.get("/claim/{token_id}", response_class=HTMLResponse)
async def claim_page(request: Request, token_id: str, services: Services = Depends(get_services)):
    info = await _load_info(services, token_id)
    html = render_claim_page(info, request.app.state.bot_username)
    return HTMLResponse(html, status_code=200 if info is not None else 404)


@router.get("/api/claim/{token_id}", response_model=ClaimInfoResponse)
async def claim_info(token_id: str, services: Services = Depends(get_services)) -> ClaimInfoResponse:
    """
    Read-only claim status

    Returns:
        Amount, recipient, claimed/expired flags and expiry
    """
    info = await _load_info(services, token_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Claim not found")
    return _to_response(info)


@router.post(
    "/claim/{token_id}",
    response_model=RedeemResponse,
    dependencies=[Depends(require_web_redemption)],
)
async def redeem_claim(
    token_id: str,
    body: RedeemRequest,
    services: Services = Depends(get_services),
    telegram_user: Dict[str, Any] = Depends(get_telegram_user),
) -> RedeemResponse:
    """
    Web redemption (disabled unless WEB_REDEMPTION_ENABLED)

    Only the user the token was issued to can redeem here.
    """
    user_id = telegram_user["id"]
    result = await services.orchestrator.redeem(
        token_id,
        redeemer_user_id=user_id,
        redeemer_username=telegram_user.get("username"),
        payout_address=body.payout_address,
        allow_sharing=False,
    )
    if not result.ok:
        raise HTTPException(
            status_code=CLAIM_ERROR_STATUS[result.error],
            detail={"error": result.error.value},
        )

    payout = result.payout
    logger.info(f"Web redemption of {token_id[:8]}... by {user_id}: claim {payout.claim_id}")
    return RedeemResponse(
        claim_id=payout.claim_id,
        payout_amount=payout.payout_amount,
        payout_coin=PAYOUT_COIN,
        payout_address=payout.payout_address,
        status=payout.status,
    )
