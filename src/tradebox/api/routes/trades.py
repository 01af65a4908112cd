"""User-facing JSON endpoints: trades, balance, and the settlement trigger."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tradebox.api.serializers import (
    account_id_from,
    balance_to_dict,
    parse_decimal,
    parse_enum,
    read_json,
    report_to_dict,
    require_fields,
    trade_to_dict,
)
from tradebox.exceptions import TradeValidationError
from tradebox.models import TradeStatus

log = structlog.get_logger(__name__)

router = APIRouter()

_MAX_PAGE_SIZE = 200


@router.post("/trades")
async def create_trade(request: Request) -> JSONResponse:
    """Open a trade for the calling account.

    Expects JSON body with: asset, side, stake, duration, profit_percentage.
    """
    account_id = account_id_from(request)
    body = await read_json(request)
    require_fields(body, "asset", "side", "stake", "duration", "profit_percentage")

    trade = await request.app.state.intake.create_trade(
        account_id=account_id,
        asset=str(body["asset"]),
        side=str(body["side"]),
        stake=parse_decimal(body["stake"], "stake"),
        duration=str(body["duration"]),
        claimed_profit_percentage=str(body["profit_percentage"]),
    )
    return JSONResponse(content=trade_to_dict(trade), status_code=201)


@router.get("/trades")
async def list_trades(
    request: Request,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> JSONResponse:
    """Calling account's trades, newest first."""
    account_id = account_id_from(request)
    if not 1 <= limit <= _MAX_PAGE_SIZE:
        raise TradeValidationError(f"limit must be between 1 and {_MAX_PAGE_SIZE}")
    if offset < 0:
        raise TradeValidationError("offset cannot be negative")
    trade_status = parse_enum(TradeStatus, status, "status") if status else None

    trades = await request.app.state.intake.list_trades(
        account_id, status=trade_status, limit=limit, offset=offset
    )
    return JSONResponse(content=[trade_to_dict(trade) for trade in trades])


@router.get("/trades/{trade_id}")
async def get_trade(request: Request, trade_id: str) -> JSONResponse:
    account_id = account_id_from(request)
    trade = await request.app.state.intake.get_trade(account_id, trade_id)
    return JSONResponse(content=trade_to_dict(trade))


@router.get("/balance")
async def get_balance(request: Request) -> JSONResponse:
    account_id = account_id_from(request)
    balance = await request.app.state.ledger.get_balance(account_id)
    return JSONResponse(content=balance_to_dict(balance))


@router.api_route("/settlement/run", methods=["GET", "POST"])
async def run_settlement(request: Request) -> JSONResponse:
    """Run one settlement pass (invoked by an external scheduler)."""
    report = await request.app.state.processor.run_settlement_pass()
    log.info("settlement_triggered_via_api", settled=report.settled_count)
    return JSONResponse(content=report_to_dict(report))
