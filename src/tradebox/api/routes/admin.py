"""Administrative JSON endpoints. Authorization is enforced upstream."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tradebox.api.serializers import (
    balance_to_dict,
    global_setting_to_dict,
    parse_decimal,
    parse_enum,
    parse_optional_decimal,
    profit_level_to_dict,
    read_json,
    require_fields,
    trade_to_dict,
)
from tradebox.exceptions import TradeValidationError
from tradebox.models import (
    GlobalTradeMode,
    GlobalTradeSetting,
    TradeResult,
    UserTradeMode,
    UserTradeSetting,
)

log = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/trades/{trade_id}/preset")
async def set_trade_preset(request: Request, trade_id: str) -> JSONResponse:
    """Force the outcome of an active trade. Body: {"result": "win"|"loss"}."""
    body = await read_json(request)
    require_fields(body, "result")
    result = parse_enum(TradeResult, body["result"], "result")
    set_by = str(body.get("set_by") or "admin")

    trade = await request.app.state.admin.set_manual_preset(trade_id, result, set_by)
    return JSONResponse(content=trade_to_dict(trade))


@router.post("/trades/{trade_id}/settle")
async def settle_trade(request: Request, trade_id: str) -> JSONResponse:
    """Settle an active trade immediately with a forced result."""
    body = await read_json(request)
    require_fields(body, "result")
    result = parse_enum(TradeResult, body["result"], "result")

    trade = await request.app.state.admin.settle_trade_now(trade_id, result)
    return JSONResponse(content=trade_to_dict(trade))


@router.get("/global-trade-settings")
async def get_global_trade_settings(request: Request) -> JSONResponse:
    setting = await request.app.state.admin.get_global_setting()
    return JSONResponse(content=global_setting_to_dict(setting))


@router.put("/global-trade-settings")
async def update_global_trade_settings(request: Request) -> JSONResponse:
    body = await read_json(request)
    require_fields(body, "mode")
    setting = GlobalTradeSetting(
        mode=parse_enum(GlobalTradeMode, body["mode"], "mode"),
        win_percentage=parse_optional_decimal(body.get("win_percentage"), "win_percentage"),
        loss_percentage=parse_optional_decimal(body.get("loss_percentage"), "loss_percentage"),
    )
    saved = await request.app.state.admin.update_global_setting(setting)
    return JSONResponse(content=global_setting_to_dict(saved))


@router.post("/accounts")
async def register_account(request: Request) -> JSONResponse:
    """Mirror an upstream user into the engine. Body: account_id, trade_limit."""
    body = await read_json(request)
    require_fields(body, "account_id", "trade_limit")
    trade_limit = body["trade_limit"]
    if not isinstance(trade_limit, int) or isinstance(trade_limit, bool):
        raise TradeValidationError("trade_limit must be an integer")

    await request.app.state.admin.register_account(str(body["account_id"]), trade_limit)
    return JSONResponse(
        content={"account_id": str(body["account_id"]), "trade_limit": trade_limit},
        status_code=201,
    )


@router.patch("/accounts/{account_id}/trade-settings")
async def update_account_trade_settings(request: Request, account_id: str) -> JSONResponse:
    body = await read_json(request)
    if "mode" not in body and "trade_limit" not in body:
        raise TradeValidationError("Nothing to update: provide mode and/or trade_limit")

    setting = None
    if "mode" in body:
        setting = UserTradeSetting(
            mode=parse_enum(UserTradeMode, body["mode"], "mode"),
            win_percentage=parse_optional_decimal(body.get("win_percentage"), "win_percentage"),
            loss_percentage=parse_optional_decimal(body.get("loss_percentage"), "loss_percentage"),
        )

    trade_limit = None
    if "trade_limit" in body:
        trade_limit = body["trade_limit"]
        if not isinstance(trade_limit, int) or isinstance(trade_limit, bool):
            raise TradeValidationError("trade_limit must be an integer")

    await request.app.state.admin.update_account_controls(
        account_id, setting=setting, trade_limit=trade_limit
    )

    account = await request.app.state.store.get_account(account_id)
    return JSONResponse(content={
        "account_id": account.account_id,
        "trade_limit": account.trade_limit,
        "mode": account.trade_setting.mode.value,
        "win_percentage": (
            str(account.trade_setting.win_percentage)
            if account.trade_setting.win_percentage is not None
            else None
        ),
        "loss_percentage": (
            str(account.trade_setting.loss_percentage)
            if account.trade_setting.loss_percentage is not None
            else None
        ),
    })


@router.put("/assets/{symbol}")
async def update_asset(request: Request, symbol: str) -> JSONResponse:
    """Enable or disable trading for an asset. Body: {"is_enabled": bool}."""
    body = await read_json(request)
    require_fields(body, "is_enabled")
    if not isinstance(body["is_enabled"], bool):
        raise TradeValidationError("is_enabled must be a boolean")

    asset = await request.app.state.admin.upsert_asset(symbol, body["is_enabled"])
    return JSONResponse(content={"symbol": asset.symbol, "is_enabled": asset.is_enabled})


@router.put("/profit-levels")
async def update_profit_level(request: Request) -> JSONResponse:
    """Add or replace a catalog entry. Body: duration, profit_percentage, min_stake."""
    body = await read_json(request)
    require_fields(body, "duration", "profit_percentage", "min_stake")

    level = await request.app.state.admin.upsert_profit_level(
        duration=str(body["duration"]),
        profit_percentage=parse_decimal(body["profit_percentage"], "profit_percentage"),
        min_stake=parse_decimal(body["min_stake"], "min_stake"),
    )
    return JSONResponse(content=profit_level_to_dict(level))


@router.get("/profit-levels")
async def list_profit_levels(request: Request) -> JSONResponse:
    levels = await request.app.state.admin.list_profit_levels()
    return JSONResponse(content=[profit_level_to_dict(level) for level in levels])


@router.post("/accounts/{account_id}/deposit")
async def deposit(request: Request, account_id: str) -> JSONResponse:
    body = await read_json(request)
    require_fields(body, "amount")
    amount = parse_decimal(body["amount"], "amount")

    balance = await request.app.state.admin.deposit(account_id, amount)
    log.info("deposit_via_api", account_id=account_id, amount=str(amount))
    return JSONResponse(content=balance_to_dict(balance))
