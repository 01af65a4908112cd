"""Request parsing and JSON shaping shared by the API routers."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeVar

from fastapi import Request

from tradebox.exceptions import TradeValidationError
from tradebox.models import Balance, GlobalTradeSetting, ProfitLevel, SettlementReport, Trade

E = TypeVar("E", bound=Enum)

ACCOUNT_HEADER = "X-Account-Id"


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


def _iso_or_none(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


async def read_json(request: Request) -> dict:
    """Parse a JSON object body or raise a validation error."""
    try:
        body = await request.json()
    except Exception:
        raise TradeValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise TradeValidationError("JSON body must be an object")
    return body


def require_fields(body: dict, *fields: str) -> None:
    for field in fields:
        if field not in body or body[field] is None:
            raise TradeValidationError(f"Missing required field: {field}")


def parse_decimal(value: Any, field: str) -> Decimal:
    """Decimal from a JSON string or number (floats go through str)."""
    if isinstance(value, bool):
        raise TradeValidationError(f"Invalid decimal for {field}: {value!r}")
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        raise TradeValidationError(f"Invalid decimal for {field}: {value!r}")
    if not parsed.is_finite():
        raise TradeValidationError(f"Invalid decimal for {field}: {value!r}")
    return parsed


def parse_optional_decimal(value: Any, field: str) -> Decimal | None:
    return None if value is None else parse_decimal(value, field)


def parse_enum(enum_cls: type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise TradeValidationError(f"Invalid {field} {value!r}; expected one of: {allowed}")


def account_id_from(request: Request) -> str:
    account_id = request.headers.get(ACCOUNT_HEADER, "").strip()
    if not account_id:
        raise TradeValidationError(f"Missing {ACCOUNT_HEADER} header")
    return account_id


def trade_to_dict(trade: Trade) -> dict:
    return {
        "id": trade.id,
        "account_id": trade.account_id,
        "asset": trade.asset,
        "side": trade.side.value,
        "stake": str(trade.stake),
        "duration": trade.duration,
        "entry_price": str(trade.entry_price),
        "profit_percentage": str(trade.profit_percentage),
        "price_source": trade.price_source,
        "status": trade.status.value,
        "created_at": trade.created_at.isoformat(),
        "expires_at": trade.expires_at.isoformat(),
        "exit_price": _str_or_none(trade.exit_price),
        "result": trade.result.value if trade.result else None,
        "pnl": _str_or_none(trade.pnl),
        "settled_at": _iso_or_none(trade.settled_at),
        "manual_preset": trade.manual_preset.value if trade.manual_preset else None,
    }


def balance_to_dict(balance: Balance) -> dict:
    return {
        "account_id": balance.account_id,
        "currency": balance.currency,
        "total": str(balance.total),
        "deposited": str(balance.deposited),
        "earnings": str(balance.earnings),
        "frozen": str(balance.frozen),
        "available": str(balance.available),
    }


def global_setting_to_dict(setting: GlobalTradeSetting) -> dict:
    return {
        "mode": setting.mode.value,
        "win_percentage": _str_or_none(setting.win_percentage),
        "loss_percentage": _str_or_none(setting.loss_percentage),
    }


def profit_level_to_dict(level: ProfitLevel) -> dict:
    return {
        "duration": level.duration,
        "profit_percentage": str(level.profit_percentage),
        "min_stake": str(level.min_stake),
    }


def report_to_dict(report: SettlementReport) -> dict:
    return {
        "settled_count": report.settled_count,
        "settled_ids": report.settled_ids,
        "deferred_ids": report.deferred_ids,
        "failed_ids": report.failed_ids,
    }
