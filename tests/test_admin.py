"""Tests for AdminService -- presets, trade-control settings, catalog, funding."""

from decimal import Decimal

import pytest

from tradebox.admin import AdminService
from tradebox.events import BALANCE_UPDATED, EventBus
from tradebox.exceptions import (
    AccountNotFoundError,
    InvalidDurationError,
    InvalidSettingError,
    TradeNotActiveError,
    TradeNotFoundError,
)
from tradebox.models import (
    GlobalTradeMode,
    GlobalTradeSetting,
    TradeResult,
    UserTradeMode,
    UserTradeSetting,
)


@pytest.fixture
def admin(store, ledger, processor, settings_cache, events, clock) -> AdminService:
    return AdminService(
        store=store,
        ledger=ledger,
        processor=processor,
        settings_cache=settings_cache,
        events=events,
        clock=clock,
    )


async def _open_trade(intake, account_id: str):
    return await intake.create_trade(
        account_id=account_id,
        asset="BTC",
        side="long",
        stake=Decimal("100"),
        duration="1m",
        claimed_profit_percentage="10",
    )


class TestManualPreset:
    @pytest.mark.asyncio
    async def test_records_preset(self, admin, intake, clock, funded_account: str) -> None:
        trade = await _open_trade(intake, funded_account)

        updated = await admin.set_manual_preset(trade.id, "loss", set_by="ops-1")

        assert updated.manual_preset == TradeResult.LOSS
        assert updated.manual_preset_by == "ops-1"
        assert updated.manual_preset_at == clock.now

    @pytest.mark.asyncio
    async def test_rejected_after_expiry(
        self, admin, intake, store, clock, funded_account: str
    ) -> None:
        trade = await _open_trade(intake, funded_account)
        clock.advance(minutes=1)

        with pytest.raises(TradeNotActiveError):
            await admin.set_manual_preset(trade.id, TradeResult.WIN)
        assert (await store.get_trade(trade.id)).manual_preset is None

    @pytest.mark.asyncio
    async def test_rejected_after_settlement(self, admin, intake, funded_account: str) -> None:
        trade = await _open_trade(intake, funded_account)
        await admin.settle_trade_now(trade.id, TradeResult.WIN)

        with pytest.raises(TradeNotActiveError):
            await admin.set_manual_preset(trade.id, TradeResult.LOSS)

    @pytest.mark.asyncio
    async def test_unknown_trade(self, admin) -> None:
        with pytest.raises(TradeNotFoundError):
            await admin.set_manual_preset("missing", TradeResult.WIN)

    @pytest.mark.asyncio
    async def test_invalid_result(self, admin, intake, funded_account: str) -> None:
        trade = await _open_trade(intake, funded_account)
        with pytest.raises(ValueError):
            await admin.set_manual_preset(trade.id, "draw")


class TestGlobalSetting:
    @pytest.mark.asyncio
    async def test_defaults_to_disabled(self, admin) -> None:
        setting = await admin.get_global_setting()
        assert setting.mode == GlobalTradeMode.DISABLED
        assert setting.win_percentage is None

    @pytest.mark.asyncio
    async def test_custom_requires_both_percentages(self, admin) -> None:
        with pytest.raises(InvalidSettingError, match="loss_percentage"):
            await admin.update_global_setting(
                GlobalTradeSetting(mode=GlobalTradeMode.CUSTOM, win_percentage=Decimal("3"))
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("win", "loss"),
        [
            (Decimal("0.001"), Decimal("1")),
            (Decimal("100"), Decimal("1")),
            (Decimal("1"), Decimal("0.0001")),
            (Decimal("1"), Decimal("99.999")),
        ],
    )
    async def test_out_of_range_rejected(self, admin, win: Decimal, loss: Decimal) -> None:
        with pytest.raises(InvalidSettingError):
            await admin.update_global_setting(
                GlobalTradeSetting(
                    mode=GlobalTradeMode.CUSTOM, win_percentage=win, loss_percentage=loss
                )
            )
        assert (await admin.get_global_setting()).mode == GlobalTradeMode.DISABLED

    @pytest.mark.asyncio
    async def test_boundaries_accepted(self, admin) -> None:
        await admin.update_global_setting(
            GlobalTradeSetting(
                mode=GlobalTradeMode.CUSTOM,
                win_percentage=Decimal("0.01"),
                loss_percentage=Decimal("99.99"),
            )
        )
        stored = await admin.get_global_setting()
        assert stored.win_percentage == Decimal("0.01")
        assert stored.loss_percentage == Decimal("99.99")

    @pytest.mark.asyncio
    async def test_update_invalidates_settlement_cache(self, admin, processor) -> None:
        assert (await processor.load_global_setting()).mode == GlobalTradeMode.DISABLED

        await admin.update_global_setting(GlobalTradeSetting(mode=GlobalTradeMode.WIN))

        assert (await processor.load_global_setting()).mode == GlobalTradeMode.WIN

    @pytest.mark.asyncio
    async def test_direct_store_write_is_served_stale(self, admin, processor, store) -> None:
        """Writes that bypass the service are only seen after the TTL expires."""
        await processor.load_global_setting()
        await store.save_global_setting(GlobalTradeSetting(mode=GlobalTradeMode.LOSS))

        assert (await processor.load_global_setting()).mode == GlobalTradeMode.DISABLED
        assert (await admin.get_global_setting()).mode == GlobalTradeMode.LOSS

    @pytest.mark.asyncio
    async def test_clearing_percentages(self, admin) -> None:
        await admin.update_global_setting(
            GlobalTradeSetting(mode=GlobalTradeMode.WIN, win_percentage=Decimal("4"))
        )
        await admin.update_global_setting(GlobalTradeSetting(mode=GlobalTradeMode.AUTOMATIC))

        stored = await admin.get_global_setting()
        assert stored.mode == GlobalTradeMode.AUTOMATIC
        assert stored.win_percentage is None


class TestUserSetting:
    @pytest.mark.asyncio
    async def test_custom_setting_saved(self, admin, store, funded_account: str) -> None:
        setting = UserTradeSetting(
            mode=UserTradeMode.CUSTOM,
            win_percentage=Decimal("4"),
            loss_percentage=Decimal("1.5"),
        )
        await admin.update_user_trade_setting(funded_account, setting)

        account = await store.get_account(funded_account)
        assert account.trade_setting == setting

    @pytest.mark.asyncio
    async def test_non_custom_mode_drops_percentages(
        self, admin, store, funded_account: str
    ) -> None:
        saved = await admin.update_user_trade_setting(
            funded_account,
            UserTradeSetting(mode=UserTradeMode.WIN, win_percentage=Decimal("4")),
        )

        assert saved == UserTradeSetting(mode=UserTradeMode.WIN)
        assert (await store.get_account(funded_account)).trade_setting == saved

    @pytest.mark.asyncio
    async def test_custom_requires_percentages(self, admin, funded_account: str) -> None:
        with pytest.raises(InvalidSettingError):
            await admin.update_user_trade_setting(
                funded_account, UserTradeSetting(mode=UserTradeMode.CUSTOM)
            )

    @pytest.mark.asyncio
    async def test_unknown_account(self, admin) -> None:
        with pytest.raises(AccountNotFoundError):
            await admin.update_user_trade_setting("ghost", UserTradeSetting())


class TestAccounts:
    @pytest.mark.asyncio
    async def test_register_and_set_limit(self, admin, store) -> None:
        await admin.register_account("acct-9", trade_limit=3)
        await admin.set_trade_limit("acct-9", 10)

        assert (await store.get_account("acct-9")).trade_limit == 10

    @pytest.mark.asyncio
    async def test_negative_limit(self, admin) -> None:
        with pytest.raises(InvalidSettingError):
            await admin.register_account("acct-9", trade_limit=-1)

    @pytest.mark.asyncio
    async def test_limit_for_unknown_account(self, admin) -> None:
        with pytest.raises(AccountNotFoundError):
            await admin.set_trade_limit("ghost", 1)

    @pytest.mark.asyncio
    async def test_controls_applied_together(self, admin, store) -> None:
        await admin.register_account("acct-9", trade_limit=3)

        await admin.update_account_controls(
            "acct-9", setting=UserTradeSetting(mode=UserTradeMode.WIN), trade_limit=7
        )

        account = await store.get_account("acct-9")
        assert account.trade_setting.mode == UserTradeMode.WIN
        assert account.trade_limit == 7

    @pytest.mark.asyncio
    async def test_bad_limit_leaves_mode_unchanged(self, admin, store) -> None:
        await admin.register_account("acct-9", trade_limit=3)

        with pytest.raises(InvalidSettingError):
            await admin.update_account_controls(
                "acct-9", setting=UserTradeSetting(mode=UserTradeMode.LOSS), trade_limit=-1
            )

        account = await store.get_account("acct-9")
        assert account.trade_setting.mode == UserTradeMode.AUTOMATIC
        assert account.trade_limit == 3

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, admin) -> None:
        await admin.register_account("acct-9", trade_limit=3)
        with pytest.raises(InvalidSettingError):
            await admin.update_account_controls("acct-9")


class TestCatalog:
    @pytest.mark.asyncio
    async def test_asset_symbol_normalized(self, admin, store) -> None:
        asset = await admin.upsert_asset("  sol ", is_enabled=False)

        assert asset.symbol == "SOL"
        assert (await store.get_asset("SOL")).is_enabled is False

    @pytest.mark.asyncio
    async def test_empty_symbol(self, admin) -> None:
        with pytest.raises(InvalidSettingError):
            await admin.upsert_asset("   ", is_enabled=True)

    @pytest.mark.asyncio
    async def test_profit_level_roundtrip(self, admin) -> None:
        await admin.upsert_profit_level("30s", Decimal("5"), Decimal("1"))
        await admin.upsert_profit_level("30s", Decimal("5"), Decimal("20"))

        levels = await admin.list_profit_levels()
        assert len(levels) == 1
        assert levels[0].min_stake == Decimal("20")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pct", [Decimal("0"), Decimal("-1"), Decimal("100.01")])
    async def test_profit_level_bounds(self, admin, pct: Decimal) -> None:
        with pytest.raises(InvalidSettingError):
            await admin.upsert_profit_level("1m", pct, Decimal("10"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", ["1w", "99999999999d", "2914635d"])
    async def test_profit_level_bad_duration(self, admin, store, duration: str) -> None:
        with pytest.raises(InvalidDurationError):
            await admin.upsert_profit_level(duration, Decimal("10"), Decimal("10"))
        assert await store.get_profit_levels(duration) == []


class TestDeposit:
    @pytest.mark.asyncio
    async def test_credits_and_announces(
        self, admin, ledger, store, events: EventBus, funded_account: str
    ) -> None:
        received: list[dict] = []
        events.subscribe(BALANCE_UPDATED, lambda event, data: received.append(data))

        balance = await admin.deposit(funded_account, Decimal("250"))

        assert balance.total == Decimal("1250")
        assert (await ledger.get_balance(funded_account)).deposited == Decimal("1250")
        assert received == [{
            "account_id": funded_account,
            "amount": "250",
            "total": "1250",
            "reason": "DEPOSIT",
        }]
        activity = await store.list_activity(funded_account)
        assert activity[-1]["activity_type"] == "DEPOSIT"
        assert activity[-1]["amount"] == Decimal("250")

    @pytest.mark.asyncio
    async def test_rejects_non_positive(self, admin, funded_account: str) -> None:
        with pytest.raises(InvalidSettingError):
            await admin.deposit(funded_account, Decimal("0"))

    @pytest.mark.asyncio
    async def test_unknown_account(self, admin) -> None:
        with pytest.raises(AccountNotFoundError):
            await admin.deposit("ghost", Decimal("10"))
