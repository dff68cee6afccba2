import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from broker.paper_venue import PaperVenue
from engine.trading_engine import TradingEngine
from shared.config.schema import AppConfig, SchedulerConfig
from shared.errors import DataUnavailable, ExecutionFailure, FatalInit
from shared.models.models import AccountState, ActionKind, Direction, PriceQuote


def _ports(price=100.0, collateral=1000.0, step=0.01, fee=0.001):
    market_data = MagicMock()
    market_data.get_market_name = AsyncMock(return_value="SOL-PERP")
    market_data.get_account_state = AsyncMock(
        return_value=AccountState(total_collateral=collateral, free_collateral=collateral, leverage=0.0)
    )
    market_data.get_price = AsyncMock(return_value=PriceQuote(price=price))
    market_data.get_min_order_step = AsyncMock(return_value=step)
    market_data.get_position = AsyncMock(return_value=None)
    market_data.get_taker_fee = AsyncMock(return_value=fee)

    execution = MagicMock()
    execution.place_market_order = AsyncMock(return_value="tx-open")
    execution.close_position = AsyncMock(return_value="tx-close")
    return market_data, execution


def _engine(risk_cfg, market_data, execution, **sched):
    engine = TradingEngine(
        risk_cfg=risk_cfg,
        market_data=market_data,
        execution=execution,
        scheduler_cfg=SchedulerConfig(interval_s=sched.pop("interval_s", 0.001), **sched),
    )
    engine.market_id = "0"
    return engine


async def _warm_up(engine, market_data, n=21, price=100.0):
    market_data.get_price.return_value = PriceQuote(price=price)
    for _ in range(n):
        result = await engine.run_tick()
        assert result.action.kind is ActionKind.NONE


@pytest.mark.asyncio
async def test_sharp_drop_enters_long(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution)
    await _warm_up(engine, market_data)
    assert engine.signal.last.dispersion == 0.0

    market_data.get_price.return_value = PriceQuote(price=90.0)
    result = await engine.run_tick()

    assert result.action.kind is ActionKind.ENTER
    assert result.action.direction is Direction.LONG
    assert result.executed is True
    assert result.indicator.z_score < -2.0
    execution.place_market_order.assert_awaited_once_with("0", Direction.LONG, 0.22, reduce_only=False)
    assert engine.positions.entry_price == 90.0
    assert engine.market_name == "SOL-PERP"


@pytest.mark.asyncio
async def test_price_failure_skips_tick_without_touching_window(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution)
    await _warm_up(engine, market_data, n=5)

    market_data.get_price.side_effect = DataUnavailable("rpc down")
    result = await engine.run_tick()

    assert result.action.kind is ActionKind.NONE
    assert "rpc down" in result.error
    assert len(engine.signal) == 5
    execution.place_market_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_price_and_account_are_data_errors(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution)

    market_data.get_price.return_value = None
    assert (await engine.run_tick()).error is not None

    market_data.get_price.return_value = PriceQuote(price=100.0)
    market_data.get_account_state.return_value = None
    assert (await engine.run_tick()).error is not None

    market_data.get_account_state.return_value = AccountState(0.0, 0.0, 0.0)
    assert (await engine.run_tick()).error is not None

    market_data.get_account_state.return_value = AccountState(1000.0, 1000.0, 0.0)
    market_data.get_min_order_step.return_value = None
    assert (await engine.run_tick()).error is not None
    assert len(engine.signal) == 0


@pytest.mark.asyncio
async def test_failed_entry_leaves_state_unchanged(risk_cfg):
    market_data, execution = _ports()
    execution.place_market_order.side_effect = ExecutionFailure("tx dropped")
    engine = _engine(risk_cfg, market_data, execution)
    await _warm_up(engine, market_data)

    market_data.get_price.return_value = PriceQuote(price=90.0)
    result = await engine.run_tick()

    assert result.action.kind is ActionKind.NONE
    assert result.executed is False
    assert "tx dropped" in result.error
    assert engine.positions.position.is_flat
    assert engine.positions.entry_price is None
    # 价格已经进入窗口
    assert len(engine.signal) == 22


@pytest.mark.asyncio
async def test_fee_failure_blocks_entry_but_not_tick(risk_cfg):
    market_data, execution = _ports()
    market_data.get_taker_fee.side_effect = DataUnavailable("fee endpoint down")
    engine = _engine(risk_cfg, market_data, execution)
    await _warm_up(engine, market_data)

    market_data.get_price.return_value = PriceQuote(price=90.0)
    result = await engine.run_tick()

    assert result.error is None
    assert result.action.reason == "taker fee unknown"
    execution.place_market_order.assert_not_awaited()


def test_missing_dependencies_are_fatal(risk_cfg):
    market_data, execution = _ports()
    with pytest.raises(FatalInit):
        TradingEngine(risk_cfg=None, market_data=market_data, execution=execution)
    with pytest.raises(FatalInit):
        TradingEngine(risk_cfg=risk_cfg, market_data=None, execution=execution)
    with pytest.raises(FatalInit):
        TradingEngine(risk_cfg=risk_cfg, market_data=market_data, execution=None)


@pytest.mark.asyncio
async def test_run_tick_before_start_is_fatal(risk_cfg):
    market_data, execution = _ports()
    engine = TradingEngine(risk_cfg=risk_cfg, market_data=market_data, execution=execution)
    with pytest.raises(FatalInit):
        await engine.run_tick()


@pytest.mark.asyncio
async def test_start_requires_market_id(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution)
    with pytest.raises(FatalInit):
        engine.start("")
    assert not engine.is_running()


def test_start_outside_event_loop_is_fatal(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution)
    with pytest.raises(FatalInit):
        engine.start("0")


@pytest.mark.asyncio
async def test_stop_resets_session(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution, interval_s=10.0)
    engine.start("0")

    async def _first_tick():
        while engine.scheduler.tick_count < 1 or engine.scheduler.in_tick:
            await asyncio.sleep(0)

    await asyncio.wait_for(_first_tick(), timeout=1.0)
    assert len(engine.signal) == 1
    assert engine.positions.fee_cache.taker_fee_fraction == 0.001

    engine.stop()
    assert not engine.is_running()
    assert len(engine.signal) == 0
    assert engine.positions.fee_cache.taker_fee_fraction is None
    await engine.wait_closed()


@pytest.mark.asyncio
async def test_max_ticks_and_status(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution, max_ticks=3)
    engine.start(0)
    assert engine.market_id == "0"
    await asyncio.wait_for(engine.wait_closed(), timeout=1.0)

    status = engine.status()
    assert status["running"] is False
    assert status["ticks"] == 3
    assert status["market_name"] == "SOL-PERP"
    assert status["last_action"] == "none"
    assert status["last_error"] is None
    # 回到 Idle 时会话状态已清空
    assert status["window"] == 0
    assert status["z_score"] is None


@pytest.mark.asyncio
async def test_paper_round_trip_take_profit(risk_cfg):
    venue = PaperVenue(market_id="0", initial_collateral=1000.0, taker_fee=0.001, auto_walk=False)
    engine = TradingEngine(risk_cfg=risk_cfg, market_data=venue, execution=venue)
    engine.market_id = "0"

    for _ in range(21):
        await engine.run_tick()

    venue.set_price(90.0)
    entered = await engine.run_tick()
    assert entered.action.kind is ActionKind.ENTER
    assert venue.position.size_base == pytest.approx(0.22)

    venue.set_price(96.0)
    exited = await engine.run_tick()
    assert exited.action.kind is ActionKind.EXIT
    assert exited.action.reason.startswith("take-profit")
    assert venue.position.size_base == 0.0
    assert venue.realized_pnl == pytest.approx(0.22 * 6.0)
    assert engine.positions.entry_price is None
    assert engine.market_name == "PAPER-0-PERP"


def test_from_config_builds_paper_venue():
    engine = TradingEngine.from_config(AppConfig(market_id=3))
    assert isinstance(engine.market_data, PaperVenue)
    assert engine.market_data is engine.execution
    assert engine.market_data.market_id == "3"


def test_from_config_path_missing_file_is_fatal(tmp_path):
    with pytest.raises(FatalInit):
        TradingEngine.from_config_path(str(tmp_path / "nope.yml"))


@pytest.mark.asyncio
async def test_non_finite_price_is_rejected_and_next_tick_recovers(risk_cfg):
    market_data, execution = _ports()
    engine = _engine(risk_cfg, market_data, execution)
    await _warm_up(engine, market_data)
    ema_before = engine.signal.ema

    for bad in (float("nan"), float("inf")):
        market_data.get_price.return_value = PriceQuote(price=bad)
        result = await engine.run_tick()
        assert result.action.kind is ActionKind.NONE
        assert result.error is not None
        assert len(engine.signal) == 21
        assert engine.signal.ema == ema_before

    market_data.get_price.return_value = PriceQuote(price=90.0)
    result = await engine.run_tick()
    assert result.action.kind is ActionKind.ENTER
    assert result.indicator.z_score < -2.0
