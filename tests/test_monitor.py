"""Tests for the per-position monitor loop."""

import asyncio

import pytest

from conftest import wait_until
from smart_trailing.core.errors import DataFetchError, ExecutionError
from smart_trailing.core.events import EventType
from smart_trailing.core.models import ExitReason, PositionStatus, Side, TrackedPosition
from smart_trailing.manager.monitor import PositionMonitor, PositionRecord
from smart_trailing.manager.tracker import TrailingStopTracker


def make_record(entry=100.0, trailing=5.0, activation=None, side=Side.SELL) -> PositionRecord:
    position = TrackedPosition(
        id="ETHUSDT-1",
        symbol="ETHUSDT",
        entry_price=entry,
        quantity=2.0,
        trailing_percent=trailing,
        activation_price=activation,
        side=side,
    )
    return PositionRecord(position=position, tracker=TrailingStopTracker(position))


def make_monitor(feed, executor, bus, **kwargs) -> PositionMonitor:
    kwargs.setdefault("interval", 0.01)
    kwargs.setdefault("fetch_timeout", 0.2)
    kwargs.setdefault("order_timeout", 0.2)
    return PositionMonitor(feed, executor, bus, **kwargs)


class TestTick:
    """Single price checks."""

    def test_no_exit(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [101.0])

        async def run():
            record = make_record()
            outcome = await make_monitor(feed, executor, bus).tick(record)
            return record, outcome

        record, outcome = asyncio.run(run())
        assert outcome is None
        assert record.position.peak_price == 101.0
        assert executor.orders == []

    def test_exit_places_sell(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [110.0, 104.0])

        async def run():
            record = make_record()
            monitor = make_monitor(feed, executor, bus)
            first = await monitor.tick(record)
            second = await monitor.tick(record)
            return record, first, second

        record, first, second = asyncio.run(run())
        assert first is None
        assert second.reason == ExitReason.TRAILING_STOP
        assert not second.failed
        assert second.fill.fill_price == 104.0
        assert executor.orders == [("SELL", "ETHUSDT", 2.0)]
        assert record.position.status == PositionStatus.TRIGGERED
        assert record.position.realized_pnl == pytest.approx(8.0)

    def test_buy_side_exit_places_buy(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [110.0])

        async def run():
            record = make_record(side=Side.BUY)
            return await make_monitor(feed, executor, bus).tick(record)

        outcome = asyncio.run(run())
        assert outcome.reason == ExitReason.TRAILING_STOP
        assert executor.sides() == ["BUY"]

    def test_order_failure_moves_to_error(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [90.0])
        executor.fail_with = ExecutionError("insufficient balance", "ETHUSDT")

        async def run():
            record = make_record()
            outcome = await make_monitor(feed, executor, bus).tick(record)
            return record, outcome

        record, outcome = asyncio.run(run())
        assert outcome.failed
        assert "insufficient balance" in outcome.error
        assert record.position.status == PositionStatus.ERROR
        assert record.position.error_message == outcome.error

    def test_unexpected_executor_error_is_execution_error(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [90.0])
        executor.fail_with = RuntimeError("socket closed")

        async def run():
            record = make_record()
            return await make_monitor(feed, executor, bus).tick(record)

        outcome = asyncio.run(run())
        assert outcome.failed
        assert "socket closed" in outcome.error

    def test_order_timeout(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [90.0])
        executor.delay = 1.0

        async def run():
            record = make_record()
            outcome = await make_monitor(feed, executor, bus, order_timeout=0.05).tick(record)
            return record, outcome

        record, outcome = asyncio.run(run())
        assert outcome.failed
        assert "timed out" in outcome.error
        assert record.position.status == PositionStatus.ERROR

    def test_fill_after_external_close_is_not_reported(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [90.0])
        executor.delay = 0.05

        async def run():
            record = make_record()
            task = asyncio.create_task(make_monitor(feed, executor, bus).tick(record))
            await wait_until(lambda: len(executor.orders) == 1)
            record.tracker.mark_closed(ExitReason.CANCELLED)
            return record, await task

        record, outcome = asyncio.run(run())
        assert outcome is None
        assert record.position.status == PositionStatus.CLOSED
        assert record.position.exit_price is None

    def test_failure_after_external_close_is_not_reported(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [90.0])
        executor.delay = 0.05
        executor.fail_with = ExecutionError("rejected", "ETHUSDT")

        async def run():
            record = make_record()
            task = asyncio.create_task(make_monitor(feed, executor, bus).tick(record))
            await wait_until(lambda: len(executor.orders) == 1)
            record.tracker.mark_closed(ExitReason.CANCELLED)
            return record, await task

        record, outcome = asyncio.run(run())
        assert outcome is None
        assert record.position.status == PositionStatus.CLOSED
        assert record.position.error_message is None

    def test_cancelled_mid_order_is_not_refired(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [90.0])
        executor.delay = 1.0

        async def run():
            record = make_record()
            task = asyncio.create_task(make_monitor(feed, executor, bus).tick(record))
            await wait_until(lambda: len(executor.orders) == 1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return record

        record = asyncio.run(run())
        assert record.position.status == PositionStatus.ERROR
        assert "outcome unknown" in record.position.error_message
        assert not record.tracker.exit_pending

    def test_fetch_failure_raises(self, feed, executor, bus):
        feed.failures["ETHUSDT"] = ConnectionError("down")

        async def run():
            await make_monitor(feed, executor, bus).tick(make_record())

        with pytest.raises(DataFetchError):
            asyncio.run(run())

    def test_fetch_timeout_raises(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [100.0])
        feed.delays["ETHUSDT"] = 1.0

        async def run():
            await make_monitor(feed, executor, bus, fetch_timeout=0.05).tick(make_record())

        with pytest.raises(DataFetchError, match="timed out"):
            asyncio.run(run())

    def test_activation_event(self, feed, executor, bus, recorder):
        feed.set_path("ETHUSDT", [105.0, 112.0])

        async def run():
            record = make_record(activation=110.0)
            monitor = make_monitor(feed, executor, bus)
            await monitor.tick(record)
            await monitor.tick(record)
            return record

        record = asyncio.run(run())
        activated = recorder.of_type(EventType.POSITION_ACTIVATED)
        assert len(activated) == 1
        assert activated[0].price == 112.0
        assert record.position.status == PositionStatus.ACTIVE


class TestRunLoop:
    """Loop lifecycle."""

    def test_loop_stops_after_exit(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [100.0, 102.0, 96.0, 200.0])
        exits = []

        async def on_exit(record, outcome):
            exits.append(outcome)

        async def run():
            record = make_record()
            await asyncio.wait_for(make_monitor(feed, executor, bus).run(record, on_exit), timeout=2.0)
            return record

        record = asyncio.run(run())
        assert len(exits) == 1
        assert exits[0].reason == ExitReason.TRAILING_STOP
        assert len(executor.orders) == 1
        assert record.position.status == PositionStatus.TRIGGERED

    def test_loop_survives_fetch_errors(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [100.0])
        feed.failures["ETHUSDT"] = ConnectionError("down")
        exits = []

        async def on_exit(record, outcome):
            exits.append(outcome)

        async def run():
            record = make_record()
            task = asyncio.create_task(make_monitor(feed, executor, bus).run(record, on_exit))
            await wait_until(lambda: len(feed.ticker_calls) >= 3)
            del feed.failures["ETHUSDT"]
            feed.set_path("ETHUSDT", [50.0])
            await asyncio.wait_for(task, timeout=2.0)

        asyncio.run(run())
        assert len(exits) == 1

    def test_cancel_token_stops_loop(self, feed, executor, bus):
        feed.set_path("ETHUSDT", [100.0])

        async def on_exit(record, outcome):
            raise AssertionError("no exit expected")

        async def run():
            record = make_record()
            monitor = make_monitor(feed, executor, bus, interval=10.0)
            task = asyncio.create_task(monitor.run(record, on_exit))
            await wait_until(lambda: len(feed.ticker_calls) >= 1)
            record.cancel_event.set()
            # Wakes from the interval sleep at once
            await asyncio.wait_for(task, timeout=1.0)
            return task

        task = asyncio.run(run())
        assert task.done()
        assert executor.orders == []
