"""Tests for the in-memory paper broker."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.connectors.paper_broker import PaperBroker
from src.risk.errors import DataUnavailable
from src.risk.models import Direction
from tests.helpers import T0


class TestOrders:
    def test_long_fills_at_ask(self, broker):
        result = broker.submit_order("XAUUSD", Direction.LONG, 0.5, 1998.0, 2004.0)
        assert result.success
        pos = broker.positions[result.position_id]
        assert pos.entry_price == pytest.approx(2000.20)
        assert pos.initial_size == 0.5

    def test_short_fills_at_bid(self, broker):
        result = broker.submit_order("XAUUSD", Direction.SHORT, 0.5, 2002.0, 1996.0)
        assert broker.positions[result.position_id].entry_price == pytest.approx(2000.00)

    def test_sequential_ids(self, broker):
        ids = [broker.submit_order("XAUUSD", Direction.LONG, 0.1, 0.0, 0.0).position_id for _ in range(3)]
        assert ids == ["1", "2", "3"]

    @pytest.mark.parametrize("volume", [0.0, 0.001, 500.0])
    def test_invalid_volume(self, broker, volume):
        assert not broker.submit_order("XAUUSD", Direction.LONG, volume, 0.0, 0.0).success

    def test_unknown_symbol(self, broker):
        assert not broker.submit_order("EURUSD", Direction.LONG, 0.1, 0.0, 0.0).success

    def test_forced_rejection(self, broker):
        broker.reject_actions["order"] = "market closed"
        result = broker.submit_order("XAUUSD", Direction.LONG, 0.1, 0.0, 0.0)
        assert result.reason == "market closed"
        assert broker.requests[-1][0] == "order"


class TestModifications:
    def test_stop_inside_price_rejected(self, broker):
        pid = broker.submit_order("XAUUSD", Direction.LONG, 0.1, 1990.0, 0.0).position_id
        result = broker.submit_modification(pid, 2000.50, 0.0)
        assert not result.success
        assert result.reason == "invalid stops"
        assert broker.positions[pid].stop_price == 1990.0

    def test_valid_modification(self, broker):
        pid = broker.submit_order("XAUUSD", Direction.SHORT, 0.1, 2010.0, 0.0).position_id
        assert broker.submit_modification(pid, 2005.0, 1990.0).success
        assert broker.positions[pid].stop_price == 2005.0
        assert broker.positions[pid].take_profit == 1990.0

    def test_unknown_position(self, broker):
        assert not broker.submit_modification("99", 1990.0, 0.0).success


class TestCloses:
    def test_partial_close_books_pnl(self, broker):
        pid = broker.submit_order("XAUUSD", Direction.LONG, 0.5, 0.0, 0.0).position_id
        broker.update_price(2004.20, 2004.40)

        assert broker.submit_partial_close(pid, 0.2).success
        assert broker.positions[pid].size == pytest.approx(0.3)
        assert broker.positions[pid].initial_size == 0.5
        # (2004.20 - 2000.20) / 0.01 × 1.0 × 0.2 = 80
        assert broker.closed_trades[-1].pnl == pytest.approx(80.0)
        assert broker.balance == pytest.approx(10_080.0)

    def test_partial_close_over_size_rejected(self, broker):
        pid = broker.submit_order("XAUUSD", Direction.LONG, 0.1, 0.0, 0.0).position_id
        assert not broker.submit_partial_close(pid, 0.2).success

    def test_full_close(self, broker):
        pid = broker.submit_order("XAUUSD", Direction.SHORT, 1.0, 0.0, 0.0).position_id
        broker.update_price(1999.00, 1999.20)
        assert broker.submit_close(pid).success
        assert pid not in broker.positions
        assert broker.closed_trades[-1].pnl == pytest.approx(80.0)

    def test_equity_includes_unrealized(self, broker):
        broker.submit_order("XAUUSD", Direction.LONG, 1.0, 0.0, 0.0)
        broker.update_price(1990.20, 1990.40)
        assert broker.get_account_balance() == 10_000.0
        assert broker.get_account_equity() == pytest.approx(9_000.0)


class TestExits:
    def test_stop_hit_on_tick(self, broker):
        broker.submit_order("XAUUSD", Direction.LONG, 0.5, 1998.20, 0.0)
        broker.update_price(1998.00, 1998.20)
        assert broker.positions == {}
        assert broker.closed_trades[-1].reason == "stop"
        assert broker.closed_trades[-1].exit_price == 1998.20

    def test_take_profit_hit_within_bar(self, broker):
        broker.submit_order("XAUUSD", Direction.LONG, 0.5, 1990.0, 2004.20)
        broker.add_bar(T0, 2000.0, 2005.0, 1999.0, 2001.0)
        assert broker.closed_trades[-1].reason == "take_profit"

    def test_short_stop_on_ask(self, broker):
        broker.submit_order("XAUUSD", Direction.SHORT, 0.5, 2001.0, 0.0)
        broker.update_price(2000.90, 2001.10)
        assert broker.closed_trades[-1].reason == "stop"


class TestMarketData:
    def test_atr_from_bars(self, broker):
        for i in range(3):
            broker.add_bar(T0 + timedelta(minutes=i), 2000.0, 2002.0, 1999.0, 2000.0)
        assert broker.get_indicator("XAUUSD", "atr", 3) == pytest.approx(3.0)

    def test_atr_not_enough_bars(self, broker):
        with pytest.raises(DataUnavailable):
            broker.get_indicator("XAUUSD", "atr", 14)

    def test_unknown_indicator(self, broker):
        with pytest.raises(DataUnavailable):
            broker.get_indicator("XAUUSD", "rsi", 14)

    def test_metrics(self, broker):
        m = broker.get_instrument_metrics("XAUUSD")
        assert (m.bid, m.ask) == (2000.00, 2000.20)
        assert m.money_per_point == pytest.approx(1.0)

    def test_default_spread(self):
        b = PaperBroker()
        b.update_price(2000.00)
        assert b.ask == pytest.approx(2000.20)

    def test_bar_moves_clock(self, broker):
        broker.add_bar(T0, 2000.0, 2001.0, 1999.0, 2000.5)
        assert broker.now == T0
        assert broker.bid == 2000.5
