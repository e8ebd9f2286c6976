"""Tests for the per-position rules: trailing stop, break-even, partial close, timed exit.

Quote in all tests: bid 2000.00 / ask 2000.20, point 0.01.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.risk.models import Direction, RiskConfig
from src.scheduler.position_rules import (
    evaluate_break_even,
    evaluate_partial_close,
    evaluate_timed_exit,
    evaluate_trailing_stop,
    is_better_stop,
    profit_points,
)
from tests.helpers import T0, make_metrics, make_position


class TestProfitPoints:
    def test_long_uses_bid(self, metrics):
        pos = make_position(entry_price=1997.0)
        assert profit_points(pos, metrics) == pytest.approx(300.0)

    def test_short_uses_ask(self, metrics):
        pos = make_position(direction=Direction.SHORT, entry_price=2003.20)
        assert profit_points(pos, metrics) == pytest.approx(300.0)

    def test_losing_long_negative(self, metrics):
        pos = make_position(entry_price=2005.0)
        assert profit_points(pos, metrics) == pytest.approx(-500.0)


class TestIsBetterStop:
    def test_unset_always_better(self):
        assert is_better_stop(make_position(stop_price=0.0), 1.0)
        assert is_better_stop(make_position(direction=Direction.SHORT, stop_price=0.0), 5000.0)

    def test_long_higher_is_better(self):
        pos = make_position(stop_price=1995.0)
        assert is_better_stop(pos, 1996.0)
        assert not is_better_stop(pos, 1994.0)
        assert not is_better_stop(pos, 1995.0)

    def test_short_lower_is_better(self):
        pos = make_position(direction=Direction.SHORT, stop_price=2010.0)
        assert is_better_stop(pos, 2009.0)
        assert not is_better_stop(pos, 2011.0)
        assert not is_better_stop(pos, 2010.0)


class TestTrailingStop:
    def test_long_activates(self, metrics, config):
        pos = make_position(entry_price=1997.0, stop_price=1995.0, take_profit=2010.0)
        d = evaluate_trailing_stop(pos, metrics, config)
        assert d is not None
        assert d.action == "modify"
        assert d.new_stop == pytest.approx(1998.5)
        assert d.take_profit == 2010.0

    def test_long_below_activation(self, metrics, config):
        pos = make_position(entry_price=1999.0)  # 100pt < 200pt
        assert evaluate_trailing_stop(pos, metrics, config) is None

    def test_long_never_loosens(self, metrics, config):
        pos = make_position(entry_price=1997.0, stop_price=1999.0)
        assert evaluate_trailing_stop(pos, metrics, config) is None

    def test_short_activates_from_unset(self, metrics, config):
        pos = make_position(direction=Direction.SHORT, entry_price=2003.20, stop_price=0.0)
        d = evaluate_trailing_stop(pos, metrics, config)
        assert d is not None
        assert d.new_stop == pytest.approx(2001.70)

    def test_short_tightens_down(self, metrics, config):
        pos = make_position(direction=Direction.SHORT, entry_price=2003.20, stop_price=2005.0)
        d = evaluate_trailing_stop(pos, metrics, config)
        assert d is not None
        assert d.new_stop < 2005.0

    def test_short_never_loosens(self, metrics, config):
        pos = make_position(direction=Direction.SHORT, entry_price=2003.20, stop_price=2001.0)
        assert evaluate_trailing_stop(pos, metrics, config) is None

    def test_disabled(self, metrics):
        pos = make_position(entry_price=1990.0)
        assert evaluate_trailing_stop(pos, metrics, RiskConfig(use_trailing_stop=False)) is None

    @pytest.mark.parametrize("bid", [1999.0, 2000.0, 2001.5, 2003.0, 2010.0])
    @pytest.mark.parametrize("stop", [0.0, 1990.0, 1998.0, 2000.0, 2008.0])
    def test_monotonic_long(self, bid, stop, config):
        m = make_metrics(bid=bid, ask=bid + 0.2)
        pos = make_position(entry_price=1995.0, stop_price=stop)
        d = evaluate_trailing_stop(pos, m, config)
        if d is not None and stop != 0:
            assert d.new_stop > stop

    @pytest.mark.parametrize("ask", [1990.0, 1995.0, 1998.5, 2000.0, 2001.0])
    @pytest.mark.parametrize("stop", [0.0, 1992.0, 1999.0, 2003.0, 2010.0])
    def test_monotonic_short(self, ask, stop, config):
        m = make_metrics(bid=ask - 0.2, ask=ask)
        pos = make_position(direction=Direction.SHORT, entry_price=2005.0, stop_price=stop)
        d = evaluate_trailing_stop(pos, m, config)
        if d is not None and stop != 0:
            assert d.new_stop < stop


class TestBreakEven:
    def test_sets_entry_exactly(self, metrics, config):
        pos = make_position(entry_price=1998.50, stop_price=1996.0)  # 150pt
        d = evaluate_break_even(pos, metrics, config)
        assert d is not None
        assert d.new_stop == 1998.50

    def test_below_activation(self, metrics, config):
        pos = make_position(entry_price=1999.50)  # 50pt
        assert evaluate_break_even(pos, metrics, config) is None

    def test_not_when_stop_already_beyond_entry(self, metrics, config):
        pos = make_position(entry_price=1998.50, stop_price=1999.0)
        assert evaluate_break_even(pos, metrics, config) is None

    def test_not_when_stop_at_entry(self, metrics, config):
        pos = make_position(entry_price=1998.50, stop_price=1998.50)
        assert evaluate_break_even(pos, metrics, config) is None

    def test_short(self, metrics, config):
        pos = make_position(direction=Direction.SHORT, entry_price=2002.0, stop_price=2005.0)
        d = evaluate_break_even(pos, metrics, config)
        assert d is not None
        assert d.new_stop == 2002.0

    def test_disabled(self, metrics):
        pos = make_position(entry_price=1990.0)
        assert evaluate_break_even(pos, metrics, RiskConfig(use_break_even=False)) is None


class TestPartialClose:
    @pytest.fixture()
    def pc_config(self) -> RiskConfig:
        return RiskConfig(use_partial_close=True, partial_close_percent=50.0, partial_close_activation_points=300.0)

    def test_closes_half(self, metrics, pc_config):
        pos = make_position(entry_price=1996.0, size=0.5)  # 400pt
        d = evaluate_partial_close(pos, metrics, pc_config)
        assert d is not None
        assert d.action == "partial_close"
        assert d.volume == pytest.approx(0.25)

    def test_floored_to_step(self, metrics, pc_config):
        pos = make_position(entry_price=1996.0, size=0.03)
        d = evaluate_partial_close(pos, metrics, pc_config)
        assert d is not None
        assert d.volume == pytest.approx(0.01)

    def test_below_min_lot(self, metrics, pc_config):
        pos = make_position(entry_price=1996.0, size=0.01)
        assert evaluate_partial_close(pos, metrics, pc_config) is None

    def test_below_activation(self, metrics, pc_config):
        pos = make_position(entry_price=1998.0, size=0.5)  # 200pt
        assert evaluate_partial_close(pos, metrics, pc_config) is None

    def test_disabled_by_default(self, metrics, config):
        pos = make_position(entry_price=1990.0, size=1.0)
        assert evaluate_partial_close(pos, metrics, config) is None

    def test_already_reduced(self, metrics, pc_config):
        pos = make_position(entry_price=1996.0, size=0.25, initial_size=0.5)
        assert evaluate_partial_close(pos, metrics, pc_config) is None


class TestTimedExit:
    @pytest.fixture()
    def te_config(self) -> RiskConfig:
        return RiskConfig(max_holding_minutes=120)

    def test_fires_after_max(self, te_config):
        pos = make_position(open_time=T0)
        d = evaluate_timed_exit(pos, T0 + timedelta(minutes=121), te_config)
        assert d is not None
        assert d.action == "close"

    def test_not_before_max(self, te_config):
        pos = make_position(open_time=T0)
        assert evaluate_timed_exit(pos, T0 + timedelta(minutes=119), te_config) is None

    def test_fires_at_exactly_max(self, te_config):
        pos = make_position(open_time=T0)
        assert evaluate_timed_exit(pos, T0 + timedelta(minutes=120), te_config) is not None

    @pytest.mark.parametrize("entry", [1990.0, 2000.0, 2010.0])
    def test_independent_of_profit(self, entry, te_config):
        pos = make_position(entry_price=entry, open_time=T0)
        assert evaluate_timed_exit(pos, T0 + timedelta(minutes=121), te_config) is not None

    def test_disabled_when_zero(self):
        pos = make_position(open_time=T0)
        assert evaluate_timed_exit(pos, T0 + timedelta(days=30), RiskConfig()) is None

    def test_naive_times_read_as_utc(self, te_config):
        pos = make_position(open_time=T0.replace(tzinfo=None))
        assert evaluate_timed_exit(pos, T0 + timedelta(minutes=121), te_config) is not None
        assert evaluate_timed_exit(pos, T0 + timedelta(minutes=119), te_config) is None
        aware = make_position(open_time=T0)
        naive_now = (T0 + timedelta(minutes=121)).replace(tzinfo=None)
        assert evaluate_timed_exit(aware, naive_now, te_config) is not None
