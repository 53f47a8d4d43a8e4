"""
Tests for take-profit / stop-loss classification.
"""

import math

import pytest

from core.exit_evaluator import ExitEvaluator, evaluate, profit_loss_percent
from core.models import ExitAction, ExitThresholds
from tests.helpers.exit_stubs import make_position


class TestProfitLossPercent:
    def test_gain_and_loss(self):
        assert profit_loss_percent(1.0, 1.25) == pytest.approx(25.0)
        assert profit_loss_percent(2.0, 1.7) == pytest.approx(-15.0)

    @pytest.mark.parametrize("entry,current", [
        (0, 1.0),
        (-1.0, 1.0),
        (1.0, -0.5),
        (float("nan"), 1.0),
        (1.0, float("inf")),
        ("abc", 1.0),
        (None, 1.0),
        (True, 1.0),
    ])
    def test_invalid_inputs_return_none(self, entry, current):
        assert profit_loss_percent(entry, current) is None


class TestEvaluate:
    thresholds = ExitThresholds(take_profit_pct=20.0, stop_loss_pct=10.0)

    def test_take_profit_example(self):
        decision = evaluate(make_position(entry_price=1.0), 1.25, self.thresholds)

        assert decision.action == ExitAction.TAKE_PROFIT
        assert decision.profit_loss_percent == pytest.approx(25.0)
        assert decision.current_price == 1.25
        assert decision.triggered is True

    def test_stop_loss_example(self):
        decision = evaluate(make_position(entry_price=2.0), 1.70, self.thresholds)

        assert decision.action == ExitAction.STOP_LOSS
        assert decision.profit_loss_percent == pytest.approx(-15.0)

    def test_inside_band_holds(self):
        decision = evaluate(make_position(entry_price=1.0), 1.05, self.thresholds)

        assert decision.action == ExitAction.HOLD
        assert decision.triggered is False

    def test_exact_thresholds_trigger(self):
        thresholds = ExitThresholds(take_profit_pct=50.0, stop_loss_pct=50.0)

        assert evaluate(make_position(entry_price=1.0), 1.5, thresholds).action == ExitAction.TAKE_PROFIT
        assert evaluate(make_position(entry_price=1.0), 0.5, thresholds).action == ExitAction.STOP_LOSS

    def test_negative_stop_loss_threshold_uses_magnitude(self):
        thresholds = ExitThresholds(take_profit_pct=20.0, stop_loss_pct=-10.0)

        decision = evaluate(make_position(entry_price=1.0), 0.85, thresholds)

        assert decision.action == ExitAction.STOP_LOSS

    def test_disabled_take_profit_holds_on_gain(self):
        thresholds = ExitThresholds(take_profit_pct=20.0, stop_loss_pct=10.0, take_profit_enabled=False)

        decision = evaluate(make_position(entry_price=1.0), 3.0, thresholds)

        assert decision.action == ExitAction.HOLD
        assert decision.profit_loss_percent == pytest.approx(200.0)

    def test_disabled_stop_loss_holds_on_loss(self):
        thresholds = ExitThresholds(take_profit_pct=20.0, stop_loss_pct=10.0, stop_loss_enabled=False)

        decision = evaluate(make_position(entry_price=1.0), 0.1, thresholds)

        assert decision.action == ExitAction.HOLD

    def test_take_profit_wins_when_both_fire(self):
        thresholds = ExitThresholds(take_profit_pct=-50.0, stop_loss_pct=10.0)

        decision = evaluate(make_position(entry_price=1.0), 0.8, thresholds)

        assert decision.action == ExitAction.TAKE_PROFIT

    @pytest.mark.parametrize("price", [float("nan"), None, "bad", -1.0])
    def test_invalid_price_holds_at_zero(self, price):
        decision = evaluate(make_position(entry_price=1.0), price, self.thresholds)

        assert decision.action == ExitAction.HOLD
        assert decision.profit_loss_percent == 0.0
        assert not math.isnan(decision.current_price)

    def test_zero_entry_price_holds(self):
        decision = evaluate(make_position(entry_price=0.0), 5.0, self.thresholds)

        assert decision.action == ExitAction.HOLD
        assert decision.profit_loss_percent == 0.0

    def test_placeholder_symbol_is_shortened(self):
        position = make_position(symbol="Unknown", token_address="So1aNaTokenMintAddressXYZ9")

        decision = evaluate(position, 1.0, self.thresholds)

        assert decision.symbol == "So1a…XYZ9"


class TestExitEvaluator:
    def test_from_config_defaults(self):
        evaluator = ExitEvaluator.from_config({})

        assert evaluator.defaults.take_profit_pct == 50.0
        assert evaluator.defaults.stop_loss_pct == 20.0

    def test_from_config_reads_thresholds(self):
        evaluator = ExitEvaluator.from_config({
            "thresholds": {"take_profit_pct": 30, "stop_loss_pct": 5, "stop_loss_enabled": False},
        })

        assert evaluator.defaults.take_profit_pct == 30.0
        assert evaluator.defaults.stop_loss_pct == 5.0
        assert evaluator.defaults.stop_loss_enabled is False

    def test_per_position_overrides(self):
        evaluator = ExitEvaluator(ExitThresholds(take_profit_pct=50.0, stop_loss_pct=20.0))
        position = make_position(take_profit_pct=10.0)

        thresholds = evaluator.thresholds_for(position)

        assert thresholds.take_profit_pct == 10.0
        assert thresholds.stop_loss_pct == 20.0

    def test_evaluate_positions_preserves_order(self):
        evaluator = ExitEvaluator(ExitThresholds(take_profit_pct=20.0, stop_loss_pct=10.0))
        positions = [
            make_position("a", entry_price=1.0),
            make_position("b", entry_price=1.0),
            make_position("c", entry_price=1.0),
        ]
        prices = {"Minta": 1.5, "Mintb": 1.0, "Mintc": 0.5}

        decisions = evaluator.evaluate_positions(positions, prices)

        assert [d.position_id for d in decisions] == ["a", "b", "c"]
        assert [d.action for d in decisions] == [ExitAction.TAKE_PROFIT, ExitAction.HOLD, ExitAction.STOP_LOSS]

    def test_missing_price_falls_back_to_last_known(self):
        evaluator = ExitEvaluator(ExitThresholds(take_profit_pct=20.0, stop_loss_pct=10.0))
        positions = [
            make_position("a", entry_price=1.0, current_price=1.3),
            make_position("b", entry_price=1.0),
        ]

        decisions = evaluator.evaluate_positions(positions, {})

        assert decisions[0].action == ExitAction.TAKE_PROFIT
        assert decisions[0].current_price == 1.3
        assert decisions[1].action == ExitAction.HOLD
        assert decisions[1].profit_loss_percent == 0.0
