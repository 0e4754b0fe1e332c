"""Tests for the pure results computation in demoday.ranking."""
from __future__ import annotations

from datetime import datetime, timedelta

from demoday.ranking import (
    MULTIPLIERS,
    BalanceEntry,
    InvestmentEntry,
    PitchEntry,
    compute_outcome,
    multiplier_for,
    rank_pitches,
    settle_investors,
)

T0 = datetime(2026, 10, 1, 18, 0, 0)


def _pitches(n: int) -> list[PitchEntry]:
    return [PitchEntry(pitch_id=i, submitted_at=T0 + timedelta(minutes=i)) for i in range(1, n + 1)]


class TestMultipliers:
    def test_top_five(self):
        assert [multiplier_for(r) for r in range(1, 6)] == [20, 10, 5, 3, 2]

    def test_beyond_five_pays_nothing(self):
        assert multiplier_for(6) == 0
        assert multiplier_for(42) == 0

    def test_table_matches_helper(self):
        for rank, m in MULTIPLIERS.items():
            assert multiplier_for(rank) == m


class TestRankPitches:
    def test_orders_by_total_funding(self):
        pitches = _pitches(3)
        investments = [
            InvestmentEntry("a", 1, 1_000),
            InvestmentEntry("a", 2, 10_000),
            InvestmentEntry("b", 2, 5_000),
            InvestmentEntry("b", 3, 5_000),
        ]
        ranked = rank_pitches(pitches, investments)
        assert [(r.rank, r.pitch_id, r.total_funding) for r in ranked] == [
            (1, 2, 15_000), (2, 3, 5_000), (3, 1, 1_000),
        ]
        assert [r.multiplier for r in ranked] == [20, 10, 5]

    def test_tie_goes_to_earlier_submission(self):
        late = PitchEntry(pitch_id=1, submitted_at=T0 + timedelta(hours=1))
        early = PitchEntry(pitch_id=2, submitted_at=T0)
        investments = [InvestmentEntry("a", 1, 500), InvestmentEntry("a", 2, 500)]
        ranked = rank_pitches([late, early], investments)
        assert [r.pitch_id for r in ranked] == [2, 1]

    def test_same_timestamp_falls_back_to_pitch_id(self):
        pitches = [PitchEntry(7, T0), PitchEntry(3, T0)]
        ranked = rank_pitches(pitches, [])
        assert [r.pitch_id for r in ranked] == [3, 7]

    def test_unfunded_pitches_still_ranked(self):
        ranked = rank_pitches(_pitches(2), [])
        assert [r.total_funding for r in ranked] == [0, 0]
        assert [r.rank for r in ranked] == [1, 2]

    def test_sixth_place_multiplier_zero(self):
        pitches = _pitches(7)
        investments = [InvestmentEntry("a", p.pitch_id, 100 * (10 - p.pitch_id)) for p in pitches]
        ranked = rank_pitches(pitches, investments)
        assert [r.multiplier for r in ranked] == [20, 10, 5, 3, 2, 0, 0]


class TestSettleInvestors:
    def test_returns_and_final_balance(self):
        # Three pitches funded 100 / 50 / 10 by one investor each.
        pitches = _pitches(3)
        investments = [
            InvestmentEntry("alice", 1, 100),
            InvestmentEntry("bob", 2, 50),
            InvestmentEntry("carol", 3, 10),
        ]
        balances = [
            BalanceEntry("alice", 1_000, 900),
            BalanceEntry("bob", 1_000, 950),
            BalanceEntry("carol", 1_000, 990),
        ]
        outcome = compute_outcome(pitches, investments, balances)
        by_id = {r.investor_id: r for r in outcome.investor_rankings}

        assert by_id["alice"].returns == 1_900
        assert by_id["alice"].final_balance == 900 + 2_000
        assert by_id["bob"].returns == 450
        assert by_id["bob"].final_balance == 950 + 500
        assert by_id["carol"].returns == 40
        assert by_id["carol"].final_balance == 990 + 50
        assert [r.investor_id for r in outcome.investor_rankings] == ["alice", "bob", "carol"]

    def test_returns_is_payout_minus_invested(self):
        pitches = _pitches(6)
        investments = [InvestmentEntry("a", p.pitch_id, 100 * (7 - p.pitch_id)) for p in pitches]
        ranked = rank_pitches(pitches, investments)
        [result] = settle_investors(ranked, investments, [BalanceEntry("a", 10_000, 10_000 - 2_100)])
        payout = sum(inv.amount * multiplier_for(r.rank) for inv, r in zip(investments, ranked))
        assert result.invested_amount == 2_100
        assert result.returns == payout - 2_100
        assert result.final_balance == 7_900 + payout

    def test_investment_in_sixth_place_is_lost(self):
        pitches = _pitches(6)
        investments = [InvestmentEntry("whale", p.pitch_id, 1_000) for p in pitches[:5]]
        investments.append(InvestmentEntry("minnow", 6, 10))
        balances = [BalanceEntry("whale", 10_000, 5_000), BalanceEntry("minnow", 10_000, 9_990)]
        outcome = compute_outcome(pitches, investments, balances)
        minnow = next(r for r in outcome.investor_rankings if r.investor_id == "minnow")
        assert minnow.returns == -10
        assert minnow.final_balance == 9_990

    def test_angel_without_investments_is_ranked(self):
        pitches = _pitches(1)
        investments = [InvestmentEntry("a", 1, 100)]
        balances = [BalanceEntry("a", 1_000, 900), BalanceEntry("idle", 1_000, 1_000)]
        outcome = compute_outcome(pitches, investments, balances)
        idle = next(r for r in outcome.investor_rankings if r.investor_id == "idle")
        assert idle.invested_amount == 0
        assert idle.returns == 0
        assert idle.final_balance == 1_000
        assert idle.rank == 2

    def test_ties_broken_by_invested_then_id(self):
        pitches = _pitches(1)
        # All three finish on 2000.
        investments = [InvestmentEntry("x", 1, 100)]
        balances = [BalanceEntry("x", 1_000, 0), BalanceEntry("y", 2_000, 2_000), BalanceEntry("w", 2_000, 2_000)]
        outcome = compute_outcome(pitches, investments, balances)
        assert [r.investor_id for r in outcome.investor_rankings] == ["x", "w", "y"]
        assert [r.rank for r in outcome.investor_rankings] == [1, 2, 3]

    def test_investor_without_balance_row_settles_from_zero(self):
        outcome = compute_outcome(_pitches(1), [InvestmentEntry("ghost", 1, 10)], [])
        [ghost] = outcome.investor_rankings
        assert ghost.initial_balance == 0
        assert ghost.final_balance == 200

    def test_final_balances_mapping(self):
        outcome = compute_outcome(
            _pitches(1), [InvestmentEntry("a", 1, 10)], [BalanceEntry("a", 100, 90)],
        )
        assert outcome.final_balances() == {"a": 290}


class TestComputeOutcome:
    def test_ignores_investments_in_unknown_pitches(self):
        outcome = compute_outcome(
            _pitches(1),
            [InvestmentEntry("a", 1, 10), InvestmentEntry("a", 99, 500)],
            [BalanceEntry("a", 1_000, 490)],
        )
        [inv] = outcome.investor_rankings
        assert inv.invested_amount == 10
        assert inv.final_balance == 490 + 10 * 20
        assert [p.total_funding for p in outcome.pitch_rankings] == [10]

    def test_is_deterministic(self):
        pitches = _pitches(4)
        investments = [
            InvestmentEntry("a", 2, 300), InvestmentEntry("b", 1, 300),
            InvestmentEntry("c", 4, 50), InvestmentEntry("a", 3, 75),
        ]
        balances = [BalanceEntry(u, 1_000, 1_000) for u in "abc"]
        assert compute_outcome(pitches, investments, balances) == compute_outcome(pitches, investments, balances)
