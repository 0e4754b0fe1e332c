"""Results computation: rank pitches by funding and settle investor returns.

Everything here is a pure function of plain values so a calculation can be
repeated and compared. Amounts are integer cents throughout.

Algorithm
---------
1. Sum investments per pitch -> ``total_funding``.
2. Order pitches by ``total_funding`` descending, ties going to the pitch
   submitted first (then the lower pitch id), and number them 1..N.
3. Ranks 1-5 pay a fixed multiplier (20x, 10x, 5x, 3x, 2x); every other rank
   pays nothing.
4. For each investor::

       payout       = sum(amount * multiplier)
       returns      = sum(amount * (multiplier - 1))   # payout - invested
       final_balance = remaining_balance + payout

5. Investors are ordered by ``final_balance`` descending, then by amount
   invested descending, then by id.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

MULTIPLIERS: dict[int, int] = {1: 20, 2: 10, 3: 5, 4: 3, 5: 2}


def multiplier_for(rank: int) -> int:
    return MULTIPLIERS.get(rank, 0)


@dataclass(frozen=True)
class PitchEntry:
    pitch_id: int
    submitted_at: datetime


@dataclass(frozen=True)
class InvestmentEntry:
    investor_id: str
    pitch_id: int
    amount: int


@dataclass(frozen=True)
class BalanceEntry:
    user_id: str
    initial_balance: int
    remaining_balance: int


@dataclass
class PitchResult:
    rank: int
    pitch_id: int
    total_funding: int
    multiplier: int


@dataclass
class InvestorResult:
    rank: int
    investor_id: str
    initial_balance: int
    invested_amount: int
    returns: int
    final_balance: int


@dataclass
class Outcome:
    pitch_rankings: list[PitchResult]
    investor_rankings: list[InvestorResult]

    def final_balances(self) -> dict[str, int]:
        return {inv.investor_id: inv.final_balance for inv in self.investor_rankings}


def rank_pitches(pitches: list[PitchEntry], investments: list[InvestmentEntry]) -> list[PitchResult]:
    totals: dict[int, int] = defaultdict(int)
    for inv in investments:
        totals[inv.pitch_id] += inv.amount

    ordered = sorted(pitches, key=lambda p: (-totals.get(p.pitch_id, 0), p.submitted_at, p.pitch_id))
    return [
        PitchResult(
            rank=idx, pitch_id=p.pitch_id,
            total_funding=totals.get(p.pitch_id, 0), multiplier=multiplier_for(idx),
        )
        for idx, p in enumerate(ordered, start=1)
    ]


def settle_investors(
    pitch_rankings: list[PitchResult],
    investments: list[InvestmentEntry],
    balances: list[BalanceEntry],
) -> list[InvestorResult]:
    multiplier_by_pitch = {p.pitch_id: p.multiplier for p in pitch_rankings}
    by_investor: dict[str, dict[int, int]] = defaultdict(lambda: defaultdict(int))
    for inv in investments:
        by_investor[inv.investor_id][inv.pitch_id] += inv.amount

    accounts = {b.user_id: b for b in balances}
    # Investments from a user without a balance row still settle, from zero.
    for investor_id in by_investor:
        accounts.setdefault(investor_id, BalanceEntry(investor_id, 0, 0))

    results: list[InvestorResult] = []
    for user_id, account in accounts.items():
        per_pitch = dict(by_investor.get(user_id, {}))
        invested = sum(per_pitch.values())
        payout = sum(amount * multiplier_by_pitch.get(pid, 0) for pid, amount in per_pitch.items())
        results.append(InvestorResult(
            rank=0, investor_id=user_id,
            initial_balance=account.initial_balance,
            invested_amount=invested,
            returns=payout - invested,
            final_balance=account.remaining_balance + payout,
        ))

    results.sort(key=lambda r: (-r.final_balance, -r.invested_amount, r.investor_id))
    for idx, result in enumerate(results, start=1):
        result.rank = idx
    return results


def compute_outcome(
    pitches: list[PitchEntry],
    investments: list[InvestmentEntry],
    balances: list[BalanceEntry],
) -> Outcome:
    known = {p.pitch_id for p in pitches}
    counted = [inv for inv in investments if inv.pitch_id in known]
    pitch_rankings = rank_pitches(pitches, counted)
    return Outcome(
        pitch_rankings=pitch_rankings,
        investor_rankings=settle_investors(pitch_rankings, counted, balances),
    )
