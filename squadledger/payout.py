"""Share-of-pool payout and reputation math.

Pure functions only: the services feed them ledger snapshots and persist the
results, so the same inputs always produce the same outputs.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from squadledger.config import DEFAULT_RATING_WEIGHT, MENTOR_RATING_WEIGHT, MENTOR_ROLE


@dataclass(frozen=True)
class PayoutLine:
    """One participant's slice of the prize pool."""

    principal: str
    confirmed_hh: float
    share: float
    amount: float


def aggregate_hours(pledges: Iterable[tuple[str, float]]) -> dict[str, float]:
    """Sum committed hours per user."""
    totals: dict[str, float] = {}
    for principal, amount in pledges:
        totals[principal] = totals.get(principal, 0.0) + amount
    return totals


def compute_payouts(
    pledges: Iterable[tuple[str, float]],
    prize_pool: float,
    precision: int = 2,
) -> list[PayoutLine]:
    """
    Split ``prize_pool`` proportionally to committed hours.

    Amounts are rounded to ``precision`` decimals and the rounding residue is
    given to the largest holder so the lines always sum to the prize pool.
    Zero committed hours means no distribution at all.

    Args:
        pledges: (principal, hours) pairs of committed pledges
        prize_pool: The project's final monetary value
        precision: Decimal places for monetary amounts

    Returns:
        Payout lines ordered by principal
    """
    hours = aggregate_hours(pledges)
    total = sum(hours.values())
    if total <= 0:
        return []

    lines = []
    for principal in sorted(hours):
        share = hours[principal] / total
        lines.append(
            PayoutLine(
                principal=principal,
                confirmed_hh=hours[principal],
                share=share,
                amount=round(share * prize_pool, precision),
            )
        )

    residue = round(prize_pool - sum(line.amount for line in lines), precision)
    if residue:
        largest = max(range(len(lines)), key=lambda i: (lines[i].confirmed_hh, lines[i].principal))
        line = lines[largest]
        lines[largest] = PayoutLine(
            principal=line.principal,
            confirmed_hh=line.confirmed_hh,
            share=line.share,
            amount=round(line.amount + residue, precision),
        )
    return lines


def rating_weight(squad_role: str | None) -> float:
    """Weight of a rating given the rater's squad role."""
    return MENTOR_RATING_WEIGHT if squad_role == MENTOR_ROLE else DEFAULT_RATING_WEIGHT


def weighted_reputation(ratings: Iterable[tuple[float, float]]) -> float | None:
    """Weighted mean of (rating, weight) pairs, None when nothing is rated."""
    weighted_sum = 0.0
    total_weight = 0.0
    for rating, weight in ratings:
        weighted_sum += rating * weight
        total_weight += weight
    if total_weight <= 0:
        return None
    return weighted_sum / total_weight
