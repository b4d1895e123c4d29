"""
summary.py - Accruals Summary Builder

Reduces period accruals and a full replay into loan-level figures.

Current figures (principal, rate, commitment, undrawn) always come from a
replay of the approved events up to as_of, never from summing periods, so
they stay right when periods have gaps or have not been generated yet.

as_of is always passed in. Nothing here reads the wall clock.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
import logging

from .core import LoanEvent, LoanParameters, Period, ZERO
from .replay import get_loan_state_at
from .accruals import PeriodAccrual, calculate_all_period_accruals

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AccrualsSummary:
    """Loan-level rollup of all period accruals plus the replayed current state."""
    as_of: date
    total_days: int
    total_interest_accrued: Decimal
    total_commitment_fees: Decimal
    total_fees_invoiced: Decimal
    total_pik_capitalized: Decimal
    total_due: Decimal
    current_principal: Decimal
    current_rate: Decimal
    average_rate: Decimal
    total_commitment: Decimal
    current_undrawn: Decimal
    commitment_fee_rate: Decimal


def empty_summary(as_of: date) -> AccrualsSummary:
    """Zero-valued summary for a loan with no data yet."""
    return AccrualsSummary(
        as_of=as_of,
        total_days=0,
        total_interest_accrued=ZERO,
        total_commitment_fees=ZERO,
        total_fees_invoiced=ZERO,
        total_pik_capitalized=ZERO,
        total_due=ZERO,
        current_principal=ZERO,
        current_rate=ZERO,
        average_rate=ZERO,
        total_commitment=ZERO,
        current_undrawn=ZERO,
        commitment_fee_rate=ZERO,
    )


def _weighted_average_rate(period_accruals: Sequence[PeriodAccrual]) -> Decimal:
    """Rate weighted by principal * days over every interest segment."""
    weighted = ZERO
    weight = ZERO
    for accrual in period_accruals:
        for segment in accrual.interest_segments:
            w = segment.principal * segment.days
            weighted += segment.rate * w
            weight += w
    if weight == ZERO:
        return ZERO
    return weighted / weight


def calculate_accruals_summary(
    period_accruals: Sequence[PeriodAccrual],
    events: Iterable[LoanEvent],
    params: LoanParameters,
    as_of: date,
) -> AccrualsSummary:
    """
    Build the summary.

    With no period accruals the summary degrades to the replayed current
    state: all period totals are zero and average_rate equals current_rate.
    """
    state = get_loan_state_at(events, as_of, params)

    if not period_accruals:
        logger.debug("Loan %s has no periods; summary from replay only", params.loan_id)
        average_rate = state.current_rate
    else:
        average_rate = _weighted_average_rate(period_accruals)

    return AccrualsSummary(
        as_of=as_of,
        total_days=sum(a.days for a in period_accruals),
        total_interest_accrued=sum((a.interest_accrued for a in period_accruals), ZERO),
        total_commitment_fees=sum((a.commitment_fee_accrued for a in period_accruals), ZERO),
        total_fees_invoiced=sum((a.fees_invoiced for a in period_accruals), ZERO),
        total_pik_capitalized=sum((a.pik_capitalized for a in period_accruals), ZERO),
        total_due=sum((a.total_due for a in period_accruals), ZERO),
        current_principal=state.outstanding_principal,
        current_rate=state.current_rate,
        average_rate=average_rate,
        total_commitment=state.total_commitment,
        current_undrawn=state.undrawn_commitment,
        commitment_fee_rate=state.commitment_fee_rate,
    )


def calculate_loan_accruals(
    events: Iterable[LoanEvent],
    periods: Iterable[Period],
    params: Optional[LoanParameters],
    as_of: date,
    include_daily: bool = False,
) -> Tuple[List[PeriodAccrual], AccrualsSummary]:
    """
    Top-level entry: every period accrual of a loan plus its summary.

    A missing loan (params is None) or an empty event list is "no data yet",
    not an error: returns ([], empty_summary(as_of)).

    Example:
        accruals, summary = calculate_loan_accruals(events, periods, params, date(2024, 3, 31))
        summary.total_interest_accrued
    """
    events = list(events)
    if params is None or not events:
        return [], empty_summary(as_of)

    accruals = calculate_all_period_accruals(periods, events, params, include_daily)
    summary = calculate_accruals_summary(accruals, events, params, as_of)
    logger.debug(
        "Loan %s: %d periods, total due %s as of %s",
        params.loan_id, len(accruals), summary.total_due, as_of,
    )
    return accruals, summary
