"""
accruals.py - Interest/Fee Aggregator

Turns the segments of one period into a PeriodAccrual:

    interest_accrued        = sum(segment.interest)
    commitment_fee_accrued  = sum(segment.fee)
    total_due               = interest_accrued + commitment_fee_accrued

plus opening/closing state and the movements booked in the period.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (PeriodAccrual, DailyAccrual):
   - Results only, recomputed on every call, never cached

2. PURE FUNCTIONS:
   - calculate_period_accrual(): one period
   - expand_daily_accruals(): per-day presentation rows
   - calculate_all_period_accruals(): every period of a loan, ascending

Identical inputs produce equal results; there is no hidden memo state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
import logging

from .core import (
    LoanEvent, LoanParameters, Period, PeriodValidationError,
    EVENT_PRINCIPAL_DRAW, EVENT_PRINCIPAL_REPAYMENT,
    EVENT_PIK_CAPITALIZATION_POSTED, EVENT_FEE_INVOICE,
    INTEREST_TYPE_PIK, PAYMENT_TYPE_PIK, ZERO,
)
from .daycount import day_count, day_fraction
from .replay import get_loan_state_at, sort_events
from .segments import (
    InterestSegment, CommitmentFeeSegment, PeriodSegments,
    fee_basis, segment_period, state_runs,
)

logger = logging.getLogger(__name__)


# ============================================================================
# RESULT DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class DailyAccrual:
    """One calendar day of a period. Presentation only; never summed into totals."""
    date: date
    principal: Decimal
    rate: Decimal
    interest_type: str
    daily_interest: Decimal
    cumulative_interest: Decimal
    commitment: Decimal
    undrawn: Decimal
    commitment_fee: Decimal
    cumulative_commitment_fee: Decimal


@dataclass(frozen=True, slots=True)
class PeriodAccrual:
    """
    Accrual figures for one billing period.

    Opening figures are the state at the end of the day before period_start;
    closing figures are the state at the end of period_end. Movements
    (principal_drawn, principal_repaid, ...) cover approved events dated in
    [period_start, period_end].
    """
    period_id: str
    loan_id: str
    period_start: date
    period_end: date
    status: str
    days: int

    opening_principal: Decimal
    closing_principal: Decimal
    opening_rate: Decimal
    closing_rate: Decimal
    opening_commitment: Decimal
    closing_commitment: Decimal
    opening_undrawn: Decimal
    closing_undrawn: Decimal

    principal_drawn: Decimal
    principal_repaid: Decimal
    pik_capitalized: Decimal
    fees_invoiced: Decimal
    fees_capitalized: Decimal

    interest_accrued: Decimal
    commitment_fee_accrued: Decimal
    commitment_fee_rate: Decimal
    average_undrawn: Decimal
    interest_type: str
    day_count_convention: str
    total_due: Decimal
    projected_closing_principal: Decimal

    interest_segments: Tuple[InterestSegment, ...] = ()
    commitment_fee_segments: Tuple[CommitmentFeeSegment, ...] = ()
    daily_accruals: Tuple[DailyAccrual, ...] = ()

    @property
    def is_pik(self) -> bool:
        return self.interest_type == INTEREST_TYPE_PIK

    @property
    def capitalized_amount(self) -> Decimal:
        """Amount rolled into principal at period end (PIK loans only)."""
        return self.total_due if self.is_pik else ZERO


# ============================================================================
# HELPERS
# ============================================================================

def _period_movements(events: List[LoanEvent], period: Period) -> dict:
    """Sum the movements of approved, sorted events dated inside the period."""
    drawn = repaid = pik = invoiced = fees_pik = ZERO
    for event in events:
        if not period.contains(event.effective_date):
            continue
        kind = event.event_type
        if kind == EVENT_PRINCIPAL_DRAW:
            drawn += event.amount
        elif kind == EVENT_PRINCIPAL_REPAYMENT:
            repaid += event.amount
        elif kind == EVENT_PIK_CAPITALIZATION_POSTED:
            pik += event.amount
        elif kind == EVENT_FEE_INVOICE:
            invoiced += event.amount
            if event.payment_type == PAYMENT_TYPE_PIK:
                fees_pik += event.amount
    return {
        'principal_drawn': drawn,
        'principal_repaid': repaid,
        'pik_capitalized': pik,
        'fees_invoiced': invoiced,
        'fees_capitalized': fees_pik,
    }


def _average_undrawn(segmented: PeriodSegments, convention: str) -> Decimal:
    """Day-weighted undrawn commitment over the period."""
    period = segmented.period
    runs = state_runs(list(segmented.change_points), period.period_end, lambda s: (s.undrawn_commitment,))
    weighted = ZERO
    total_days = 0
    for start, end, state in runs:
        days = day_count(start, end, convention)
        weighted += state.undrawn_commitment * days
        total_days += days
    if total_days <= 0:
        return segmented.segment_state.undrawn_commitment
    return weighted / Decimal(total_days)


def expand_daily_accruals(segmented: PeriodSegments, params: LoanParameters) -> List[DailyAccrual]:
    """
    One row per calendar day of the period.

    Each day accrues principal * rate * fraction(1). Under 30/360 the daily
    rows do not add up to the segment totals (31st days, February); the
    segment figures are authoritative.
    """
    convention = params.day_count_convention
    one_day = day_fraction(1, convention)
    fee_rate = params.fee_rate if params.charges_commitment_fee else ZERO
    period = segmented.period
    points = segmented.change_points

    rows = []
    cumulative_interest = ZERO
    cumulative_fee = ZERO
    index = 0
    day = period.period_start
    while day <= period.period_end:
        while index + 1 < len(points) and points[index + 1].start_date <= day:
            index += 1
        state = points[index].state
        daily_interest = state.outstanding_principal * state.current_rate * one_day
        daily_fee = fee_basis(state, params) * fee_rate * one_day
        cumulative_interest += daily_interest
        cumulative_fee += daily_fee
        rows.append(DailyAccrual(
            date=day,
            principal=state.outstanding_principal,
            rate=state.current_rate,
            interest_type=state.interest_type,
            daily_interest=daily_interest,
            cumulative_interest=cumulative_interest,
            commitment=state.total_commitment,
            undrawn=state.undrawn_commitment,
            commitment_fee=daily_fee,
            cumulative_commitment_fee=cumulative_fee,
        ))
        day += timedelta(days=1)
    return rows


# ============================================================================
# PERIOD ACCRUAL
# ============================================================================

def calculate_period_accrual(
    period: Period,
    events: Iterable[LoanEvent],
    params: LoanParameters,
    include_daily: bool = False,
) -> PeriodAccrual:
    """
    Compute the accrual of one period.

    Args:
        period: Billing period
        events: All events of the loan (drafts are ignored)
        params: Loan configuration
        include_daily: Also build the per-day breakdown

    Returns:
        PeriodAccrual

    Raises:
        EventValidationError: malformed approved event
        SegmentationError: segments failed to tile the period

    Example:
        # 500,000 drawn on Jan 1 at 8%, 30/360
        accrual = calculate_period_accrual(jan, events, params)
        accrual.interest_accrued  # 500000 * 0.08 * 31/360
    """
    ordered = sort_events(events)
    segmented = segment_period(period, ordered, params)
    convention = params.day_count_convention

    opening = get_loan_state_at(ordered, period.period_start - timedelta(days=1), params)
    closing = get_loan_state_at(ordered, period.period_end, params)
    movements = _period_movements(ordered, period)

    interest = sum((s.interest for s in segmented.interest_segments), ZERO)
    fee = sum((s.fee for s in segmented.commitment_fee_segments), ZERO)
    total_due = interest + fee

    is_pik = params.interest_type == INTEREST_TYPE_PIK
    if is_pik and movements['pik_capitalized'] == ZERO:
        projected = closing.outstanding_principal + total_due
    else:
        projected = closing.outstanding_principal

    daily: Sequence[DailyAccrual] = ()
    if include_daily:
        daily = expand_daily_accruals(segmented, params)

    logger.debug(
        "Period %s (loan %s) %s..%s: interest=%s fee=%s",
        period.id, period.loan_id, period.period_start, period.period_end, interest, fee,
    )

    return PeriodAccrual(
        period_id=period.id,
        loan_id=period.loan_id,
        period_start=period.period_start,
        period_end=period.period_end,
        status=period.status,
        days=day_count(period.period_start, period.period_end, convention),
        opening_principal=opening.outstanding_principal,
        closing_principal=closing.outstanding_principal,
        opening_rate=opening.current_rate,
        closing_rate=closing.current_rate,
        opening_commitment=opening.total_commitment,
        closing_commitment=closing.total_commitment,
        opening_undrawn=opening.undrawn_commitment,
        closing_undrawn=closing.undrawn_commitment,
        interest_accrued=interest,
        commitment_fee_accrued=fee,
        commitment_fee_rate=params.fee_rate,
        average_undrawn=_average_undrawn(segmented, convention),
        interest_type=params.interest_type,
        day_count_convention=convention,
        total_due=total_due,
        projected_closing_principal=projected,
        interest_segments=segmented.interest_segments,
        commitment_fee_segments=segmented.commitment_fee_segments,
        daily_accruals=tuple(daily),
        **movements,
    )


def check_periods(periods: Sequence[Period]) -> List[Period]:
    """
    Periods in ascending order of period_start.

    Raises:
        PeriodValidationError: if two periods of the same loan overlap.
    """
    ordered = sorted(periods, key=lambda p: (p.period_start, p.period_end, p.id))
    last_by_loan = {}
    for period in ordered:
        previous: Optional[Period] = last_by_loan.get(period.loan_id)
        if previous is not None and period.period_start <= previous.period_end:
            raise PeriodValidationError(
                f"overlaps period {previous.id} ({previous.period_start}..{previous.period_end})",
                period_id=period.id, loan_id=period.loan_id,
            )
        last_by_loan[period.loan_id] = period
    return ordered


def calculate_all_period_accruals(
    periods: Iterable[Period],
    events: Iterable[LoanEvent],
    params: LoanParameters,
    include_daily: bool = False,
) -> List[PeriodAccrual]:
    """
    Accruals for every period of a loan, ascending by period_start.

    Raises:
        PeriodValidationError: overlapping periods
        EventValidationError, SegmentationError: as calculate_period_accrual
    """
    ordered_events = sort_events(events)
    return [
        calculate_period_accrual(period, ordered_events, params, include_daily)
        for period in check_periods(list(periods))
    ]
