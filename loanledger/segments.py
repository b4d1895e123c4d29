"""
segments.py - Period Segmenter

Splits one billing period into contiguous sub-intervals of constant state and
prices each one:

    interest segment:  principal * rate * fraction(days)
    fee segment:       basis * fee_rate * fraction(days)
                       basis = undrawn (undrawn_only) or total commitment

Algorithm:
    1. Segment state at period_start = replay of approved events dated
       on or before period_start.
    2. Each economic event dated in (period_start, period_end] is a change
       point; same-date events collapse into one point.
    3. An interest segment closes the day before a change point that moves
       principal or rate; a fee segment closes the day before a change point
       that moves its basis amount.
    4. The last segment closes at period_end.

Segments partition by effective date. value_date is carried on events for
settlement reporting but never moves a boundary.

Non-economic events inside the period (cash_received, pik_flag_set, cash
fees, pik_capitalization_posted) do not move boundaries and do not alter the
segment state; their effect reaches segments from the next period's opening
replay.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterable, List, Tuple
import logging

from .core import (
    LoanEvent, LoanParameters, Period,
    EventValidationError, PeriodValidationError, SegmentationError,
    FEE_BASIS_TOTAL_COMMITMENT,
)
from .daycount import day_count, day_fraction
from .replay import LoanState, apply_event, initial_state, is_economic_event, sort_events

logger = logging.getLogger(__name__)

_ONE_DAY = timedelta(days=1)


# =============================================================================
# SEGMENT DATACLASSES
# =============================================================================

@dataclass(frozen=True, slots=True)
class InterestSegment:
    """Sub-interval with constant principal and rate."""
    start_date: date
    end_date: date
    days: int
    principal: Decimal
    rate: Decimal
    interest: Decimal
    interest_type: str


@dataclass(frozen=True, slots=True)
class CommitmentFeeSegment:
    """Sub-interval with constant fee basis and fee rate."""
    start_date: date
    end_date: date
    days: int
    commitment: Decimal
    undrawn: Decimal
    basis_amount: Decimal
    fee_rate: Decimal
    fee: Decimal


@dataclass(frozen=True, slots=True)
class ChangePoint:
    """Loan state in effect from start_date until the next change point."""
    start_date: date
    state: LoanState


@dataclass(frozen=True, slots=True)
class PeriodSegments:
    """Everything the segmenter derived for one period."""
    period: Period
    change_points: Tuple[ChangePoint, ...]
    interest_segments: Tuple[InterestSegment, ...]
    commitment_fee_segments: Tuple[CommitmentFeeSegment, ...]

    @property
    def segment_state(self) -> LoanState:
        """State at period_start, including events dated on period_start."""
        return self.change_points[0].state


# =============================================================================
# CHANGE POINTS
# =============================================================================

def _check_loan(events: List[LoanEvent], period: Period, params: LoanParameters) -> None:
    if period.loan_id != params.loan_id:
        raise PeriodValidationError(
            f"period belongs to loan {period.loan_id}, parameters to {params.loan_id}",
            period_id=period.id, loan_id=period.loan_id,
        )
    for event in events:
        if event.loan_id != period.loan_id:
            raise EventValidationError(
                f"event belongs to loan {event.loan_id}, not {period.loan_id}",
                event.id, event.loan_id,
            )


def period_change_points(
    period: Period,
    events: Iterable[LoanEvent],
    params: LoanParameters,
) -> List[ChangePoint]:
    """
    Change points for a period, first one at period_start.

    Every approved event in the period advances the running state, so each
    point carries the replayed state for its date. Only economic events open
    a new point; a routine posting mid-period is picked up by the next one.

    Raises:
        EventValidationError: malformed approved event, or event of another loan
        PeriodValidationError: period and parameters belong to different loans
    """
    ordered = sort_events(events)
    _check_loan(ordered, period, params)

    state = initial_state(params)
    for event in ordered:
        if event.effective_date > period.period_start:
            break
        state = apply_event(state, event)

    points = [ChangePoint(period.period_start, replace(state, as_of=period.period_start))]
    for event in ordered:
        day = event.effective_date
        if day <= period.period_start:
            continue
        if day > period.period_end:
            break
        # every event moves the running state; only economic ones open a point
        state = apply_event(state, event)
        if points[-1].start_date == day:
            points[-1] = ChangePoint(day, state)
        elif is_economic_event(event):
            points.append(ChangePoint(day, state))
    return points


def state_runs(
    points: List[ChangePoint],
    period_end: date,
    key: Callable[[LoanState], Tuple],
) -> List[Tuple[date, date, LoanState]]:
    """Merge consecutive change points whose key is unchanged into (start, end, state) runs."""
    runs: List[Tuple[date, date, LoanState]] = []
    for i, point in enumerate(points):
        end = points[i + 1].start_date - _ONE_DAY if i + 1 < len(points) else period_end
        if end < point.start_date:
            # zero-length: event on the period boundary
            continue
        if runs and key(runs[-1][2]) == key(point.state):
            start, _, state = runs[-1]
            runs[-1] = (start, end, state)
        else:
            runs.append((point.start_date, end, point.state))
    return runs


def _interest_key(state: LoanState) -> Tuple:
    return (state.outstanding_principal, state.current_rate)


def fee_basis(state: LoanState, params: LoanParameters) -> Decimal:
    if params.commitment_fee_basis == FEE_BASIS_TOTAL_COMMITMENT:
        return state.total_commitment
    return state.undrawn_commitment


# =============================================================================
# SEGMENT PRICING
# =============================================================================

def calculate_interest_segments(
    points: List[ChangePoint],
    period: Period,
    params: LoanParameters,
) -> List[InterestSegment]:
    """
    Interest segments from change points.

    PURE FUNCTION - interest = principal * rate * fraction(days), days inclusive.
    """
    convention = params.day_count_convention
    segments = []
    for start, end, state in state_runs(points, period.period_end, _interest_key):
        days = day_count(start, end, convention)
        interest = state.outstanding_principal * state.current_rate * day_fraction(days, convention)
        segments.append(InterestSegment(
            start_date=start,
            end_date=end,
            days=days,
            principal=state.outstanding_principal,
            rate=state.current_rate,
            interest=interest,
            interest_type=state.interest_type,
        ))
    return segments


def calculate_commitment_fee_segments(
    points: List[ChangePoint],
    period: Period,
    params: LoanParameters,
) -> List[CommitmentFeeSegment]:
    """
    Commitment fee segments from change points.

    Returns an empty list when the loan charges no commitment fee.
    """
    if not params.charges_commitment_fee:
        return []

    convention = params.day_count_convention
    fee_rate = params.fee_rate
    segments = []
    for start, end, state in state_runs(points, period.period_end, lambda s: (fee_basis(s, params),)):
        days = day_count(start, end, convention)
        basis = fee_basis(state, params)
        segments.append(CommitmentFeeSegment(
            start_date=start,
            end_date=end,
            days=days,
            commitment=state.total_commitment,
            undrawn=state.undrawn_commitment,
            basis_amount=basis,
            fee_rate=fee_rate,
            fee=basis * fee_rate * day_fraction(days, convention),
        ))
    return segments


# =============================================================================
# INTEGRITY
# =============================================================================

def check_tiling(segments, period: Period) -> None:
    """
    Verify segments tile [period_start, period_end] exactly.

    Contiguous, non-overlapping, inside the period, non-negative days.

    Raises:
        SegmentationError: on any violation. The period's figures must not be used.
    """
    if not segments:
        raise SegmentationError("no segments produced", period.id, period.loan_id)
    if segments[0].start_date != period.period_start:
        raise SegmentationError(
            f"first segment starts {segments[0].start_date}, period starts {period.period_start}",
            period.id, period.loan_id,
        )
    if segments[-1].end_date != period.period_end:
        raise SegmentationError(
            f"last segment ends {segments[-1].end_date}, period ends {period.period_end}",
            period.id, period.loan_id,
        )
    previous = None
    for segment in segments:
        if segment.end_date < segment.start_date or segment.days < 0:
            raise SegmentationError(
                f"negative segment {segment.start_date}..{segment.end_date} ({segment.days} days)",
                period.id, period.loan_id,
            )
        if previous is not None and segment.start_date != previous.end_date + _ONE_DAY:
            raise SegmentationError(
                f"segment gap or overlap between {previous.end_date} and {segment.start_date}",
                period.id, period.loan_id,
            )
        previous = segment


# =============================================================================
# ENTRY POINT
# =============================================================================

def segment_period(
    period: Period,
    events: Iterable[LoanEvent],
    params: LoanParameters,
) -> PeriodSegments:
    """
    Segment and price one period.

    Args:
        period: Billing period
        events: All events of the period's loan (drafts are ignored)
        params: Loan configuration

    Returns:
        PeriodSegments with change points, interest segments and fee segments.

    Raises:
        SegmentationError: if the segments fail to tile the period.

    Example:
        # draw 500,000 on Jan 1 and 200,000 on Jan 16 at 8%
        seg = segment_period(period, events, params)
        [s.days for s in seg.interest_segments]  # [15, 16]
    """
    points = period_change_points(period, events, params)
    interest_segments = calculate_interest_segments(points, period, params)
    fee_segments = calculate_commitment_fee_segments(points, period, params)

    check_tiling(interest_segments, period)
    if fee_segments:
        check_tiling(fee_segments, period)

    logger.debug(
        "Period %s (loan %s): %d change points, %d interest segments, %d fee segments",
        period.id, period.loan_id, len(points), len(interest_segments), len(fee_segments),
    )
    return PeriodSegments(
        period=period,
        change_points=tuple(points),
        interest_segments=tuple(interest_segments),
        commitment_fee_segments=tuple(fee_segments),
    )
