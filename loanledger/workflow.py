"""
workflow.py - Status Transitions and Interest Charges

Event status:   draft --approve--> approved   (terminal)
Period status:  open --submit--> submitted --approve--> approved --send--> sent

All transitions are linear. Anything else raises InvalidStatusTransition.
Authorization (who may approve) is decided by the caller.

Also here:
    classify_period()             - manual review flag, same event filter as the segmenter
    build_interest_charge_event() - the PIK roll-up posting for a period
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from .core import (
    LoanEvent, Period, InvalidStatusTransition, DuplicateInterestCharge,
    EVENT_STATUS_DRAFT, EVENT_STATUS_APPROVED, EVENT_PIK_CAPITALIZATION_POSTED,
    PERIOD_STATUS_OPEN, PERIOD_STATUS_SUBMITTED, PERIOD_STATUS_APPROVED, PERIOD_STATUS_SENT,
    PROCESSING_MODE_AUTO, PROCESSING_MODE_MANUAL,
    META_PERIOD_ID, META_DESCRIPTION, round_amount,
)
from .replay import is_economic_event, validate_event
from .accruals import PeriodAccrual


_NEXT_PERIOD_STATUS = {
    PERIOD_STATUS_OPEN: PERIOD_STATUS_SUBMITTED,
    PERIOD_STATUS_SUBMITTED: PERIOD_STATUS_APPROVED,
    PERIOD_STATUS_APPROVED: PERIOD_STATUS_SENT,
}


# ============================================================================
# EVENTS
# ============================================================================

def approve_event(event: LoanEvent, approver: str, approved_at: datetime) -> LoanEvent:
    """
    Approve a draft event.

    The event must be complete enough to replay; an incomplete draft stays
    a draft.

    Raises:
        InvalidStatusTransition: event is not a draft
        EventValidationError: event cannot be replayed
    """
    if event.status != EVENT_STATUS_DRAFT:
        raise InvalidStatusTransition(event.id, event.status, EVENT_STATUS_APPROVED)
    validate_event(event)
    return replace(event, status=EVENT_STATUS_APPROVED, approved_by=approver, approved_at=approved_at)


# ============================================================================
# PERIODS
# ============================================================================

def _advance(period: Period, requested: str) -> Period:
    if _NEXT_PERIOD_STATUS.get(period.status) != requested:
        raise InvalidStatusTransition(period.id, period.status, requested)
    return replace(period, status=requested)


def submit_period(period: Period) -> Period:
    return _advance(period, PERIOD_STATUS_SUBMITTED)


def approve_period(period: Period) -> Period:
    return _advance(period, PERIOD_STATUS_APPROVED)


def send_period(period: Period) -> Period:
    return _advance(period, PERIOD_STATUS_SENT)


def classify_period(period: Period, events: Iterable[LoanEvent]) -> Period:
    """
    Flag a period that needs manual review.

    A period is "manual" iff an economic event of its loan, draft or
    approved, is dated inside it. Uses is_economic_event(), the filter the
    segmenter uses, so the flag and the segments never disagree.
    """
    has_economic = any(
        event.loan_id == period.loan_id
        and event.effective_date is not None
        and period.contains(event.effective_date)
        and is_economic_event(event)
        for event in events
    )
    return replace(
        period,
        has_economic_events=has_economic,
        processing_mode=PROCESSING_MODE_MANUAL if has_economic else PROCESSING_MODE_AUTO,
    )


# ============================================================================
# INTEREST CHARGE
# ============================================================================

def find_interest_charge(
    events: Iterable[LoanEvent],
    loan_id: str,
    period_id: str,
) -> Optional[LoanEvent]:
    """Existing interest charge (any status) linked to a period, if any."""
    for event in events:
        if (
            event.loan_id == loan_id
            and event.event_type == EVENT_PIK_CAPITALIZATION_POSTED
            and event.period_id == period_id
        ):
            return event
    return None


def build_interest_charge_event(
    accrual: PeriodAccrual,
    existing_events: Iterable[LoanEvent],
    event_id: str,
    created_by: str,
    created_at: datetime,
) -> LoanEvent:
    """
    Build the draft interest charge for a period.

    A pik_capitalization_posted event dated period_end for
    interest_accrued + commitment_fee_accrued (rounded to cents), linked to
    the period through metadata. It only reaches principal once approved.

    Raises:
        DuplicateInterestCharge: a charge for this period already exists.
    """
    existing = find_interest_charge(existing_events, accrual.loan_id, accrual.period_id)
    if existing is not None:
        raise DuplicateInterestCharge(accrual.loan_id, accrual.period_id, existing.id)

    amount = round_amount(accrual.interest_accrued + accrual.commitment_fee_accrued)
    metadata = {
        META_PERIOD_ID: accrual.period_id,
        'period_start': accrual.period_start.isoformat(),
        'period_end': accrual.period_end.isoformat(),
        'interest_accrued': str(round_amount(accrual.interest_accrued)),
        'commitment_fee_accrued': str(round_amount(accrual.commitment_fee_accrued)),
        'opening_principal': str(accrual.opening_principal),
        'closing_principal': str(accrual.closing_principal),
        'day_count_convention': accrual.day_count_convention,
        META_DESCRIPTION: f"Interest charge {accrual.period_start.isoformat()} to {accrual.period_end.isoformat()}",
    }
    return LoanEvent(
        id=event_id,
        loan_id=accrual.loan_id,
        event_type=EVENT_PIK_CAPITALIZATION_POSTED,
        effective_date=accrual.period_end,
        amount=amount,
        metadata=metadata,
        status=EVENT_STATUS_DRAFT,
        created_by=created_by,
        created_at=created_at,
    )
