"""
replay.py - Ledger Replay Engine

Derives point-in-time loan state by folding over the approved event ledger.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS (LoanState):
   - Immutable snapshot; every event application returns a NEW instance
   - Never persisted, always recomputed from events

2. PURE FUNCTIONS:
   - sort_events(): approved-only, deterministic order
   - validate_event(): fail fast on events replay cannot interpret
   - apply_event(): one step of the fold
   - get_loan_state_at(): fold up to an as-of date

Determinism: the result depends only on the content of the approved events,
never on the order they were passed in or created. Ties on effective date are
broken by created_at, then id.

Event effects:
    principal_draw              principal += amount
    principal_repayment         principal = max(0, principal - amount)
    interest_rate_set/_change   rate = event.rate
    commitment_set/_change      commitment = amount
    commitment_cancel           commitment = max(0, commitment - amount), or 0 without amount
    pik_capitalization_posted   principal += amount
    fee_invoice (payment_type=pik)  principal += amount
    pik_flag_set                interest_type = metadata.interest_type
    cash_received               no effect
    after every step            undrawn = max(0, commitment - principal)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
import logging

from .core import (
    LoanEvent, LoanParameters, EventValidationError,
    EVENT_TYPES, AMOUNT_REQUIRED_EVENT_TYPES, RATE_REQUIRED_EVENT_TYPES,
    EVENT_PRINCIPAL_DRAW, EVENT_PRINCIPAL_REPAYMENT,
    EVENT_INTEREST_RATE_SET, EVENT_INTEREST_RATE_CHANGE,
    EVENT_PIK_FLAG_SET, EVENT_COMMITMENT_SET, EVENT_COMMITMENT_CHANGE,
    EVENT_COMMITMENT_CANCEL, EVENT_FEE_INVOICE, EVENT_PIK_CAPITALIZATION_POSTED,
    INTEREST_TYPES, PAYMENT_TYPES, PAYMENT_TYPE_PIK, ZERO,
)

logger = logging.getLogger(__name__)


# Events the period classifier and the segmenter both treat as "economic".
# fee_invoice qualifies only when capitalized (see is_economic_event).
ECONOMIC_EVENT_TYPES = frozenset({
    EVENT_PRINCIPAL_DRAW,
    EVENT_PRINCIPAL_REPAYMENT,
    EVENT_INTEREST_RATE_SET,
    EVENT_INTEREST_RATE_CHANGE,
    EVENT_COMMITMENT_SET,
    EVENT_COMMITMENT_CHANGE,
    EVENT_COMMITMENT_CANCEL,
})


# ============================================================================
# LOAN STATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanState:
    """
    Immutable snapshot of a loan as of a date.

    undrawn_commitment is kept equal to max(0, total_commitment - outstanding_principal).
    """
    as_of: Optional[date]
    outstanding_principal: Decimal
    current_rate: Decimal
    interest_type: str
    total_commitment: Decimal
    undrawn_commitment: Decimal
    commitment_fee_rate: Decimal

    def __post_init__(self):
        if not isinstance(self.outstanding_principal, Decimal):
            object.__setattr__(self, 'outstanding_principal', Decimal(str(self.outstanding_principal)))
        if not isinstance(self.current_rate, Decimal):
            object.__setattr__(self, 'current_rate', Decimal(str(self.current_rate)))
        if not isinstance(self.total_commitment, Decimal):
            object.__setattr__(self, 'total_commitment', Decimal(str(self.total_commitment)))
        if not isinstance(self.undrawn_commitment, Decimal):
            object.__setattr__(self, 'undrawn_commitment', Decimal(str(self.undrawn_commitment)))
        if not isinstance(self.commitment_fee_rate, Decimal):
            object.__setattr__(self, 'commitment_fee_rate', Decimal(str(self.commitment_fee_rate)))


def _undrawn(total_commitment: Decimal, principal: Decimal) -> Decimal:
    return max(ZERO, total_commitment - principal)


def initial_state(params: LoanParameters, as_of: Optional[date] = None) -> LoanState:
    """State before any event: no principal, no rate, the configured commitment."""
    return LoanState(
        as_of=as_of,
        outstanding_principal=ZERO,
        current_rate=ZERO,
        interest_type=params.interest_type,
        total_commitment=params.total_commitment,
        undrawn_commitment=params.total_commitment,
        commitment_fee_rate=params.fee_rate,
    )


# ============================================================================
# ORDERING AND VALIDATION
# ============================================================================

def replay_order_key(event: LoanEvent) -> Tuple[date, str, str]:
    """Effective date, then creation time, then id."""
    created = event.created_at.isoformat() if event.created_at is not None else ""
    return (event.effective_date, created, event.id)


def sort_events(events: Iterable[LoanEvent]) -> List[LoanEvent]:
    """
    Approved events in replay order.

    Draft events are proposals and never participate in replay. Every
    approved event is validated first, so a malformed approved event fails
    the whole replay rather than being skipped.
    """
    approved = [e for e in events if e.is_approved]
    for event in approved:
        validate_event(event)
    return sorted(approved, key=replay_order_key)


def validate_event(event: LoanEvent) -> None:
    """
    Check that replay can interpret an event.

    Raises:
        EventValidationError: missing effective_date, unknown type, missing
            amount/rate for a type that needs one, negative amount, or an
            unknown fee payment_type / pik interest_type.
    """
    if event.effective_date is None:
        raise EventValidationError("missing effective_date", event.id, event.loan_id)
    if event.event_type not in EVENT_TYPES:
        raise EventValidationError(f"unknown event type '{event.event_type}'", event.id, event.loan_id)
    if event.event_type in AMOUNT_REQUIRED_EVENT_TYPES and event.amount is None:
        raise EventValidationError(f"{event.event_type} requires an amount", event.id, event.loan_id)
    if event.event_type in RATE_REQUIRED_EVENT_TYPES and event.rate is None:
        raise EventValidationError(f"{event.event_type} requires a rate", event.id, event.loan_id)
    if event.amount is not None and (event.amount.is_nan() or event.amount.is_infinite()):
        raise EventValidationError(f"amount must be finite, got {event.amount}", event.id, event.loan_id)
    if event.amount is not None and event.amount < ZERO:
        raise EventValidationError(f"amount cannot be negative, got {event.amount}", event.id, event.loan_id)
    if event.rate is not None and (event.rate.is_nan() or event.rate.is_infinite()):
        raise EventValidationError(f"rate must be finite, got {event.rate}", event.id, event.loan_id)
    if event.event_type == EVENT_FEE_INVOICE and event.payment_type not in PAYMENT_TYPES:
        raise EventValidationError(f"unknown payment_type '{event.payment_type}'", event.id, event.loan_id)
    if (
        event.event_type == EVENT_PIK_FLAG_SET
        and event.interest_type is not None
        and event.interest_type not in INTEREST_TYPES
    ):
        raise EventValidationError(f"unknown interest_type '{event.interest_type}'", event.id, event.loan_id)


def is_economic_event(event: LoanEvent) -> bool:
    """
    True for events that change principal, rate or commitment by themselves.

    Draws, repayments, rate set/change, commitment set/change/cancel, and
    fee invoices paid in kind. Not economic: cash_received, cash fees,
    pik_flag_set, and pik_capitalization_posted (the routine interest
    roll-up posted at period end).

    The period classifier and the segmenter both use this filter.
    """
    if event.event_type in ECONOMIC_EVENT_TYPES:
        return True
    return event.event_type == EVENT_FEE_INVOICE and event.payment_type == PAYMENT_TYPE_PIK


# ============================================================================
# FOLD
# ============================================================================

def apply_event(state: LoanState, event: LoanEvent) -> LoanState:
    """
    Apply one approved event to a state, returning a new state.

    PURE FUNCTION - the input state is never mutated.

    Raises:
        EventValidationError: if the event cannot be interpreted.
    """
    validate_event(event)
    principal = state.outstanding_principal
    rate = state.current_rate
    commitment = state.total_commitment
    interest_type = state.interest_type
    amount = event.amount

    kind = event.event_type
    if kind == EVENT_PRINCIPAL_DRAW:
        principal += amount
    elif kind == EVENT_PRINCIPAL_REPAYMENT:
        if amount > principal:
            logger.warning(
                "Repayment %s of %s exceeds outstanding %s on loan %s; clamping principal at zero",
                event.id, amount, principal, event.loan_id,
            )
        principal = max(ZERO, principal - amount)
    elif kind in (EVENT_INTEREST_RATE_SET, EVENT_INTEREST_RATE_CHANGE):
        rate = event.rate
    elif kind in (EVENT_COMMITMENT_SET, EVENT_COMMITMENT_CHANGE):
        commitment = amount
    elif kind == EVENT_COMMITMENT_CANCEL:
        commitment = max(ZERO, commitment - amount) if amount is not None else ZERO
    elif kind == EVENT_PIK_CAPITALIZATION_POSTED:
        principal += amount
    elif kind == EVENT_FEE_INVOICE:
        if event.payment_type == PAYMENT_TYPE_PIK:
            principal += amount
    elif kind == EVENT_PIK_FLAG_SET:
        interest_type = event.interest_type or interest_type
    # cash_received: accounting only

    if principal > commitment and commitment > ZERO:
        logger.debug(
            "Loan %s principal %s above commitment %s after %s; undrawn clamped at zero",
            event.loan_id, principal, commitment, event.id,
        )

    return replace(
        state,
        as_of=event.effective_date,
        outstanding_principal=principal,
        current_rate=rate,
        interest_type=interest_type,
        total_commitment=commitment,
        undrawn_commitment=_undrawn(commitment, principal),
    )


def get_loan_state_at(
    events: Iterable[LoanEvent],
    as_of: date,
    params: LoanParameters,
) -> LoanState:
    """
    Replay approved events with effective_date <= as_of.

    Args:
        events: Events for one loan, any status, any order
        as_of: Target date (inclusive)
        params: Loan configuration (initial commitment, fee rate, interest type)

    Returns:
        LoanState as of the target date.

    Example:
        state = get_loan_state_at(events, date(2024, 1, 31), params)
        state.outstanding_principal  # Decimal("700000")
    """
    state = initial_state(params, as_of)
    for event in sort_events(events):
        if event.effective_date > as_of:
            break
        state = apply_event(state, event)
    return replace(state, as_of=as_of)


def replay_states(
    events: Iterable[LoanEvent],
    params: LoanParameters,
) -> List[Tuple[LoanEvent, LoanState]]:
    """
    Every step of the fold: (event, state after event) in replay order.

    Useful for audit views and for checking invariants after each step.
    """
    state = initial_state(params)
    steps: List[Tuple[LoanEvent, LoanState]] = []
    for event in sort_events(events):
        state = apply_event(state, event)
        steps.append((event, state))
    logger.debug("Replayed %d approved events for loan %s", len(steps), params.loan_id)
    return steps
