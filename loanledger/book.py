"""
book.py - In-Memory Loan Book

LoanBook is the only stateful object in the package. It holds the
append-only event register per loan and enforces the boundary contracts the
pure engine cannot:

    - events are appended, never edited or deleted; approval replaces a
      draft with its approved copy under the same id
    - at most one interest charge per (loan, period), checked and inserted
      atomically under the book's lock
    - the outstanding-principal projection is a cache of replay: it is
      recomputed from the events whenever an approved event enters the book,
      and no other path writes it
    - period classification (manual/auto) is refreshed whenever an event
      dated inside a registered period is recorded or approved

Everything it reports (state_at, accruals) is delegated to the pure engine.
"""

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging
import threading

from .core import (
    LoanEvent, LoanParameters, Period,
    UnknownLoan, UnknownEvent, DuplicateInterestCharge, PeriodValidationError,
    EVENT_PIK_CAPITALIZATION_POSTED, ZERO,
    PERIOD_STATUS_OPEN, PERIOD_STATUS_SUBMITTED, PERIOD_STATUS_APPROVED,
)
from .replay import LoanState, get_loan_state_at, validate_event
from .accruals import PeriodAccrual, calculate_period_accrual, check_periods
from .summary import AccrualsSummary, calculate_loan_accruals
from . import workflow

logger = logging.getLogger(__name__)


class LoanBook:
    """
    Append-only event register for a set of loans.

    Thread Safety:
        Mutating methods hold one re-entrant lock, so the interest-charge
        uniqueness check and the insert happen as one step.

    Example:
        book = LoanBook("main")
        book.register_loan(LoanParameters("L1", total_commitment=1_000_000))
        book.record_event(draw)
        book.approve_event(draw.id, "alice", datetime(2024, 1, 2))
        book.outstanding("L1")  # Decimal("500000")
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.RLock()
        self._loans: Dict[str, LoanParameters] = {}
        self._events: Dict[str, List[LoanEvent]] = {}
        self._event_index: Dict[str, Tuple[str, int]] = {}
        self._periods: Dict[str, Dict[str, Period]] = {}
        self._interest_charges: Dict[Tuple[str, str], str] = {}
        self._outstanding: Dict[str, Decimal] = {}

    # ========================================================================
    # LOANS
    # ========================================================================

    def register_loan(self, params: LoanParameters) -> LoanParameters:
        """Register a loan. Raises ValueError if the loan id is taken."""
        with self._lock:
            if params.loan_id in self._loans:
                raise ValueError(f"Loan already registered: {params.loan_id}")
            self._loans[params.loan_id] = params
            self._events[params.loan_id] = []
            self._periods[params.loan_id] = {}
            self._outstanding[params.loan_id] = ZERO
            logger.info("%s: registered loan %s (commitment %s)", self.name, params.loan_id, params.total_commitment)
            return params

    def loan(self, loan_id: str) -> LoanParameters:
        try:
            return self._loans[loan_id]
        except KeyError:
            raise UnknownLoan(f"Loan not registered: {loan_id}") from None

    def list_loans(self) -> List[str]:
        return sorted(self._loans)

    # ========================================================================
    # EVENTS
    # ========================================================================

    def record_event(self, event: LoanEvent) -> LoanEvent:
        """
        Append an event.

        Approved events (e.g. from an import) are validated for replay and
        refresh the outstanding projection immediately; drafts are stored
        as they are.

        Raises:
            UnknownLoan: loan not registered
            ValueError: event id already recorded
            DuplicateInterestCharge: second interest charge for a period
            EventValidationError: approved event that cannot be replayed
        """
        with self._lock:
            self.loan(event.loan_id)
            if event.id in self._event_index:
                raise ValueError(f"Event already recorded: {event.id}")

            charge_key = None
            if event.event_type == EVENT_PIK_CAPITALIZATION_POSTED and event.period_id is not None:
                charge_key = (event.loan_id, event.period_id)
                if charge_key in self._interest_charges:
                    raise DuplicateInterestCharge(event.loan_id, event.period_id, self._interest_charges[charge_key])

            if event.is_approved:
                validate_event(event)

            events = self._events[event.loan_id]
            events.append(event)
            self._event_index[event.id] = (event.loan_id, len(events) - 1)
            if charge_key is not None:
                self._interest_charges[charge_key] = event.id

            logger.info("%s: recorded %r", self.name, event)
            if event.is_approved:
                self._refresh_outstanding(event.loan_id)
            self._reclassify_periods(event.loan_id, event.effective_date)
            return event

    def get_event(self, event_id: str) -> LoanEvent:
        try:
            loan_id, position = self._event_index[event_id]
        except KeyError:
            raise UnknownEvent(f"Event not recorded: {event_id}") from None
        return self._events[loan_id][position]

    def approve_event(self, event_id: str, approver: str, approved_at: datetime) -> LoanEvent:
        """
        Approve a draft and refresh the outstanding projection from replay.

        Raises:
            UnknownEvent, InvalidStatusTransition, EventValidationError
        """
        with self._lock:
            event = self.get_event(event_id)
            approved = workflow.approve_event(event, approver, approved_at)
            loan_id, position = self._event_index[event_id]
            self._events[loan_id][position] = approved
            logger.info("%s: %s approved %s", self.name, approver, event_id)
            self._refresh_outstanding(loan_id)
            self._reclassify_periods(loan_id, approved.effective_date)
            return approved

    def events(self, loan_id: str, include_drafts: bool = True) -> List[LoanEvent]:
        """Events of a loan in recording order."""
        events = self._events.get(loan_id)
        if events is None:
            raise UnknownLoan(f"Loan not registered: {loan_id}")
        if include_drafts:
            return list(events)
        return [e for e in events if e.is_approved]

    # ========================================================================
    # PROJECTION
    # ========================================================================

    def _refresh_outstanding(self, loan_id: str) -> None:
        state = get_loan_state_at(self._events[loan_id], date.max, self._loans[loan_id])
        previous = self._outstanding.get(loan_id)
        self._outstanding[loan_id] = state.outstanding_principal
        if previous != state.outstanding_principal:
            logger.info(
                "%s: loan %s outstanding %s -> %s",
                self.name, loan_id, previous, state.outstanding_principal,
            )

    def _reclassify_periods(self, loan_id: str, day: Optional[date]) -> None:
        """Re-run classification for registered periods containing day."""
        if day is None:
            return
        periods = self._periods[loan_id]
        for period_id, period in list(periods.items()):
            if not period.contains(day):
                continue
            classified = workflow.classify_period(period, self._events[loan_id])
            if classified != period:
                periods[period_id] = classified
                logger.info(
                    "%s: period %s reclassified %s -> %s",
                    self.name, period_id, period.processing_mode, classified.processing_mode,
                )

    def outstanding(self, loan_id: str) -> Decimal:
        """Outstanding principal after every approved event, whatever its date."""
        self.loan(loan_id)
        return self._outstanding[loan_id]

    def state_at(self, loan_id: str, as_of: date) -> LoanState:
        params = self.loan(loan_id)
        return get_loan_state_at(self._events[loan_id], as_of, params)

    # ========================================================================
    # PERIODS
    # ========================================================================

    def register_period(self, period: Period) -> Period:
        """
        Add a billing period, classified against the events recorded so far.

        Raises:
            UnknownLoan: loan not registered
            PeriodValidationError: duplicate id, or overlap with another period
        """
        with self._lock:
            self.loan(period.loan_id)
            periods = self._periods[period.loan_id]
            if period.id in periods:
                raise PeriodValidationError("period already registered", period.id, period.loan_id)
            check_periods(list(periods.values()) + [period])
            classified = workflow.classify_period(period, self._events[period.loan_id])
            periods[period.id] = classified
            logger.info(
                "%s: registered period %s %s..%s (%s)",
                self.name, period.id, period.period_start, period.period_end, classified.processing_mode,
            )
            return classified

    def get_period(self, loan_id: str, period_id: str) -> Period:
        self.loan(loan_id)
        try:
            return self._periods[loan_id][period_id]
        except KeyError:
            raise PeriodValidationError("period not registered", period_id, loan_id) from None

    def periods(self, loan_id: str) -> List[Period]:
        """Periods of a loan ascending by period_start."""
        self.loan(loan_id)
        return sorted(self._periods[loan_id].values(), key=lambda p: p.period_start)

    def advance_period(self, loan_id: str, period_id: str) -> Period:
        """Move a period one step along open -> submitted -> approved -> sent."""
        transitions = {
            PERIOD_STATUS_OPEN: workflow.submit_period,
            PERIOD_STATUS_SUBMITTED: workflow.approve_period,
            PERIOD_STATUS_APPROVED: workflow.send_period,
        }
        with self._lock:
            period = self.get_period(loan_id, period_id)
            step = transitions.get(period.status, workflow.send_period)
            advanced = step(period)
            self._periods[loan_id][period_id] = advanced
            logger.info("%s: period %s %s -> %s", self.name, period_id, period.status, advanced.status)
            return advanced

    # ========================================================================
    # ACCRUALS
    # ========================================================================

    def period_accrual(self, loan_id: str, period_id: str, include_daily: bool = False) -> PeriodAccrual:
        period = self.get_period(loan_id, period_id)
        return calculate_period_accrual(period, self._events[loan_id], self._loans[loan_id], include_daily)

    def accruals(
        self,
        loan_id: str,
        as_of: date,
        include_daily: bool = False,
    ) -> Tuple[List[PeriodAccrual], AccrualsSummary]:
        params: Optional[LoanParameters] = self._loans.get(loan_id)
        events = self._events.get(loan_id, [])
        periods = list(self._periods.get(loan_id, {}).values())
        return calculate_loan_accruals(events, periods, params, as_of, include_daily)

    def post_interest_charge(
        self,
        loan_id: str,
        period_id: str,
        event_id: str,
        created_by: str,
        created_at: datetime,
    ) -> LoanEvent:
        """
        Record the draft interest charge for a period.

        Raises:
            DuplicateInterestCharge: a charge for the period already exists
        """
        with self._lock:
            accrual = self.period_accrual(loan_id, period_id)
            charge = workflow.build_interest_charge_event(
                accrual, self._events[loan_id], event_id, created_by, created_at,
            )
            return self.record_event(charge)
