"""
Core types for the loan accrual engine.

This module provides the foundational data structures for the engine:
1. Decimal context and constants (event types, statuses, conventions)
2. Exceptions: AccrualError and domain-specific error types
3. Immutable records: LoanEvent, Period, LoanParameters
4. Canonical serialization used for content hashing

Everything here is immutable. Derived state (LoanState, segments, accruals)
lives in the replay, segments and accruals modules and is always recomputed
from these records, never stored.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Accruals must be bit-identical across replays, so the global Decimal
# context is pinned at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_ACCRUAL_DECIMAL_CONTEXT = getcontext()
_ACCRUAL_DECIMAL_CONTEXT.prec = 50
_ACCRUAL_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Event types (strings, not enum, matching the stored records).
EVENT_PRINCIPAL_DRAW = "principal_draw"
EVENT_PRINCIPAL_REPAYMENT = "principal_repayment"
EVENT_INTEREST_RATE_SET = "interest_rate_set"
EVENT_INTEREST_RATE_CHANGE = "interest_rate_change"
EVENT_PIK_FLAG_SET = "pik_flag_set"
EVENT_COMMITMENT_SET = "commitment_set"
EVENT_COMMITMENT_CHANGE = "commitment_change"
EVENT_COMMITMENT_CANCEL = "commitment_cancel"
EVENT_CASH_RECEIVED = "cash_received"
EVENT_FEE_INVOICE = "fee_invoice"
EVENT_PIK_CAPITALIZATION_POSTED = "pik_capitalization_posted"

EVENT_TYPES: FrozenSet[str] = frozenset({
    EVENT_PRINCIPAL_DRAW,
    EVENT_PRINCIPAL_REPAYMENT,
    EVENT_INTEREST_RATE_SET,
    EVENT_INTEREST_RATE_CHANGE,
    EVENT_PIK_FLAG_SET,
    EVENT_COMMITMENT_SET,
    EVENT_COMMITMENT_CHANGE,
    EVENT_COMMITMENT_CANCEL,
    EVENT_CASH_RECEIVED,
    EVENT_FEE_INVOICE,
    EVENT_PIK_CAPITALIZATION_POSTED,
})

# Event types whose replay is undefined without an amount / a rate.
AMOUNT_REQUIRED_EVENT_TYPES: FrozenSet[str] = frozenset({
    EVENT_PRINCIPAL_DRAW,
    EVENT_PRINCIPAL_REPAYMENT,
    EVENT_COMMITMENT_SET,
    EVENT_COMMITMENT_CHANGE,
    EVENT_PIK_CAPITALIZATION_POSTED,
    EVENT_FEE_INVOICE,
})
RATE_REQUIRED_EVENT_TYPES: FrozenSet[str] = frozenset({
    EVENT_INTEREST_RATE_SET,
    EVENT_INTEREST_RATE_CHANGE,
})

# Event status
EVENT_STATUS_DRAFT = "draft"
EVENT_STATUS_APPROVED = "approved"
EVENT_STATUSES: FrozenSet[str] = frozenset({EVENT_STATUS_DRAFT, EVENT_STATUS_APPROVED})

# Period status (linear workflow) and processing mode
PERIOD_STATUS_OPEN = "open"
PERIOD_STATUS_SUBMITTED = "submitted"
PERIOD_STATUS_APPROVED = "approved"
PERIOD_STATUS_SENT = "sent"
PERIOD_STATUSES = (
    PERIOD_STATUS_OPEN,
    PERIOD_STATUS_SUBMITTED,
    PERIOD_STATUS_APPROVED,
    PERIOD_STATUS_SENT,
)
PROCESSING_MODE_AUTO = "auto"
PROCESSING_MODE_MANUAL = "manual"

# Loan configuration values
INTEREST_TYPE_CASH_PAY = "cash_pay"
INTEREST_TYPE_PIK = "pik"
INTEREST_TYPES: FrozenSet[str] = frozenset({INTEREST_TYPE_CASH_PAY, INTEREST_TYPE_PIK})

FEE_BASIS_UNDRAWN_ONLY = "undrawn_only"
FEE_BASIS_TOTAL_COMMITMENT = "total_commitment"
FEE_BASES: FrozenSet[str] = frozenset({FEE_BASIS_UNDRAWN_ONLY, FEE_BASIS_TOTAL_COMMITMENT})

PAYMENT_TYPE_CASH = "cash"
PAYMENT_TYPE_PIK = "pik"
PAYMENT_TYPES: FrozenSet[str] = frozenset({PAYMENT_TYPE_CASH, PAYMENT_TYPE_PIK})

DAY_COUNT_30_360 = "30/360"
DAY_COUNT_ACT_365 = "ACT/365"
DAY_COUNT_CONVENTIONS: FrozenSet[str] = frozenset({DAY_COUNT_30_360, DAY_COUNT_ACT_365})

# Metadata keys the engine reads. Everything else in metadata is opaque.
META_PAYMENT_TYPE = "payment_type"
META_FEE_TYPE = "fee_type"
META_PERIOD_ID = "period_id"
META_INTEREST_TYPE = "interest_type"
META_DESCRIPTION = "description"

ZERO = Decimal("0")

# Presentation precision per value class. The engine itself never rounds.
DECIMAL_PRECISION = {
    'CASH': 2,
    'RATE': 8,
}


# ============================================================================
# EXCEPTIONS
# ============================================================================

class AccrualError(Exception):
    """Base exception for all accrual engine errors."""
    pass


class EventValidationError(AccrualError):
    """Raised when an event is malformed for replay (missing date, amount or rate)."""

    def __init__(self, message: str, event_id: Optional[str] = None, loan_id: Optional[str] = None):
        self.event_id = event_id
        self.loan_id = loan_id
        super().__init__(f"event {event_id} (loan {loan_id}): {message}")


class PeriodValidationError(AccrualError):
    """Raised when a period is malformed or overlaps another period of the same loan."""

    def __init__(self, message: str, period_id: Optional[str] = None, loan_id: Optional[str] = None):
        self.period_id = period_id
        self.loan_id = loan_id
        super().__init__(f"period {period_id} (loan {loan_id}): {message}")


class SegmentationError(AccrualError):
    """Raised when a period's segments fail to tile the period exactly."""

    def __init__(self, message: str, period_id: Optional[str] = None, loan_id: Optional[str] = None):
        self.period_id = period_id
        self.loan_id = loan_id
        super().__init__(f"period {period_id} (loan {loan_id}): {message}")


class DuplicateInterestCharge(AccrualError):
    """Raised when an interest charge already exists for a period."""

    def __init__(self, loan_id: str, period_id: str, existing_event_id: Optional[str] = None):
        self.loan_id = loan_id
        self.period_id = period_id
        self.existing_event_id = existing_event_id
        super().__init__(
            f"Interest charge event already exists for period {period_id} "
            f"(loan {loan_id}, event {existing_event_id})"
        )


class InvalidStatusTransition(AccrualError):
    """Raised when an event or period is moved outside its linear workflow."""

    def __init__(self, object_id: str, current: str, requested: str):
        self.object_id = object_id
        self.current = current
        self.requested = requested
        super().__init__(f"{object_id}: cannot move from '{current}' to '{requested}'")


class UnknownLoan(AccrualError):
    """Raised when a loan has not been registered with the book."""
    pass


class UnknownEvent(AccrualError):
    """Raised when an event id is not present in the book."""
    pass


# ============================================================================
# HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str to Decimal via str() so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


def round_amount(value: Decimal, kind: str = 'CASH') -> Decimal:
    """
    Round a value for presentation (notices, exports).

    Accrual arithmetic stays unrounded; only rendered figures are quantized.
    """
    quantizer = Decimal(10) ** -DECIMAL_PRECISION[kind]
    return to_decimal(value).quantize(quantizer, rounding=ROUND_HALF_EVEN)


# ============================================================================
# LOAN EVENT
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanEvent:
    """
    One immutable ledger entry for a loan.

    Attributes:
        id: Unique event identifier
        loan_id: Loan this event belongs to
        event_type: One of EVENT_TYPES
        effective_date: Date the event takes economic effect (drives replay order)
        amount: Amount for amount-bearing events
        rate: Annual rate as a decimal fraction (0.085 = 8.5%)
        metadata: Read-only mapping of extra fields (fee_type, payment_type, period_id, ...)
        status: "draft" or "approved"; only approved events are replayed
        created_by: Creator user id
        value_date: Settlement date; informational, does not drive segmentation
        approved_by / approved_at: Approval audit trail
        facility_id: Optional facility reference
        created_at: Creation timestamp, used to break effective-date ties

    Construction checks field types only. Replay-specific completeness
    (amount/rate presence) is checked by replay.validate_event() so that a
    draft can be recorded before it is complete.
    """
    id: str
    loan_id: str
    event_type: str
    effective_date: Optional[date]
    amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    status: str = EVENT_STATUS_DRAFT
    created_by: str = ""
    value_date: Optional[date] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    facility_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id or not str(self.id).strip():
            raise ValueError("LoanEvent id cannot be empty")
        if self.status not in EVENT_STATUSES:
            raise ValueError(f"LoanEvent {self.id}: unknown status '{self.status}'")
        if isinstance(self.effective_date, datetime):
            object.__setattr__(self, 'effective_date', self.effective_date.date())
        if isinstance(self.value_date, datetime):
            object.__setattr__(self, 'value_date', self.value_date.date())
        if self.amount is not None and not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.rate is not None and not isinstance(self.rate, Decimal):
            object.__setattr__(self, 'rate', Decimal(str(self.rate)))
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, 'metadata', MappingProxyType(dict(self.metadata or {})))

    @property
    def is_approved(self) -> bool:
        return self.status == EVENT_STATUS_APPROVED

    @property
    def payment_type(self) -> str:
        """How a fee is settled: "cash" (default) or "pik" (capitalized)."""
        return self.metadata.get(META_PAYMENT_TYPE) or PAYMENT_TYPE_CASH

    @property
    def fee_type(self) -> Optional[str]:
        return self.metadata.get(META_FEE_TYPE)

    @property
    def period_id(self) -> Optional[str]:
        """Period an interest charge was rolled up from."""
        return self.metadata.get(META_PERIOD_ID)

    @property
    def interest_type(self) -> Optional[str]:
        """Interest type carried by a pik_flag_set event."""
        return self.metadata.get(META_INTEREST_TYPE)

    @property
    def description(self) -> Optional[str]:
        return self.metadata.get(META_DESCRIPTION)

    def __repr__(self) -> str:
        parts = [self.event_type, str(self.effective_date)]
        if self.amount is not None:
            parts.append(f"amount={self.amount}")
        if self.rate is not None:
            parts.append(f"rate={self.rate}")
        return f"LoanEvent({self.id}: {', '.join(parts)}, {self.status})"


# ============================================================================
# PERIOD
# ============================================================================

@dataclass(frozen=True, slots=True)
class Period:
    """
    A billing interval [period_start, period_end] for one loan (both ends inclusive).

    Periods are generated outside the engine and never overlap for a loan.
    """
    id: str
    loan_id: str
    period_start: date
    period_end: date
    status: str = PERIOD_STATUS_OPEN
    processing_mode: str = PROCESSING_MODE_AUTO
    has_economic_events: bool = False

    def __post_init__(self):
        if self.status not in PERIOD_STATUSES:
            raise ValueError(f"Period {self.id}: unknown status '{self.status}'")
        if self.processing_mode not in (PROCESSING_MODE_AUTO, PROCESSING_MODE_MANUAL):
            raise ValueError(f"Period {self.id}: unknown processing mode '{self.processing_mode}'")
        if self.period_end < self.period_start:
            raise PeriodValidationError(
                f"period_end {self.period_end} is before period_start {self.period_start}",
                period_id=self.id, loan_id=self.loan_id,
            )

    def contains(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end


# ============================================================================
# LOAN PARAMETERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanParameters:
    """
    Per-loan configuration consumed by the engine.

    total_commitment is the commitment in force before any commitment event;
    commitment_set / commitment_change events override it during replay.
    A commitment_fee_rate of None or zero disables commitment fees.
    """
    loan_id: str
    total_commitment: Decimal = ZERO
    commitment_fee_rate: Optional[Decimal] = None
    commitment_fee_basis: str = FEE_BASIS_UNDRAWN_ONLY
    interest_type: str = INTEREST_TYPE_CASH_PAY
    day_count_convention: str = DAY_COUNT_30_360

    def __post_init__(self):
        if not isinstance(self.total_commitment, Decimal):
            object.__setattr__(self, 'total_commitment', Decimal(str(self.total_commitment or 0)))
        if self.commitment_fee_rate is not None and not isinstance(self.commitment_fee_rate, Decimal):
            object.__setattr__(self, 'commitment_fee_rate', Decimal(str(self.commitment_fee_rate)))
        if self.total_commitment < ZERO:
            raise ValueError(f"total_commitment cannot be negative, got {self.total_commitment}")
        if self.commitment_fee_rate is not None and self.commitment_fee_rate < ZERO:
            raise ValueError(f"commitment_fee_rate cannot be negative, got {self.commitment_fee_rate}")
        if self.commitment_fee_basis not in FEE_BASES:
            raise ValueError(f"Unknown commitment_fee_basis: {self.commitment_fee_basis}")
        if self.interest_type not in INTEREST_TYPES:
            raise ValueError(f"Unknown interest_type: {self.interest_type}")
        if self.day_count_convention not in DAY_COUNT_CONVENTIONS:
            raise ValueError(f"Unknown day count convention: {self.day_count_convention}")

    @property
    def fee_rate(self) -> Decimal:
        """Commitment fee rate with None normalized to zero."""
        return self.commitment_fee_rate if self.commitment_fee_rate is not None else ZERO

    @property
    def charges_commitment_fee(self) -> bool:
        return self.fee_rate > ZERO


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1"; no scientific notation.
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation, so
    semantically equal inputs always hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, date):
        return f"d:{value.isoformat()}"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def event_fingerprint(event: LoanEvent) -> Dict[str, Any]:
    """Fields of an event that affect accruals, as a plain dict for hashing."""
    return {
        'id': event.id,
        'event_type': event.event_type,
        'effective_date': event.effective_date,
        'amount': event.amount,
        'rate': event.rate,
        'payment_type': event.payment_type,
        'interest_type': event.interest_type,
        'status': event.status,
    }
