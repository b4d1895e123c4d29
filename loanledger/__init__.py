"""
loanledger - Event-Sourced Loan Accrual Engine

Derives loan state and period accruals by replaying an append-only ledger of
approved events.

Usage:
    from datetime import date
    from loanledger import LoanEvent, LoanParameters, Period, calculate_loan_accruals

    params = LoanParameters("L1", total_commitment=1_000_000, commitment_fee_rate="0.005")
    events = [
        LoanEvent("e1", "L1", "interest_rate_set", date(2024, 1, 1), rate="0.08", status="approved"),
        LoanEvent("e2", "L1", "principal_draw", date(2024, 1, 1), amount=500_000, status="approved"),
    ]
    periods = [Period("p1", "L1", date(2024, 1, 1), date(2024, 1, 31))]

    accruals, summary = calculate_loan_accruals(events, periods, params, as_of=date(2024, 1, 31))
    accruals[0].interest_accrued   # 500000 * 0.08 * 31/360
"""

# Core types
from .core import (
    LoanEvent,
    Period,
    LoanParameters,
    AccrualError,
    EventValidationError,
    PeriodValidationError,
    SegmentationError,
    DuplicateInterestCharge,
    InvalidStatusTransition,
    UnknownLoan,
    UnknownEvent,
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
    EVENT_TYPES,
    EVENT_STATUS_DRAFT,
    EVENT_STATUS_APPROVED,
    PERIOD_STATUS_OPEN,
    PERIOD_STATUS_SUBMITTED,
    PERIOD_STATUS_APPROVED,
    PERIOD_STATUS_SENT,
    PROCESSING_MODE_AUTO,
    PROCESSING_MODE_MANUAL,
    INTEREST_TYPE_CASH_PAY,
    INTEREST_TYPE_PIK,
    FEE_BASIS_UNDRAWN_ONLY,
    FEE_BASIS_TOTAL_COMMITMENT,
    PAYMENT_TYPE_CASH,
    PAYMENT_TYPE_PIK,
    DAY_COUNT_30_360,
    DAY_COUNT_ACT_365,
    round_amount,
    to_decimal,
)

# Day counts
from .daycount import (
    act_days,
    days_30360,
    fraction_360,
    fraction_365,
    day_count,
    day_fraction,
    year_fraction,
)

# Replay
from .replay import (
    LoanState,
    ECONOMIC_EVENT_TYPES,
    initial_state,
    sort_events,
    validate_event,
    is_economic_event,
    apply_event,
    get_loan_state_at,
    replay_states,
)

# Segmentation and accruals
from .segments import (
    InterestSegment,
    CommitmentFeeSegment,
    ChangePoint,
    PeriodSegments,
    segment_period,
)
from .accruals import (
    DailyAccrual,
    PeriodAccrual,
    calculate_period_accrual,
    expand_daily_accruals,
    calculate_all_period_accruals,
)
from .summary import (
    AccrualsSummary,
    empty_summary,
    calculate_accruals_summary,
    calculate_loan_accruals,
)

# Boundary
from .records import (
    load_event,
    load_events,
    load_period,
    load_periods,
    load_loan_parameters,
)
from .workflow import (
    approve_event,
    submit_period,
    approve_period,
    send_period,
    classify_period,
    build_interest_charge_event,
)
from .book import LoanBook
from .notices import (
    NoticeLineItem,
    NoticeSnapshot,
    build_notice_snapshot,
    notice_is_stale,
)

__all__ = [
    # Core
    'LoanEvent', 'Period', 'LoanParameters',
    'AccrualError', 'EventValidationError', 'PeriodValidationError', 'SegmentationError',
    'DuplicateInterestCharge', 'InvalidStatusTransition', 'UnknownLoan', 'UnknownEvent',
    'EVENT_PRINCIPAL_DRAW', 'EVENT_PRINCIPAL_REPAYMENT',
    'EVENT_INTEREST_RATE_SET', 'EVENT_INTEREST_RATE_CHANGE', 'EVENT_PIK_FLAG_SET',
    'EVENT_COMMITMENT_SET', 'EVENT_COMMITMENT_CHANGE', 'EVENT_COMMITMENT_CANCEL',
    'EVENT_CASH_RECEIVED', 'EVENT_FEE_INVOICE', 'EVENT_PIK_CAPITALIZATION_POSTED', 'EVENT_TYPES',
    'EVENT_STATUS_DRAFT', 'EVENT_STATUS_APPROVED',
    'PERIOD_STATUS_OPEN', 'PERIOD_STATUS_SUBMITTED', 'PERIOD_STATUS_APPROVED', 'PERIOD_STATUS_SENT',
    'PROCESSING_MODE_AUTO', 'PROCESSING_MODE_MANUAL',
    'INTEREST_TYPE_CASH_PAY', 'INTEREST_TYPE_PIK',
    'FEE_BASIS_UNDRAWN_ONLY', 'FEE_BASIS_TOTAL_COMMITMENT',
    'PAYMENT_TYPE_CASH', 'PAYMENT_TYPE_PIK',
    'DAY_COUNT_30_360', 'DAY_COUNT_ACT_365',
    'round_amount', 'to_decimal',
    # Day counts
    'act_days', 'days_30360', 'fraction_360', 'fraction_365',
    'day_count', 'day_fraction', 'year_fraction',
    # Replay
    'LoanState', 'ECONOMIC_EVENT_TYPES', 'initial_state', 'sort_events', 'validate_event',
    'is_economic_event', 'apply_event', 'get_loan_state_at', 'replay_states',
    # Segmentation and accruals
    'InterestSegment', 'CommitmentFeeSegment', 'ChangePoint', 'PeriodSegments', 'segment_period',
    'DailyAccrual', 'PeriodAccrual', 'calculate_period_accrual', 'expand_daily_accruals',
    'calculate_all_period_accruals',
    'AccrualsSummary', 'empty_summary', 'calculate_accruals_summary', 'calculate_loan_accruals',
    # Boundary
    'load_event', 'load_events', 'load_period', 'load_periods', 'load_loan_parameters',
    'approve_event', 'submit_period', 'approve_period', 'send_period',
    'classify_period', 'build_interest_charge_event',
    'LoanBook',
    'NoticeLineItem', 'NoticeSnapshot', 'build_notice_snapshot', 'notice_is_stale',
]

__version__ = '1.0.0'
