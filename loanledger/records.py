"""
records.py - Record Adapters

The ONLY place that reads raw records (plain mappings as returned by a
database or an API). Everything downstream takes the typed frozen
dataclasses these functions return.

Accepted value forms:
    dates       date, datetime, or ISO-8601 string ("2024-01-15")
    timestamps  datetime or ISO-8601 string
    amounts     Decimal, int, float or numeric string; None / "" means absent
"""

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional

from .core import (
    LoanEvent, LoanParameters, Period,
    EventValidationError, PeriodValidationError,
    EVENT_STATUS_DRAFT, PERIOD_STATUS_OPEN, PROCESSING_MODE_AUTO,
    FEE_BASIS_UNDRAWN_ONLY, INTEREST_TYPE_CASH_PAY, DAY_COUNT_30_360,
    to_decimal,
)


def parse_date(value: Any) -> Optional[date]:
    """date / datetime / ISO string -> date. None and "" -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    # timestamps such as "2024-01-15T00:00:00Z" are accepted for date columns
    return date.fromisoformat(text[:10])


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


def load_event(raw: Mapping[str, Any]) -> LoanEvent:
    """
    Build a LoanEvent from an event record.

    Raises:
        EventValidationError: if a date, timestamp or number cannot be parsed.

    Example:
        event = load_event({
            'id': 'e1', 'loan_id': 'L1', 'event_type': 'principal_draw',
            'effective_date': '2024-01-01', 'amount': '500000', 'status': 'approved',
        })
    """
    event_id = raw.get('id')
    loan_id = raw.get('loan_id')
    try:
        return LoanEvent(
            id=event_id,
            loan_id=loan_id,
            event_type=raw.get('event_type'),
            effective_date=parse_date(raw.get('effective_date')),
            amount=parse_decimal(raw.get('amount')),
            rate=parse_decimal(raw.get('rate')),
            metadata=dict(raw.get('metadata') or {}),
            status=raw.get('status') or EVENT_STATUS_DRAFT,
            created_by=raw.get('created_by') or "",
            value_date=parse_date(raw.get('value_date')),
            approved_by=raw.get('approved_by'),
            approved_at=parse_datetime(raw.get('approved_at')),
            facility_id=raw.get('facility_id'),
            created_at=parse_datetime(raw.get('created_at')),
        )
    except (ValueError, InvalidOperation) as exc:
        raise EventValidationError(f"unreadable record: {exc}", event_id, loan_id) from exc


def load_events(records: Iterable[Mapping[str, Any]]) -> List[LoanEvent]:
    return [load_event(raw) for raw in records]


def load_period(raw: Mapping[str, Any]) -> Period:
    """
    Build a Period from a period record.

    Raises:
        PeriodValidationError: unparseable dates, or period_end before period_start.
    """
    period_id = raw.get('id')
    loan_id = raw.get('loan_id')
    try:
        start = parse_date(raw.get('period_start'))
        end = parse_date(raw.get('period_end'))
    except ValueError as exc:
        raise PeriodValidationError(f"unreadable record: {exc}", period_id, loan_id) from exc
    if start is None or end is None:
        raise PeriodValidationError("period_start and period_end are required", period_id, loan_id)
    try:
        return Period(
            id=period_id,
            loan_id=loan_id,
            period_start=start,
            period_end=end,
            status=raw.get('status') or PERIOD_STATUS_OPEN,
            processing_mode=raw.get('processing_mode') or PROCESSING_MODE_AUTO,
            has_economic_events=bool(raw.get('has_economic_events', False)),
        )
    except ValueError as exc:
        raise PeriodValidationError(f"unreadable record: {exc}", period_id, loan_id) from exc


def load_periods(records: Iterable[Mapping[str, Any]]) -> List[Period]:
    return [load_period(raw) for raw in records]


def load_loan_parameters(raw: Optional[Mapping[str, Any]], loan_id: Optional[str] = None) -> Optional[LoanParameters]:
    """
    Build LoanParameters from a loan record.

    Returns None for a missing loan so callers can hand the result straight
    to calculate_loan_accruals(), which treats it as "no data yet".

    Raises:
        ValueError: naming the loan, if a number cannot be parsed or a
            configuration value is unknown.
    """
    if raw is None:
        return None
    loan_id = loan_id or raw.get('loan_id') or raw.get('id')
    try:
        return LoanParameters(
            loan_id=loan_id,
            total_commitment=parse_decimal(raw.get('total_commitment')) or Decimal("0"),
            commitment_fee_rate=parse_decimal(raw.get('commitment_fee_rate')),
            commitment_fee_basis=raw.get('commitment_fee_basis') or FEE_BASIS_UNDRAWN_ONLY,
            interest_type=raw.get('interest_type') or INTEREST_TYPE_CASH_PAY,
            day_count_convention=raw.get('day_count_convention') or DAY_COUNT_30_360,
        )
    except (ValueError, InvalidOperation) as exc:
        raise ValueError(f"Loan {loan_id}: unreadable record: {exc}") from exc
