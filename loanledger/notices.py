"""
notices.py - Borrower Notice Snapshots

A notice snapshot freezes what was sent to a borrower for one period:
rounded totals, line items, and a content hash of the inputs. When the
ledger later changes (a back-dated repayment, a corrected rate) the hash no
longer matches and a new adjustment version is built that references the
snapshot it supersedes.

The hash covers the accrual figures plus every approved event of the loan
dated on or before period_end, serialized canonically (key order and
Decimal representation do not matter).
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple
import hashlib
import logging

from .core import (
    LoanEvent, _canonicalize, event_fingerprint, round_amount,
    EVENT_FEE_INVOICE, ZERO,
)
from .replay import is_economic_event, sort_events
from .accruals import PeriodAccrual

logger = logging.getLogger(__name__)


LINE_INTEREST = "interest"
LINE_COMMITMENT_FEE = "commitment_fee"


@dataclass(frozen=True, slots=True)
class NoticeLineItem:
    kind: str
    description: str
    start_date: date
    end_date: date
    days: Optional[int]
    amount: Decimal
    rate: Optional[Decimal] = None


@dataclass(frozen=True, slots=True)
class NoticeSnapshot:
    """
    Immutable record of one notice version for a period.

    Attributes:
        snapshot_id: Deterministic id from (period, version, inputs_hash)
        version_number: 1 for the original, +1 per adjustment
        totals: Rounded figures by name (read-only)
        line_items: Interest segments, fee segments, then period events
        inputs_hash: sha256 of the canonical inputs
        is_adjustment: True when this version supersedes another
        references_snapshot_id: The superseded snapshot, if any
    """
    snapshot_id: str
    loan_id: str
    period_id: str
    version_number: int
    totals: Mapping[str, Decimal]
    line_items: Tuple[NoticeLineItem, ...]
    inputs_hash: str
    is_adjustment: bool = False
    references_snapshot_id: Optional[str] = None
    generated_at: Optional[datetime] = None


def _relevant_events(accrual: PeriodAccrual, events: Iterable[LoanEvent]):
    return [
        e for e in sort_events(events)
        if e.loan_id == accrual.loan_id and e.effective_date <= accrual.period_end
    ]


def compute_inputs_hash(accrual: PeriodAccrual, events: Iterable[LoanEvent]) -> str:
    """Content hash of everything a period's notice depends on."""
    content = {
        'loan_id': accrual.loan_id,
        'period_id': accrual.period_id,
        'period_start': accrual.period_start,
        'period_end': accrual.period_end,
        'opening_principal': accrual.opening_principal,
        'closing_principal': accrual.closing_principal,
        'interest_accrued': accrual.interest_accrued,
        'commitment_fee_accrued': accrual.commitment_fee_accrued,
        'total_due': accrual.total_due,
        'day_count_convention': accrual.day_count_convention,
        'events': [event_fingerprint(e) for e in _relevant_events(accrual, events)],
    }
    return hashlib.sha256(_canonicalize(content).encode()).hexdigest()


def notice_totals(accrual: PeriodAccrual) -> Mapping[str, Decimal]:
    return MappingProxyType({
        'opening_principal': round_amount(accrual.opening_principal),
        'closing_principal': round_amount(accrual.closing_principal),
        'interest': round_amount(accrual.interest_accrued),
        'pik_capitalized': round_amount(accrual.pik_capitalized),
        'commitment_fee': round_amount(accrual.commitment_fee_accrued),
        'fees_invoiced': round_amount(accrual.fees_invoiced),
        'total_due': round_amount(accrual.total_due),
    })


def notice_line_items(accrual: PeriodAccrual, events: Iterable[LoanEvent]) -> Tuple[NoticeLineItem, ...]:
    items = []
    for seg in accrual.interest_segments:
        items.append(NoticeLineItem(
            kind=LINE_INTEREST,
            description=f"Interest on {round_amount(seg.principal)} at {round_amount(seg.rate, 'RATE')}",
            start_date=seg.start_date,
            end_date=seg.end_date,
            days=seg.days,
            amount=round_amount(seg.interest),
            rate=seg.rate,
        ))
    for seg in accrual.commitment_fee_segments:
        items.append(NoticeLineItem(
            kind=LINE_COMMITMENT_FEE,
            description=f"Commitment fee on {round_amount(seg.basis_amount)} at {round_amount(seg.fee_rate, 'RATE')}",
            start_date=seg.start_date,
            end_date=seg.end_date,
            days=seg.days,
            amount=round_amount(seg.fee),
            rate=seg.fee_rate,
        ))
    for event in _relevant_events(accrual, events):
        if event.effective_date < accrual.period_start:
            continue
        if not (is_economic_event(event) or event.event_type == EVENT_FEE_INVOICE):
            continue
        items.append(NoticeLineItem(
            kind=event.event_type,
            description=event.description or event.fee_type or event.event_type,
            start_date=event.effective_date,
            end_date=event.effective_date,
            days=None,
            amount=round_amount(event.amount) if event.amount is not None else ZERO,
            rate=event.rate,
        ))
    return tuple(items)


def _snapshot_id(period_id: str, version_number: int, inputs_hash: str) -> str:
    content = f"notice:{period_id}|v{version_number}|{inputs_hash}"
    return hashlib.sha256(content.encode()).hexdigest()[:16]


def build_notice_snapshot(
    period_accrual: PeriodAccrual,
    events: Iterable[LoanEvent],
    version_number: int = 1,
    previous: Optional[NoticeSnapshot] = None,
    generated_at: Optional[datetime] = None,
) -> NoticeSnapshot:
    """
    Build a notice snapshot for a period.

    With a previous snapshot of the same period:
        - same inputs hash: the previous snapshot is returned unchanged
        - different hash: a new adjustment version (previous + 1) that
          references the previous snapshot

    Raises:
        ValueError: previous belongs to another loan or period, or version < 1.
    """
    events = list(events)
    inputs_hash = compute_inputs_hash(period_accrual, events)

    is_adjustment = False
    references = None
    if previous is not None:
        if (previous.loan_id, previous.period_id) != (period_accrual.loan_id, period_accrual.period_id):
            raise ValueError(
                f"Snapshot {previous.snapshot_id} belongs to period {previous.period_id}, "
                f"not {period_accrual.period_id}"
            )
        if previous.inputs_hash == inputs_hash:
            return previous
        version_number = previous.version_number + 1
        is_adjustment = True
        references = previous.snapshot_id
        logger.info(
            "Period %s inputs changed since notice v%d; building adjustment v%d",
            period_accrual.period_id, previous.version_number, version_number,
        )

    if version_number < 1:
        raise ValueError(f"version_number must be >= 1, got {version_number}")

    return NoticeSnapshot(
        snapshot_id=_snapshot_id(period_accrual.period_id, version_number, inputs_hash),
        loan_id=period_accrual.loan_id,
        period_id=period_accrual.period_id,
        version_number=version_number,
        totals=notice_totals(period_accrual),
        line_items=notice_line_items(period_accrual, events),
        inputs_hash=inputs_hash,
        is_adjustment=is_adjustment,
        references_snapshot_id=references,
        generated_at=generated_at,
    )


def notice_is_stale(snapshot: NoticeSnapshot, period_accrual: PeriodAccrual, events: Iterable[LoanEvent]) -> bool:
    """True when the ledger has moved on since the snapshot was built."""
    return snapshot.inputs_hash != compute_inputs_hash(period_accrual, events)
