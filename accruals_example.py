"""
accruals_example.py - Loan Accruals Tutorial

This tutorial walks a revolving credit facility through one quarter and shows
how every figure is derived by replaying the approved event ledger.

THE THREE LAYERS:
=================

1. REPLAY - get_loan_state_at(events, as_of, params)
   - Folds approved events in (effective_date, created_at, id) order
   - Drafts never participate
   - Any historical state can be recomputed at any time

2. SEGMENTS - segment_period(period, events, params)
   - Splits a billing period wherever principal, rate or commitment changes
   - Segments tile the period exactly; each is priced on its own

3. ACCRUALS - calculate_loan_accruals(events, periods, params, as_of)
   - Period totals, movements, PIK projection and a loan-level summary

SCENARIO: Harbor Logistics Revolver
===================================

You run loan operations for a 1,000,000 revolver at 8% with a 0.5% fee on
the undrawn amount. The borrower draws 500,000 on January 1 and 200,000 on
January 16. After the January notice goes out, treasury finds a 100,000
repayment received on January 25 that was never booked.

Run:
    python accruals_example.py
"""

from datetime import date, datetime
from decimal import Decimal

from loanledger import (
    LoanBook, LoanEvent, LoanParameters, Period,
    build_notice_snapshot, notice_is_stale, round_amount,
)


LOAN = "HARBOR-RCF"
NOW = datetime(2024, 2, 1, 9, 0)


def event(event_id, event_type, day, amount=None, rate=None, status="approved", **metadata) -> LoanEvent:
    return LoanEvent(
        id=event_id,
        loan_id=LOAN,
        event_type=event_type,
        effective_date=day,
        amount=amount,
        rate=rate,
        metadata=metadata,
        status=status,
        created_by="ops",
        created_at=datetime.combine(day, datetime.min.time()),
    )


def create_book() -> LoanBook:
    """Revolver with two draws in January and monthly periods for Q1."""
    book = LoanBook("harbor")
    book.register_loan(LoanParameters(
        LOAN,
        total_commitment=Decimal("1000000"),
        commitment_fee_rate=Decimal("0.005"),
    ))
    book.record_event(event("c1", "commitment_set", date(2024, 1, 1), amount="1000000"))
    book.record_event(event("r1", "interest_rate_set", date(2024, 1, 1), rate="0.08"))
    book.record_event(event("d1", "principal_draw", date(2024, 1, 1), amount="500000"))
    book.record_event(event("d2", "principal_draw", date(2024, 1, 16), amount="200000"))
    for period_id, start, end in [
        ("2024-01", date(2024, 1, 1), date(2024, 1, 31)),
        ("2024-02", date(2024, 2, 1), date(2024, 2, 29)),
        ("2024-03", date(2024, 3, 1), date(2024, 3, 31)),
    ]:
        book.register_period(Period(period_id, LOAN, start, end))
    return book


def print_period(accrual):
    print(f"\nPeriod {accrual.period_id} ({accrual.period_start} to {accrual.period_end}, "
          f"{accrual.days} days {accrual.day_count_convention})")
    print(f"  {'From':<12} {'To':<12} {'Days':>5} {'Principal':>14} {'Rate':>8} {'Interest':>12}")
    print("  " + "-" * 66)
    for s in accrual.interest_segments:
        print(f"  {s.start_date!s:<12} {s.end_date!s:<12} {s.days:>5} "
              f"{s.principal:>14,.2f} {s.rate:>8.4%} {round_amount(s.interest):>12,.2f}")
    print(f"  Interest:        {round_amount(accrual.interest_accrued):>12,.2f}")
    print(f"  Commitment fee:  {round_amount(accrual.commitment_fee_accrued):>12,.2f}")
    print(f"  Total due:       {round_amount(accrual.total_due):>12,.2f}")


def demonstrate_quarter(book: LoanBook):
    print("=" * 70)
    print("STEP 1: QUARTERLY ACCRUALS")
    print("=" * 70)
    accruals, summary = book.accruals(LOAN, date(2024, 3, 31))
    for accrual in accruals:
        print_period(accrual)

    print(f"\nSummary as of {summary.as_of}:")
    print(f"  Outstanding principal: {summary.current_principal:>14,.2f}")
    print(f"  Undrawn commitment:    {summary.current_undrawn:>14,.2f}")
    print(f"  Average rate:          {summary.average_rate:>14.4%}")
    print(f"  Interest accrued:      {round_amount(summary.total_interest_accrued):>14,.2f}")
    print(f"  Commitment fees:       {round_amount(summary.total_commitment_fees):>14,.2f}")


def demonstrate_correction(book: LoanBook):
    print("\n" + "=" * 70)
    print("STEP 2: BACK-DATED REPAYMENT AND NOTICE ADJUSTMENT")
    print("=" * 70)

    january = book.period_accrual(LOAN, "2024-01")
    notice = build_notice_snapshot(january, book.events(LOAN), generated_at=NOW)
    print(f"\nNotice v{notice.version_number} {notice.snapshot_id}: "
          f"total due {notice.totals['total_due']:,.2f}")

    book.record_event(event("p1", "principal_repayment", date(2024, 1, 25), amount="100000", status="draft"))
    print(f"Draft repayment recorded; notice stale: "
          f"{notice_is_stale(notice, book.period_accrual(LOAN, '2024-01'), book.events(LOAN))}")

    book.approve_event("p1", "checker", NOW)
    revised = book.period_accrual(LOAN, "2024-01")
    print(f"Repayment approved; notice stale: {notice_is_stale(notice, revised, book.events(LOAN))}")
    print_period(revised)

    adjustment = build_notice_snapshot(revised, book.events(LOAN), previous=notice, generated_at=NOW)
    print(f"\nAdjustment v{adjustment.version_number} {adjustment.snapshot_id} "
          f"(replaces {adjustment.references_snapshot_id}): "
          f"total due {adjustment.totals['total_due']:,.2f}")


def demonstrate_replay(book: LoanBook):
    print("\n" + "=" * 70)
    print("STEP 3: POINT-IN-TIME STATE")
    print("=" * 70)
    print(f"\n{'As of':<12} {'Principal':>14} {'Undrawn':>14} {'Rate':>8}")
    print("-" * 52)
    for day in [date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 16), date(2024, 1, 25), date(2024, 3, 31)]:
        state = book.state_at(LOAN, day)
        print(f"{day!s:<12} {state.outstanding_principal:>14,.2f} "
              f"{state.undrawn_commitment:>14,.2f} {state.current_rate:>8.4%}")
    print(f"\nOutstanding projection: {book.outstanding(LOAN):,.2f}")


if __name__ == "__main__":
    book = create_book()
    demonstrate_quarter(book)
    demonstrate_correction(book)
    demonstrate_replay(book)
