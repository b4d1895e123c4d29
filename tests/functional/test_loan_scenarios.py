"""
test_loan_scenarios.py - End-to-end loan scenario tests

Tests complete loan lifecycles:
- Stored records to accruals and summary
- Mid-period draw split into segments
- Cash pay vs PIK fees
- Multi-period PIK roll-up through the LoanBook
- Back-dated repayment and notice adjustment
- Period workflow with manual review
- ACT/365 loans
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from loanledger import (
    LoanBook, LoanParameters,
    load_events, load_periods, load_loan_parameters,
    calculate_loan_accruals, calculate_period_accrual, day_count, round_amount,
    build_notice_snapshot, notice_is_stale,
    INTEREST_TYPE_PIK, DAY_COUNT_ACT_365, PROCESSING_MODE_AUTO, PROCESSING_MODE_MANUAL,
    PERIOD_STATUS_SENT,
)

from tests.factories import (
    LOAN_ID, make_params, make_period, monthly_periods,
    commitment_set, rate_set, rate_change, draw, repay, fee,
)


CENT = Decimal("0.01")
NOW = datetime(2024, 2, 1, 9, 0)


def cents(value: Decimal) -> Decimal:
    return value.quantize(CENT)


# =============================================================================
# STORED RECORDS
# =============================================================================

LOAN_RECORD = {
    'id': "LOAN-001",
    'total_commitment': "1000000",
    'commitment_fee_rate': "0.005",
    'commitment_fee_basis': "undrawn_only",
    'interest_type': "cash_pay",
    'day_count_convention': "30/360",
}

EVENT_RECORDS = [
    {'id': "c1", 'loan_id': "LOAN-001", 'event_type': "commitment_set", 'effective_date': "2024-01-01",
     'amount': "1000000", 'status': "approved", 'created_at': "2024-01-01T09:00:00Z"},
    {'id': "r1", 'loan_id': "LOAN-001", 'event_type': "interest_rate_set", 'effective_date': "2024-01-01",
     'rate': "0.08", 'status': "approved", 'created_at': "2024-01-01T09:01:00Z"},
    {'id': "d1", 'loan_id': "LOAN-001", 'event_type': "principal_draw", 'effective_date': "2024-01-01",
     'amount': "500000", 'status': "approved", 'created_at': "2024-01-01T09:02:00Z"},
    {'id': "d2", 'loan_id': "LOAN-001", 'event_type': "principal_draw", 'effective_date': "2024-01-16T00:00:00",
     'amount': "200000", 'status': "approved", 'created_at': "2024-01-16T10:00:00Z"},
    {'id': "d3", 'loan_id': "LOAN-001", 'event_type': "principal_draw", 'effective_date': "2024-01-20",
     'amount': "50000", 'status': "draft", 'created_at': "2024-01-20T10:00:00Z"},
]

PERIOD_RECORDS = [
    {'id': "2024-01", 'loan_id': "LOAN-001", 'period_start': "2024-01-01", 'period_end': "2024-01-31"},
    {'id': "2024-02", 'loan_id': "LOAN-001", 'period_start': "2024-02-01", 'period_end': "2024-02-29"},
]


class TestStoredRecords:
    """From stored records to accruals."""

    def test_january_split(self):
        """A mid-month draw splits January into 15 + 16 days."""
        params = load_loan_parameters(LOAN_RECORD)
        events = load_events(EVENT_RECORDS)
        periods = load_periods(PERIOD_RECORDS)

        accruals, summary = calculate_loan_accruals(events, periods, params, date(2024, 2, 29))
        jan, feb = accruals

        assert [(s.days, s.principal) for s in jan.interest_segments] == [
            (15, Decimal("500000")), (16, Decimal("700000")),
        ]
        assert cents(jan.interest_accrued) == Decimal("4155.56")
        assert cents(jan.commitment_fee_accrued) == Decimal("170.83")
        assert jan.opening_principal == Decimal("0")
        assert jan.closing_principal == Decimal("700000")
        assert jan.principal_drawn == Decimal("700000")

        # February: one segment, 29 days under 30/360
        assert len(feb.interest_segments) == 1
        assert feb.days == 29
        assert feb.interest_accrued == Decimal("700000") * Decimal("0.08") * (Decimal(29) / Decimal(360))

        assert summary.current_principal == Decimal("700000")
        assert summary.current_undrawn == Decimal("300000")
        assert summary.total_days == 60

    def test_loan_without_periods(self):
        """Events but no periods: current state only, zero totals."""
        accruals, summary = calculate_loan_accruals(
            load_events(EVENT_RECORDS), [], load_loan_parameters(LOAN_RECORD), date(2024, 2, 1),
        )
        assert accruals == []
        assert summary.current_principal == Decimal("700000")
        assert summary.average_rate == summary.current_rate == Decimal("0.08")
        assert summary.total_due == Decimal("0")

    def test_missing_loan(self):
        """A missing loan record is no data yet."""
        accruals, summary = calculate_loan_accruals(
            load_events(EVENT_RECORDS), load_periods(PERIOD_RECORDS), load_loan_parameters(None), date(2024, 2, 1),
        )
        assert accruals == []
        assert summary.current_principal == Decimal("0")


# =============================================================================
# FEES
# =============================================================================

class TestFees:
    """Cash pay vs PIK fee invoices."""

    def test_pik_fee_capitalizes_and_splits(self, split_events, params, january):
        """A PIK fee adds principal mid-period; a cash fee only bills."""
        events = split_events + [
            fee("f1", date(2024, 1, 20), 5_000, payment_type="pik", fee_type="amendment"),
            fee("f2", date(2024, 1, 22), 2_500, payment_type="cash", fee_type="agency"),
        ]
        accrual = calculate_period_accrual(january, events, params)

        assert [(s.start_date, s.days, s.principal) for s in accrual.interest_segments] == [
            (date(2024, 1, 1), 15, Decimal("500000")),
            (date(2024, 1, 16), 4, Decimal("700000")),
            (date(2024, 1, 20), 12, Decimal("705000")),
        ]
        assert accrual.fees_invoiced == Decimal("7500")
        assert accrual.fees_capitalized == Decimal("5000")
        assert accrual.closing_principal == Decimal("705000")
        assert accrual.projected_closing_principal == accrual.closing_principal

    def test_total_commitment_basis(self, split_events, total_fee_params, january):
        """On the total-commitment basis draws do not change the fee."""
        accrual = calculate_period_accrual(january, split_events, total_fee_params)
        assert len(accrual.commitment_fee_segments) == 1
        assert accrual.commitment_fee_accrued == Decimal("1000000") * Decimal("0.005") * (Decimal(31) / Decimal(360))


# =============================================================================
# PIK ROLL-UP THROUGH THE BOOK
# =============================================================================

class TestPikRollUp:
    """Interest charges posted and approved month by month."""

    @pytest.fixture
    def pik_book(self, base_events):
        book = LoanBook("pik")
        book.register_loan(make_params(interest_type=INTEREST_TYPE_PIK, commitment_fee_rate=Decimal("0.005")))
        for event in base_events:
            book.record_event(event)
        for period in monthly_periods(2024, [1, 2, 3]):
            book.register_period(period)
        return book

    def test_projection_before_posting(self, pik_book):
        """Unposted PIK interest shows in the projected closing principal only."""
        jan = pik_book.period_accrual(LOAN_ID, "2024-01")
        assert jan.is_pik
        assert jan.closing_principal == Decimal("500000")
        assert jan.projected_closing_principal == Decimal("500000") + jan.total_due
        assert jan.capitalized_amount == jan.total_due

    def test_quarter_roll_up(self, pik_book):
        """Each approved charge becomes principal for the next period."""
        posted = []
        for period_id in ["2024-01", "2024-02", "2024-03"]:
            before = pik_book.period_accrual(LOAN_ID, period_id)
            charge = pik_book.post_interest_charge(LOAN_ID, period_id, f"ic-{period_id}", "system", NOW)
            assert charge.amount == round_amount(before.total_due)
            pik_book.approve_event(charge.id, "checker", NOW)
            posted.append(charge.amount)

            after = pik_book.period_accrual(LOAN_ID, period_id)
            assert after.interest_accrued == before.interest_accrued
            assert after.pik_capitalized == charge.amount
            assert after.projected_closing_principal == after.closing_principal

        assert posted[0] == Decimal("3659.72")

        feb = pik_book.period_accrual(LOAN_ID, "2024-02")
        assert feb.opening_principal == Decimal("500000") + posted[0]
        expected_feb = (
            feb.opening_principal * Decimal("0.08") * (Decimal(29) / Decimal(360))
            + (Decimal("1000000") - feb.opening_principal) * Decimal("0.005") * (Decimal(29) / Decimal(360))
        )
        assert feb.total_due == expected_feb

        accruals, summary = pik_book.accruals(LOAN_ID, date(2024, 3, 31))
        assert summary.total_pik_capitalized == sum(posted, Decimal("0"))
        assert summary.current_principal == Decimal("500000") + sum(posted, Decimal("0"))
        assert pik_book.outstanding(LOAN_ID) == summary.current_principal
        assert accruals[1].opening_principal == accruals[0].closing_principal


# =============================================================================
# BACK-DATED CORRECTION
# =============================================================================

class TestBackDatedRepayment:
    """A repayment approved after the notice went out."""

    def test_notice_adjustment(self, funded_book):
        funded_book.record_event(draw("d2", date(2024, 1, 16), 200_000))
        jan = funded_book.period_accrual(LOAN_ID, "2024-01")
        notice = build_notice_snapshot(jan, funded_book.events(LOAN_ID), generated_at=NOW)
        assert notice.totals['interest'] == Decimal("4155.56")

        # a draft does not make the notice stale
        funded_book.record_event(repay("p1", date(2024, 1, 25), 100_000, status="draft"))
        assert not notice_is_stale(notice, funded_book.period_accrual(LOAN_ID, "2024-01"), funded_book.events(LOAN_ID))

        funded_book.approve_event("p1", "checker", NOW)
        revised = funded_book.period_accrual(LOAN_ID, "2024-01")
        assert notice_is_stale(notice, revised, funded_book.events(LOAN_ID))
        assert [s.days for s in revised.interest_segments] == [15, 9, 7]
        assert cents(revised.interest_accrued) == Decimal("4000.00")

        adjustment = build_notice_snapshot(revised, funded_book.events(LOAN_ID), previous=notice)
        assert adjustment.version_number == 2
        assert adjustment.references_snapshot_id == notice.snapshot_id
        assert adjustment.totals['interest'] == Decimal("4000.00")
        assert funded_book.outstanding(LOAN_ID) == Decimal("600000")


# =============================================================================
# WORKFLOW
# =============================================================================

class TestPeriodWorkflow:
    """Classification and the open -> sent path."""

    def test_manual_and_auto_periods(self, book, base_events):
        for event in base_events:
            book.record_event(event)
        book.record_event(rate_change("r2", date(2024, 2, 10), "0.09"))
        jan, feb, mar = [book.register_period(p) for p in monthly_periods(2024, [1, 2, 3])]

        # base events sit on Jan 1, inside January
        assert jan.processing_mode == PROCESSING_MODE_MANUAL
        assert feb.processing_mode == PROCESSING_MODE_MANUAL
        assert mar.processing_mode == PROCESSING_MODE_AUTO

        for _ in range(3):
            book.advance_period(LOAN_ID, "2024-02")
        assert book.get_period(LOAN_ID, "2024-02").status == PERIOD_STATUS_SENT

        accrual = book.period_accrual(LOAN_ID, "2024-02")
        assert accrual.status == PERIOD_STATUS_SENT
        assert [s.rate for s in accrual.interest_segments] == [Decimal("0.08"), Decimal("0.09")]
        assert accrual.opening_rate == Decimal("0.08")
        assert accrual.closing_rate == Decimal("0.09")


# =============================================================================
# ACT/365
# =============================================================================

class TestActual365:
    """Loans on actual days over 365."""

    def test_quarter(self):
        params = LoanParameters(LOAN_ID, total_commitment=1_000_000, day_count_convention=DAY_COUNT_ACT_365)
        events = [
            commitment_set("c1", date(2024, 1, 1), 1_000_000),
            rate_set("r1", date(2024, 1, 1), "0.08"),
            draw("d1", date(2024, 1, 1), 500_000),
        ]
        periods = monthly_periods(2024, [1, 2, 3])
        accruals, summary = calculate_loan_accruals(events, periods, params, date(2024, 3, 31), include_daily=True)

        assert [a.days for a in accruals] == [31, 29, 31]
        assert cents(accruals[0].interest_accrued) == Decimal("3397.26")
        assert summary.total_days == 91
        assert summary.total_days == day_count(date(2024, 1, 1), date(2024, 3, 31), DAY_COUNT_ACT_365)
        assert len(accruals[1].daily_accruals) == 29

    def test_period_across_month_end(self):
        """Periods need not follow calendar months."""
        params = LoanParameters(LOAN_ID, total_commitment=1_000_000, day_count_convention=DAY_COUNT_ACT_365)
        events = [rate_set("r1", date(2024, 1, 1), "0.10"), draw("d1", date(2024, 1, 1), 365_000)]
        period = make_period("p1", date(2024, 1, 15), date(2024, 2, 14))
        accrual = calculate_period_accrual(period, events, params)
        assert accrual.days == 31
        assert accrual.interest_accrued == Decimal("365000") * Decimal("0.10") * (Decimal(31) / Decimal(365))
