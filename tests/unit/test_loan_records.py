"""
test_loan_records.py - Unit tests for core records and record adapters

Tests:
- LoanEvent construction, conversion and typed metadata accessors
- Period validation
- LoanParameters validation
- load_event / load_period / load_loan_parameters
- round_amount presentation rounding
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from loanledger import (
    LoanEvent, Period, LoanParameters,
    PeriodValidationError, EventValidationError,
    load_event, load_events, load_period, load_loan_parameters,
    round_amount,
    EVENT_STATUS_DRAFT, PERIOD_STATUS_OPEN, PROCESSING_MODE_AUTO,
    FEE_BASIS_UNDRAWN_ONLY, INTEREST_TYPE_CASH_PAY, DAY_COUNT_30_360,
)
from loanledger.core import _canonicalize, event_fingerprint


# ============================================================================
# LOAN EVENT
# ============================================================================

class TestLoanEvent:
    """Tests for the LoanEvent frozen dataclass."""

    def test_defaults(self):
        """New events are drafts with empty metadata."""
        event = LoanEvent("e1", "L1", "principal_draw", date(2024, 1, 1), amount=100)
        assert event.status == EVENT_STATUS_DRAFT
        assert not event.is_approved
        assert dict(event.metadata) == {}

    def test_amount_and_rate_converted_via_str(self):
        """Floats go through str() so 0.1 stays 0.1."""
        event = LoanEvent("e1", "L1", "interest_rate_set", date(2024, 1, 1), rate=0.085, amount=0.1)
        assert event.rate == Decimal("0.085")
        assert event.amount == Decimal("0.1")

    def test_datetime_effective_date_truncated(self):
        """A datetime effective date becomes a date."""
        event = LoanEvent("e1", "L1", "principal_draw", datetime(2024, 1, 1, 15, 30), amount=1)
        assert event.effective_date == date(2024, 1, 1)

    def test_frozen(self):
        """Events cannot be edited."""
        event = LoanEvent("e1", "L1", "principal_draw", date(2024, 1, 1), amount=1)
        with pytest.raises(AttributeError):
            event.amount = Decimal("2")

    def test_metadata_read_only(self):
        """Metadata is exposed as a read-only mapping."""
        event = LoanEvent("e1", "L1", "fee_invoice", date(2024, 1, 1), amount=1, metadata={'payment_type': 'pik'})
        with pytest.raises(TypeError):
            event.metadata['payment_type'] = 'cash'

    def test_metadata_copied(self):
        """Mutating the source dict does not reach the event."""
        source = {'payment_type': 'pik'}
        event = LoanEvent("e1", "L1", "fee_invoice", date(2024, 1, 1), amount=1, metadata=source)
        source['payment_type'] = 'cash'
        assert event.payment_type == 'pik'

    def test_typed_accessors(self):
        """Known metadata keys have typed accessors."""
        event = LoanEvent(
            "e1", "L1", "fee_invoice", date(2024, 1, 1), amount=1,
            metadata={'payment_type': 'pik', 'fee_type': 'arrangement', 'description': 'Arrangement fee'},
        )
        assert event.payment_type == 'pik'
        assert event.fee_type == 'arrangement'
        assert event.description == 'Arrangement fee'
        assert event.period_id is None

    def test_payment_type_defaults_to_cash(self):
        """Fees without payment_type are cash fees."""
        event = LoanEvent("e1", "L1", "fee_invoice", date(2024, 1, 1), amount=1)
        assert event.payment_type == 'cash'

    def test_empty_id_rejected(self):
        """Every event needs an id."""
        with pytest.raises(ValueError):
            LoanEvent("", "L1", "principal_draw", date(2024, 1, 1), amount=1)

    def test_unknown_status_rejected(self):
        """Status is draft or approved."""
        with pytest.raises(ValueError):
            LoanEvent("e1", "L1", "principal_draw", date(2024, 1, 1), amount=1, status="posted")

    def test_incomplete_draft_allowed(self):
        """A draft may be recorded before its amount is known."""
        event = LoanEvent("e1", "L1", "principal_draw", date(2024, 1, 1))
        assert event.amount is None


# ============================================================================
# PERIOD AND PARAMETERS
# ============================================================================

class TestPeriod:
    """Tests for Period."""

    def test_contains_is_inclusive(self):
        """Both ends belong to the period."""
        period = Period("p1", "L1", date(2024, 1, 1), date(2024, 1, 31))
        assert period.contains(date(2024, 1, 1))
        assert period.contains(date(2024, 1, 31))
        assert not period.contains(date(2024, 2, 1))

    def test_end_before_start_rejected(self):
        """period_end before period_start is a validation error."""
        with pytest.raises(PeriodValidationError) as exc:
            Period("p1", "L1", date(2024, 2, 1), date(2024, 1, 31))
        assert exc.value.period_id == "p1"
        assert exc.value.loan_id == "L1"

    def test_single_day_period(self):
        """A one-day period is valid."""
        period = Period("p1", "L1", date(2024, 1, 1), date(2024, 1, 1))
        assert period.contains(date(2024, 1, 1))

    def test_unknown_status_rejected(self):
        """Status must be one of the workflow states."""
        with pytest.raises(ValueError):
            Period("p1", "L1", date(2024, 1, 1), date(2024, 1, 31), status="closed")


class TestLoanParameters:
    """Tests for LoanParameters."""

    def test_defaults(self):
        """Cash pay, undrawn-only fee basis, 30/360, no fee."""
        params = LoanParameters("L1", total_commitment=1000)
        assert params.total_commitment == Decimal("1000")
        assert params.commitment_fee_basis == FEE_BASIS_UNDRAWN_ONLY
        assert params.interest_type == INTEREST_TYPE_CASH_PAY
        assert params.day_count_convention == DAY_COUNT_30_360
        assert params.fee_rate == Decimal("0")
        assert not params.charges_commitment_fee

    def test_fee_rate_zero_disables_fee(self):
        """A zero rate behaves like no rate."""
        assert not LoanParameters("L1", commitment_fee_rate=0).charges_commitment_fee
        assert LoanParameters("L1", commitment_fee_rate="0.005").charges_commitment_fee

    @pytest.mark.parametrize("kwargs", [
        {'commitment_fee_basis': 'drawn_only'},
        {'interest_type': 'zero_coupon'},
        {'day_count_convention': 'ACT/360'},
        {'total_commitment': -1},
        {'commitment_fee_rate': '-0.01'},
    ])
    def test_invalid_values_rejected(self, kwargs):
        """Unknown enumerations and negative amounts raise ValueError."""
        with pytest.raises(ValueError):
            LoanParameters("L1", **kwargs)


# ============================================================================
# RECORD ADAPTERS
# ============================================================================

class TestLoadEvent:
    """Tests for load_event."""

    def test_iso_strings(self):
        """Dates and numbers arrive as strings."""
        event = load_event({
            'id': 'e1', 'loan_id': 'L1', 'event_type': 'principal_draw',
            'effective_date': '2024-01-15', 'value_date': '2024-01-17',
            'amount': '500000.00', 'status': 'approved', 'created_by': 'u1',
            'approved_by': 'u2', 'approved_at': '2024-01-15T10:00:00Z',
            'created_at': '2024-01-15T09:00:00+00:00',
        })
        assert event.effective_date == date(2024, 1, 15)
        assert event.value_date == date(2024, 1, 17)
        assert event.amount == Decimal("500000.00")
        assert event.is_approved
        assert event.approved_at.year == 2024
        assert event.created_at.hour == 9

    def test_timestamp_in_date_column(self):
        """A timestamp string in a date column keeps the date part."""
        event = load_event({'id': 'e1', 'loan_id': 'L1', 'event_type': 'principal_draw',
                            'effective_date': '2024-01-15T00:00:00Z', 'amount': 1})
        assert event.effective_date == date(2024, 1, 15)

    def test_missing_optional_fields(self):
        """Absent amount/rate stay None; status defaults to draft."""
        event = load_event({'id': 'e1', 'loan_id': 'L1', 'event_type': 'cash_received',
                            'effective_date': date(2024, 1, 1), 'amount': ''})
        assert event.amount is None
        assert event.rate is None
        assert event.status == EVENT_STATUS_DRAFT

    def test_unreadable_amount(self):
        """A non-numeric amount names the event."""
        with pytest.raises(EventValidationError) as exc:
            load_event({'id': 'e9', 'loan_id': 'L1', 'event_type': 'principal_draw',
                        'effective_date': '2024-01-01', 'amount': 'lots'})
        assert exc.value.event_id == 'e9'

    def test_unreadable_date(self):
        """A malformed date names the event."""
        with pytest.raises(EventValidationError):
            load_event({'id': 'e9', 'loan_id': 'L1', 'event_type': 'principal_draw',
                        'effective_date': '15/01/2024', 'amount': 1})

    def test_load_events(self):
        """Batch loading keeps order."""
        events = load_events([
            {'id': 'a', 'loan_id': 'L1', 'event_type': 'principal_draw', 'effective_date': '2024-01-01', 'amount': 1},
            {'id': 'b', 'loan_id': 'L1', 'event_type': 'principal_draw', 'effective_date': '2024-01-02', 'amount': 2},
        ])
        assert [e.id for e in events] == ['a', 'b']


class TestLoadPeriodAndParameters:
    """Tests for load_period and load_loan_parameters."""

    def test_load_period(self):
        """Defaults fill status and processing mode."""
        period = load_period({'id': 'p1', 'loan_id': 'L1',
                              'period_start': '2024-01-01', 'period_end': '2024-01-31'})
        assert period.period_end == date(2024, 1, 31)
        assert period.status == PERIOD_STATUS_OPEN
        assert period.processing_mode == PROCESSING_MODE_AUTO
        assert period.has_economic_events is False

    def test_load_period_missing_dates(self):
        """Both bounds are required."""
        with pytest.raises(PeriodValidationError):
            load_period({'id': 'p1', 'loan_id': 'L1', 'period_start': '2024-01-01'})

    def test_load_loan_parameters(self):
        """Loan record columns map onto LoanParameters."""
        params = load_loan_parameters({
            'id': 'L1', 'total_commitment': '1000000', 'commitment_fee_rate': 0.005,
            'commitment_fee_basis': 'total_commitment', 'interest_type': 'pik',
        })
        assert params.loan_id == 'L1'
        assert params.total_commitment == Decimal("1000000")
        assert params.commitment_fee_rate == Decimal("0.005")
        assert params.commitment_fee_basis == 'total_commitment'
        assert params.interest_type == 'pik'

    @pytest.mark.parametrize("field, value", [
        ('status', 'closed'),
        ('processing_mode', 'batch'),
    ])
    def test_load_period_bad_values(self, field, value):
        """Unknown status or processing mode raises PeriodValidationError with the period id."""
        raw = {'id': 'p1', 'loan_id': 'L1', 'period_start': '2024-01-01', 'period_end': '2024-01-31', field: value}
        with pytest.raises(PeriodValidationError) as exc:
            load_period(raw)
        assert exc.value.period_id == 'p1'
        assert exc.value.loan_id == 'L1'

    def test_load_period_end_before_start(self):
        """Reversed bounds keep their PeriodValidationError."""
        with pytest.raises(PeriodValidationError):
            load_period({'id': 'p1', 'loan_id': 'L1', 'period_start': '2024-02-01', 'period_end': '2024-01-31'})

    @pytest.mark.parametrize("field, value", [
        ('total_commitment', 'one million'),
        ('commitment_fee_rate', '0.5%'),
        ('interest_type', 'balloon'),
        ('day_count_convention', 'ACT/ACT'),
    ])
    def test_load_loan_parameters_bad_values(self, field, value):
        """Unreadable loan records raise ValueError naming the loan."""
        raw = {'id': 'L1', 'total_commitment': '1000000', field: value}
        with pytest.raises(ValueError, match="L1"):
            load_loan_parameters(raw)

    def test_missing_loan(self):
        """A missing loan record loads as None."""
        assert load_loan_parameters(None) is None


# ============================================================================
# ROUNDING AND CANONICALIZATION
# ============================================================================

class TestRoundingAndCanonical:
    """Tests for presentation rounding and canonical serialization."""

    def test_round_cash_half_even(self):
        """Cash rounds to cents, banker's rounding."""
        assert round_amount(Decimal("3333.335")) == Decimal("3333.34")
        assert round_amount(Decimal("3333.325")) == Decimal("3333.32")

    def test_round_rate(self):
        """Rates keep 8 decimal places."""
        assert round_amount(Decimal("0.0812345678"), 'RATE') == Decimal("0.08123457")

    def test_canonical_decimal_representation(self):
        """1.0 and 1.00 serialize identically."""
        assert _canonicalize(Decimal("1.0")) == _canonicalize(Decimal("1.00"))

    def test_canonical_dict_order(self):
        """Key order does not matter."""
        assert _canonicalize({'a': 1, 'b': 2}) == _canonicalize({'b': 2, 'a': 1})

    def test_fingerprint_ignores_audit_fields(self):
        """Approver and creator do not change the fingerprint."""
        e1 = LoanEvent("e1", "L1", "principal_draw", date(2024, 1, 1), amount=1, created_by="a")
        e2 = LoanEvent("e1", "L1", "principal_draw", date(2024, 1, 1), amount=Decimal("1.00"), created_by="b")
        assert _canonicalize(event_fingerprint(e1)) == _canonicalize(event_fingerprint(e2))
