"""
conftest.py - Shared pytest fixtures for loan accrual tests

Provides common fixtures used across unit, conformance and functional tests:
- Loan parameters (plain, with commitment fee, PIK)
- The reference scenario: 1,000,000 commitment, 8% from 2024-01-01,
  500,000 drawn on 2024-01-01
- Billing periods
- A LoanBook with the reference loan registered
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from loanledger import LoanBook, INTEREST_TYPE_PIK, FEE_BASIS_TOTAL_COMMITMENT

from tests.factories import (
    make_params, make_period, monthly_periods,
    commitment_set, rate_set, draw,
)


# =============================================================================
# PARAMETER FIXTURES
# =============================================================================

@pytest.fixture
def params():
    """1,000,000 commitment, cash pay, no commitment fee, 30/360."""
    return make_params()


@pytest.fixture
def fee_params():
    """1,000,000 commitment with a 0.5% fee on the undrawn amount."""
    return make_params(commitment_fee_rate=Decimal("0.005"))


@pytest.fixture
def total_fee_params():
    """0.5% fee on the total commitment."""
    return make_params(
        commitment_fee_rate=Decimal("0.005"),
        commitment_fee_basis=FEE_BASIS_TOTAL_COMMITMENT,
    )


@pytest.fixture
def pik_params():
    """PIK loan with a 0.5% undrawn fee."""
    return make_params(interest_type=INTEREST_TYPE_PIK, commitment_fee_rate=Decimal("0.005"))


# =============================================================================
# EVENT FIXTURES
# =============================================================================

@pytest.fixture
def base_events():
    """Commitment 1,000,000 and 8% rate on 2024-01-01, 500,000 drawn the same day."""
    return [
        commitment_set("c1", date(2024, 1, 1), Decimal("1000000"), created_at=datetime(2024, 1, 1, 9, 0)),
        rate_set("r1", date(2024, 1, 1), Decimal("0.08"), created_at=datetime(2024, 1, 1, 9, 1)),
        draw("d1", date(2024, 1, 1), Decimal("500000"), created_at=datetime(2024, 1, 1, 9, 2)),
    ]


@pytest.fixture
def split_events(base_events):
    """Reference scenario plus a 200,000 draw on 2024-01-16."""
    return base_events + [
        draw("d2", date(2024, 1, 16), Decimal("200000"), created_at=datetime(2024, 1, 16, 10, 0)),
    ]


# =============================================================================
# PERIOD FIXTURES
# =============================================================================

@pytest.fixture
def january():
    return make_period("2024-01", date(2024, 1, 1), date(2024, 1, 31))


@pytest.fixture
def q1_periods():
    return monthly_periods(2024, [1, 2, 3])


# =============================================================================
# BOOK FIXTURES
# =============================================================================

@pytest.fixture
def book(params):
    """LoanBook with the reference loan registered and no events."""
    book = LoanBook("test")
    book.register_loan(params)
    return book


@pytest.fixture
def funded_book(book, base_events, q1_periods):
    """LoanBook with the reference events approved and Q1 2024 periods registered."""
    for event in base_events:
        book.record_event(event)
    for period in q1_periods:
        book.register_period(period)
    return book
