import pytest

from rentalsaber.core.debt import payments_per_year, periodic_rate, annuity_payment, principal_paid_in_first_year


@pytest.mark.parametrize("frequency, expected", [("MONTHLY", 12), ("BI_WEEKLY", 26), ("WEEKLY", 52), ("ANNUAL", 1)])
def test_payments_per_year(frequency, expected):
    assert payments_per_year(frequency) == expected


def test_unknown_frequency_falls_back_to_monthly():
    assert payments_per_year("DAILY") == 12


def test_periodic_rate():
    assert periodic_rate(6.0, "MONTHLY") == pytest.approx(0.005)
    assert periodic_rate(5.2, "WEEKLY") == pytest.approx(0.001)


def test_annuity_payment_matches_standard_mortgage():
    assert round(annuity_payment(100_000, 0.005, 360), 2) == 599.55


def test_annuity_payment_zero_rate_is_straight_line():
    assert annuity_payment(1_200, 0.0, 12) == 100.0


def test_annuity_payment_without_payments_is_zero():
    assert annuity_payment(100_000, 0.005, 0) == 0.0


def test_first_year_principal_zero_rate():
    assert principal_paid_in_first_year(1_200, 0.0, 100.0, 12) == pytest.approx(1_200.0)


def test_first_year_principal_grows_each_period():
    payment = annuity_payment(100_000, 0.005, 360)
    first_period = principal_paid_in_first_year(100_000, 0.005, payment, 1)
    assert first_period == pytest.approx(payment - 500.0)
    # Later periods repay more principal than the first
    assert principal_paid_in_first_year(100_000, 0.005, payment, 12) > 12 * first_period


def test_first_year_principal_hand_walked():
    # 1% per period, payment 500 on 10,000: principal 400, 404, 408.04, ...
    assert principal_paid_in_first_year(10_000, 0.01, 500.0, 1) == pytest.approx(400.0)
    assert principal_paid_in_first_year(10_000, 0.01, 500.0, 3) == pytest.approx(1_212.04)
    assert round(principal_paid_in_first_year(10_000, 0.01, 500.0, 12), 2) == 5_073.00


def test_first_year_principal_reference_loan():
    walked = principal_paid_in_first_year(522_500, 0.055 / 12, 2966.70, 12)
    assert round(walked, 2) == 7038.57
