from datetime import date
from decimal import Decimal

import pytest

from errors import ConflictingEndCondition, InvalidFrequency, ValidationError
from models import Frequency, InstallmentPlan
from money import from_cents, split_installments, to_cents
from recurrence import advance, expand, plan_schedule, validate_schedule


def test_advance_clamps_month_end_in_leap_year():
    assert advance(date(2024, 1, 31), Frequency.monthly) == date(2024, 2, 29)
    # chaining starts from the clamped date, not the original anchor
    assert advance(date(2024, 2, 29), Frequency.monthly) == date(2024, 3, 29)


def test_advance_month_based_frequencies():
    assert advance(date(2023, 12, 31), "bi-monthly") == date(2024, 2, 29)
    assert advance(date(2024, 11, 30), Frequency.quarterly) == date(2025, 2, 28)
    assert advance(date(2024, 8, 31), "semi-annually") == date(2025, 2, 28)
    assert advance(date(2024, 2, 29), Frequency.annually) == date(2025, 2, 28)
    assert advance(date(2024, 1, 15), Frequency.monthly, 3) == date(2024, 4, 15)


def test_advance_day_based_frequencies():
    assert advance(date(2024, 12, 31), Frequency.daily) == date(2025, 1, 1)
    assert advance(date(2024, 1, 1), Frequency.weekly, 2) == date(2024, 1, 15)


def test_advance_rejects_unknown_frequency_and_bad_interval():
    with pytest.raises(InvalidFrequency):
        advance(date(2024, 1, 1), "fortnightly")
    with pytest.raises(ValidationError):
        advance(date(2024, 1, 1), Frequency.daily, 0)
    assert issubclass(InvalidFrequency, ValidationError)


def test_expand_stops_at_occurrences():
    dates = expand(date(2024, 1, 15), Frequency.monthly, occurrences=3, hard_cap=730)
    assert dates == [date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 15)]


def test_expand_end_date_is_inclusive():
    dates = expand(
        date(2024, 1, 1), Frequency.weekly, end_date=date(2024, 1, 29), hard_cap=730
    )
    assert len(dates) == 5
    assert dates[-1] == date(2024, 1, 29)
    assert all(d <= date(2024, 1, 29) for d in dates)


def test_expand_is_strictly_increasing_and_follows_advance():
    dates = expand(date(2024, 1, 31), Frequency.monthly, occurrences=13, hard_cap=730)
    assert dates[0] == date(2024, 1, 31)
    for previous, current in zip(dates, dates[1:]):
        assert current > previous
        assert current == advance(previous, Frequency.monthly)


def test_expand_open_ended_schedule_is_truncated_at_hard_cap():
    dates = expand(date(2024, 1, 1), Frequency.daily, hard_cap=10)
    assert len(dates) == 10
    assert dates[-1] == date(2024, 1, 10)


def test_expand_rejects_conflicting_end_conditions():
    with pytest.raises(ConflictingEndCondition):
        expand(
            date(2024, 1, 1),
            Frequency.monthly,
            end_date=date(2024, 6, 1),
            occurrences=3,
            hard_cap=730,
        )


def test_validate_schedule():
    assert validate_schedule("monthly", 1, date(2024, 1, 1), None, None) == Frequency.monthly
    with pytest.raises(ValidationError):
        validate_schedule("monthly", 1, date(2024, 2, 1), date(2024, 1, 1), None)
    with pytest.raises(ValidationError):
        validate_schedule("monthly", 0, date(2024, 1, 1), None, None)
    with pytest.raises(ConflictingEndCondition):
        validate_schedule("monthly", 1, date(2024, 1, 1), date(2024, 3, 1), 2)


def test_money_conversions_round_half_up():
    assert to_cents(Decimal("10.005")) == 1001
    assert to_cents(Decimal("99.99")) == 9999
    assert from_cents(1234) == Decimal("12.34")


def test_split_installments_last_payment_absorbs_remainder():
    parts = split_installments(10_000, 3)
    assert parts == [3333, 3333, 3334]
    assert sum(parts) == 10_000
    assert split_installments(10, 4) == [3, 3, 3, 1]


def test_split_installments_rejects_non_positive_closing_payment():
    with pytest.raises(ValidationError):
        split_installments(3, 4)


def test_plan_schedule_is_monthly_from_first_payment():
    plan = InstallmentPlan(
        total_cents=10_000,
        number_of_installments=3,
        first_payment_date=date(2024, 1, 31),
    )
    schedule = plan_schedule(plan, hard_cap=730)
    assert [o.date for o in schedule] == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 29),
    ]
    assert [o.amount_cents for o in schedule] == [3333, 3333, 3334]


def test_plan_schedule_rejects_more_installments_than_hard_cap():
    plan = InstallmentPlan(
        total_cents=100_000,
        number_of_installments=12,
        first_payment_date=date(2024, 1, 1),
    )
    with pytest.raises(ValidationError):
        plan_schedule(plan, hard_cap=6)
