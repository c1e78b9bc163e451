"""Calendar arithmetic and schedule expansion.

Month-based steps clamp to the last day of the target month when the source
day does not exist there (Jan 31 + 1 month = Feb 29 in a leap year). Each
step starts from the date it is given, not from the original anchor, so a
monthly schedule anchored on Jan 31 runs Jan 31, Feb 29, Mar 29, Apr 29...
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Union

from errors import ConflictingEndCondition, InvalidFrequency, ValidationError
from models import Frequency, InstallmentPlan, RecurringDefinition
from money import split_installments

MONTH_STEPS = {
    Frequency.monthly: 1,
    Frequency.bi_monthly: 2,
    Frequency.quarterly: 3,
    Frequency.semi_annually: 6,
    Frequency.annually: 12,
}


@dataclass(frozen=True)
class Occurrence:
    date: date
    amount_cents: int


def parse_frequency(value: Union[Frequency, str]) -> Frequency:
    try:
        return Frequency(value)
    except ValueError as exc:
        raise InvalidFrequency(value) from exc


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def advance(current: date, frequency: Union[Frequency, str], interval: int = 1) -> date:
    frequency = parse_frequency(frequency)
    if interval < 1:
        raise ValidationError("Interval must be a positive integer")
    if frequency == Frequency.daily:
        return current + timedelta(days=interval)
    if frequency == Frequency.weekly:
        return current + timedelta(weeks=interval)
    return add_months(current, MONTH_STEPS[frequency] * interval)


def validate_schedule(
    frequency: Union[Frequency, str],
    interval: int,
    start_date: date,
    end_date: Optional[date],
    occurrences: Optional[int],
) -> Frequency:
    frequency = parse_frequency(frequency)
    if end_date is not None and occurrences is not None:
        raise ConflictingEndCondition()
    if interval is None or interval < 1:
        raise ValidationError("Interval must be a positive integer")
    if occurrences is not None and occurrences < 1:
        raise ValidationError("Occurrences must be a positive integer")
    if end_date is not None and end_date < start_date:
        raise ValidationError("End date cannot be before start date")
    return frequency


def expand(
    anchor: date,
    frequency: Union[Frequency, str],
    interval: int = 1,
    *,
    end_date: Optional[date] = None,
    occurrences: Optional[int] = None,
    hard_cap: int,
) -> list[date]:
    """Dates of a schedule starting at ``anchor``.

    Generation stops at whichever comes first: a date past ``end_date``,
    ``occurrences`` dates, or ``hard_cap`` dates. Hitting the hard cap is not
    an error; open-ended schedules are simply truncated there.
    """
    frequency = parse_frequency(frequency)
    if end_date is not None and occurrences is not None:
        raise ConflictingEndCondition()
    if occurrences is not None and occurrences < 1:
        raise ValidationError("Occurrences must be a positive integer")
    if hard_cap < 1:
        raise ValidationError("Hard cap must be a positive integer")

    limit = hard_cap if occurrences is None else min(occurrences, hard_cap)
    dates: list[date] = []
    current = anchor
    while len(dates) < limit:
        if end_date is not None and current > end_date:
            break
        dates.append(current)
        current = advance(current, frequency, interval)
    return dates


def definition_schedule(
    definition: RecurringDefinition, *, hard_cap: int
) -> list[Occurrence]:
    dates = expand(
        definition.start_date,
        definition.frequency,
        definition.interval,
        end_date=definition.end_date,
        occurrences=definition.occurrences,
        hard_cap=hard_cap,
    )
    return [Occurrence(d, definition.amount_cents) for d in dates]


def plan_schedule(plan: InstallmentPlan, *, hard_cap: int) -> list[Occurrence]:
    """Monthly payments of an installment plan; the last absorbs rounding."""
    if plan.number_of_installments < 2:
        raise ValidationError("An installment plan needs at least 2 installments")
    if plan.number_of_installments > hard_cap:
        raise ValidationError(
            f"An installment plan cannot exceed {hard_cap} installments"
        )
    dates = expand(
        plan.first_payment_date,
        Frequency.monthly,
        1,
        occurrences=plan.number_of_installments,
        hard_cap=hard_cap,
    )
    amounts = split_installments(plan.total_cents, plan.number_of_installments)
    return [Occurrence(d, amount) for d, amount in zip(dates, amounts)]
