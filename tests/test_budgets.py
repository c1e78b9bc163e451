from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import event

from errors import NotFoundOrForbidden, ValidationError
from models import (
    BudgetAllocation,
    Frequency,
    RecordState,
    Subcategory,
    Transaction,
    TransactionType,
)
from schemas import BudgetAllocationIn, BudgetProfileIn, RecurringDefinitionIn, TransactionIn
from services import (
    BudgetService,
    RecurringDefinitionService,
    TransactionService,
    budget_percentage,
    compute_status,
)


def _expense(subcategory_id: int, day: date, cents: int, processed: bool = True) -> Transaction:
    return Transaction(
        type=TransactionType.expense,
        subcategory_id=subcategory_id,
        date=day,
        amount_cents=cents,
        is_processed=processed,
    )


def test_percentage_handles_zero_allocation():
    assert budget_percentage(0, 5_000) == Decimal("100")
    assert budget_percentage(0, 0) == Decimal("0")
    assert budget_percentage(20_000, 5_000) == Decimal("25.00")
    assert budget_percentage(30_000, 10_000) == Decimal("33.33")


def test_compute_status_counts_only_processed_expenses_in_period():
    allocation = BudgetAllocation(
        subcategory_id=5, year=2024, month=2, allocated_cents=20_000
    )
    archived = _expense(5, date(2024, 2, 10), 7_000)
    archived.archive(datetime(2024, 2, 11))
    income = _expense(5, date(2024, 2, 12), 9_000)
    income.type = TransactionType.income
    instances = [
        _expense(5, date(2024, 2, 1), 3_000),
        _expense(5, date(2024, 2, 29), 2_000),
        _expense(5, date(2024, 2, 15), 1_000, processed=False),
        _expense(5, date(2024, 3, 1), 4_000),
        _expense(6, date(2024, 2, 5), 8_000),
        archived,
        income,
    ]

    status = compute_status(allocation, instances)

    assert status.allocated == Decimal("200.00")
    assert status.spent == Decimal("50.00")
    assert status.remaining == Decimal("150.00")
    assert status.percentage == Decimal("25.00")


def test_upsert_allocation_is_unique_per_subcategory_and_month(session, ledger):
    budgets = BudgetService(session, 1)
    profile = budgets.create_profile(BudgetProfileIn(name="Default", is_active=True))

    first = budgets.upsert_allocation(
        BudgetAllocationIn(
            profile_id=profile.id,
            subcategory_id=ledger.rent.id,
            year=2024,
            month=2,
            allocated_amount=Decimal("1200.00"),
        )
    )
    second = budgets.upsert_allocation(
        BudgetAllocationIn(
            profile_id=profile.id,
            subcategory_id=ledger.rent.id,
            year=2024,
            month=2,
            allocated_amount=Decimal("1300.00"),
        )
    )
    assert second.id == first.id
    assert second.allocated_amount == Decimal("1300.00")


def test_upsert_allocation_rejects_foreign_and_income_subcategories(session, ledger):
    budgets = BudgetService(session, 1)
    profile = budgets.create_profile(BudgetProfileIn(name="Default"))
    bonus = Subcategory(category=ledger.salary, name="Bonus")
    session.add(bonus)
    session.commit()

    def allocate(subcategory_id: int) -> BudgetAllocation:
        return budgets.upsert_allocation(
            BudgetAllocationIn(
                profile_id=profile.id,
                subcategory_id=subcategory_id,
                year=2024,
                month=2,
                allocated_amount=Decimal("10.00"),
            )
        )

    with pytest.raises(ValidationError):
        allocate(bonus.id)
    with pytest.raises(NotFoundOrForbidden):
        allocate(ledger.foreign_sub.id)
    with pytest.raises(NotFoundOrForbidden):
        BudgetService(session, 2).get_profile(profile.id)


def test_status_for_month_uses_one_grouped_query(session, ledger, settings):
    definitions = RecurringDefinitionService(session, 1, settings)
    transactions = TransactionService(session, 1, settings)
    rent = definitions.create(
        RecurringDefinitionIn(
            type=TransactionType.expense,
            category_id=ledger.home.id,
            subcategory_id=ledger.rent.id,
            amount=Decimal("1200.00"),
            frequency=Frequency.monthly,
            start_date=date(2024, 1, 15),
            occurrences=3,
        )
    )
    february = definitions.instances(rent.id)[1]
    transactions.mark_processed(february.id)
    transactions.create(
        TransactionIn(
            type=TransactionType.expense,
            category_id=ledger.home.id,
            subcategory_id=ledger.groceries.id,
            amount=Decimal("42.10"),
            date=date(2024, 2, 3),
        )
    )

    budgets = BudgetService(session, 1)
    profile = budgets.create_profile(BudgetProfileIn(name="Default"))
    rent_budget = budgets.upsert_allocation(
        BudgetAllocationIn(
            profile_id=profile.id,
            subcategory_id=ledger.rent.id,
            year=2024,
            month=2,
            allocated_amount=Decimal("1000.00"),
        )
    )
    budgets.upsert_allocation(
        BudgetAllocationIn(
            profile_id=profile.id,
            subcategory_id=ledger.groceries.id,
            year=2024,
            month=2,
            allocated_amount=Decimal("100.00"),
        )
    )

    statements: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    engine = session.get_bind()
    event.listen(engine, "before_cursor_execute", record)
    try:
        statuses = budgets.status_for_month(profile.id, 2024, 2)
    finally:
        event.remove(engine, "before_cursor_execute", record)

    grouped = [s for s in statements if "GROUP BY" in s]
    assert len(grouped) == 1
    assert len(statements) <= 3

    by_subcategory = {s.subcategory_id: s for s in statuses}
    assert by_subcategory[ledger.rent.id].spent == Decimal("1200.00")
    assert by_subcategory[ledger.rent.id].remaining == Decimal("-200.00")
    assert by_subcategory[ledger.rent.id].percentage == Decimal("120.00")
    assert by_subcategory[ledger.groceries.id].spent == Decimal("42.10")
    assert by_subcategory[ledger.groceries.id].remaining == Decimal("57.90")
    assert by_subcategory[ledger.groceries.id].percentage == Decimal("42.10")

    single = budgets.get_budget_status(rent_budget.id)
    assert single.spent == Decimal("1200.00")

    budgets.delete_allocation(rent_budget.id)
    with pytest.raises(NotFoundOrForbidden):
        budgets.get_budget_status(rent_budget.id)


def test_archived_instances_do_not_count_as_spent(session, ledger, settings):
    transactions = TransactionService(session, 1, settings)
    txn = transactions.create(
        TransactionIn(
            type=TransactionType.expense,
            category_id=ledger.home.id,
            subcategory_id=ledger.groceries.id,
            amount=Decimal("80.00"),
            date=date(2024, 2, 3),
        )
    )
    budgets = BudgetService(session, 1)
    assert budgets.spent_by_subcategory_for_month(2024, 2) == {ledger.groceries.id: 8_000}

    transactions.delete(txn.id)
    assert txn.state == RecordState.archived
    assert budgets.spent_by_subcategory_for_month(2024, 2) == {}
