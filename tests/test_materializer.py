from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import make_settings
from errors import NotFoundOrForbidden
from materializer import InstanceMaterializer
from models import Frequency, RecordState, Transaction, TransactionKind, TransactionType
from recurrence import definition_schedule
from schemas import RecurringDefinitionIn
from services import RecurringDefinitionService


def _salary(ledger, **overrides) -> RecurringDefinitionIn:
    values = dict(
        type=TransactionType.income,
        category_id=ledger.salary.id,
        amount=Decimal("2500.00"),
        description="Salary",
        frequency=Frequency.monthly,
        start_date=date(2024, 1, 15),
    )
    values.update(overrides)
    return RecurringDefinitionIn(**values)


def _instance_count(session, definition_id: int) -> int:
    return session.scalar(
        select(func.count(Transaction.id)).where(
            Transaction.definition_id == definition_id,
            Transaction.state == RecordState.active,
        )
    )


def test_bounded_definition_materializes_every_occurrence(session, ledger, settings):
    service = RecurringDefinitionService(session, 1, settings)
    definition = service.create(_salary(ledger, occurrences=3))

    instances = service.instances(definition.id)
    assert [t.date for t in instances] == [
        date(2024, 1, 15),
        date(2024, 2, 15),
        date(2024, 3, 15),
    ]
    assert all(t.kind == TransactionKind.recurring_instance for t in instances)
    assert all(not t.is_processed for t in instances)
    assert all(t.amount_cents == 250_000 for t in instances)
    assert all(t.occurrence_date == t.date for t in instances)
    assert definition.next_due_date is None
    assert definition.is_active is False


def test_materialize_twice_creates_nothing_new(session, ledger, settings):
    service = RecurringDefinitionService(session, 1, settings)
    definition = service.create(_salary(ledger, occurrences=3))

    materializer = InstanceMaterializer(session, 1)
    created = materializer.materialize(
        definition, definition_schedule(definition, hard_cap=730)
    )
    session.commit()

    assert created == []
    assert _instance_count(session, definition.id) == 3


def test_open_ended_definition_is_truncated_at_hard_cap(session, ledger):
    service = RecurringDefinitionService(session, 1, make_settings(expansion_hard_cap=5))
    definition = service.create(
        _salary(ledger, frequency=Frequency.daily, start_date=date(2024, 1, 1))
    )

    assert _instance_count(session, definition.id) == 5
    assert definition.is_active is True
    assert definition.next_due_date == date(2024, 1, 1) + timedelta(days=5)


def test_inactive_definition_is_not_materialized(session, ledger, settings):
    service = RecurringDefinitionService(session, 1, settings)
    definition = service.create(_salary(ledger, occurrences=3, is_active=False))

    assert _instance_count(session, definition.id) == 0
    assert definition.next_due_date is None


def test_storage_rejects_duplicate_active_occurrence(session, ledger, settings):
    service = RecurringDefinitionService(session, 1, settings)
    definition = service.create(_salary(ledger, occurrences=1))
    original = service.instances(definition.id)[0]

    def duplicate() -> Transaction:
        return Transaction(
            user_id=1,
            type=TransactionType.income,
            kind=TransactionKind.recurring_instance,
            amount_cents=250_000,
            occurrence_date=original.occurrence_date,
            date=original.date,
            category_id=ledger.salary.id,
            definition_id=definition.id,
        )

    session.add(duplicate())
    with pytest.raises(IntegrityError):
        session.flush()
    session.rollback()

    original.archive(original.created_at)
    session.add(duplicate())
    session.commit()
    assert _instance_count(session, definition.id) == 1


def test_materializer_refuses_another_users_schedule(session, ledger, settings):
    definition = RecurringDefinitionService(session, 1, settings).create(
        _salary(ledger, occurrences=2)
    )
    with pytest.raises(NotFoundOrForbidden):
        InstanceMaterializer(session, 2).materialize(
            definition, definition_schedule(definition, hard_cap=730)
        )
