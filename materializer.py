import logging
from typing import Sequence, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ConsistencyViolation, NotFoundOrForbidden
from models import (
    InstallmentPlan,
    RecordState,
    RecurringDefinition,
    Transaction,
    TransactionKind,
    TransactionType,
)
from recurrence import Occurrence, advance

logger = logging.getLogger(__name__)

Parent = Union[RecurringDefinition, InstallmentPlan]


class InstanceMaterializer:
    """Persists expanded occurrences as transaction instances.

    Only flushes; the caller owns the surrounding transaction.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def existing_occurrence_dates(self, parent: Parent) -> set:
        column = (
            Transaction.definition_id
            if isinstance(parent, RecurringDefinition)
            else Transaction.plan_id
        )
        stmt = select(Transaction.occurrence_date).where(
            Transaction.user_id == self.user_id,
            column == parent.id,
            Transaction.state == RecordState.active,
        )
        return set(self.session.scalars(stmt).all())

    def materialize(
        self, parent: Parent, occurrences: Sequence[Occurrence]
    ) -> list[Transaction]:
        if parent.user_id != self.user_id:
            raise NotFoundOrForbidden("Schedule not found")
        existing = self.existing_occurrence_dates(parent)
        created: list[Transaction] = []
        for position, occurrence in enumerate(occurrences, start=1):
            if occurrence.date in existing:
                continue
            txn = self._build_instance(parent, occurrence, position)
            self.session.add(txn)
            created.append(txn)
            existing.add(occurrence.date)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConsistencyViolation(
                "An instance already exists for one of these occurrence dates"
            ) from exc

        if isinstance(parent, RecurringDefinition):
            self._update_next_due_date(parent, occurrences)
            logger.info(
                f"materialize: definition_id={parent.id} created={len(created)} "
                f"skipped={len(occurrences) - len(created)} "
                f"next_due_date={parent.next_due_date}"
            )
        else:
            logger.info(
                f"materialize: plan_id={parent.id} created={len(created)} "
                f"skipped={len(occurrences) - len(created)}"
            )
        return created

    def _build_instance(
        self, parent: Parent, occurrence: Occurrence, position: int
    ) -> Transaction:
        if isinstance(parent, RecurringDefinition):
            return Transaction(
                user_id=self.user_id,
                type=parent.type,
                kind=TransactionKind.recurring_instance,
                amount_cents=occurrence.amount_cents,
                occurrence_date=occurrence.date,
                date=occurrence.date,
                description=parent.description,
                payment_method=parent.payment_method,
                category_id=parent.category_id,
                subcategory_id=parent.subcategory_id,
                is_processed=False,
                definition_id=parent.id,
                state=RecordState.active,
            )
        label = parent.description or "Installment"
        return Transaction(
            user_id=self.user_id,
            type=TransactionType.expense,
            kind=TransactionKind.installment_instance,
            amount_cents=occurrence.amount_cents,
            occurrence_date=occurrence.date,
            date=occurrence.date,
            description=f"{label} ({position}/{parent.number_of_installments})",
            payment_method=parent.payment_method,
            category_id=parent.category_id,
            subcategory_id=parent.subcategory_id,
            is_processed=False,
            plan_id=parent.id,
            state=RecordState.active,
        )

    @staticmethod
    def _update_next_due_date(
        definition: RecurringDefinition, occurrences: Sequence[Occurrence]
    ) -> None:
        if not occurrences:
            definition.next_due_date = None
            definition.is_active = False
            return
        upcoming = advance(
            occurrences[-1].date, definition.frequency, definition.interval
        )
        exhausted = (
            definition.end_date is not None and upcoming > definition.end_date
        ) or (
            definition.occurrences is not None
            and len(occurrences) >= definition.occurrences
        )
        if exhausted:
            definition.next_due_date = None
            definition.is_active = False
        else:
            definition.next_due_date = upcoming
