from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import atomic
from errors import ConsistencyViolation, NotFoundOrForbidden, ValidationError
from materializer import InstanceMaterializer
from models import (
    BudgetAllocation,
    BudgetProfile,
    Category,
    InstallmentOrigin,
    InstallmentPlan,
    Origin,
    RecordState,
    RecurringDefinition,
    RecurringOrigin,
    Subcategory,
    Transaction,
    TransactionKind,
    TransactionType,
    utcnow,
)
from money import CENT, from_cents, installment_amount_cents, to_cents
from periods import Period, month_period
from recurrence import definition_schedule, plan_schedule, validate_schedule
from schemas import (
    BudgetAllocationIn,
    BudgetProfileIn,
    DeleteScope,
    InstallmentPlanIn,
    InstallmentPlanUpdate,
    RecurringDefinitionIn,
    RecurringDefinitionUpdate,
    TransactionIn,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

# Changing any of these on a definition regenerates its unprocessed instances.
SCHEDULE_FIELDS = (
    "amount_cents",
    "frequency",
    "interval",
    "start_date",
    "end_date",
    "occurrences",
)

PROPAGATED_FIELDS = ("description", "payment_method", "category_id", "subcategory_id")


def resolve_category(
    session: Session,
    user_id: int,
    txn_type: TransactionType,
    category_id: int,
    subcategory_id: Optional[int],
) -> tuple[Category, Optional[Subcategory]]:
    category = session.get(Category, category_id)
    if not category or category.user_id != user_id or category.archived_at:
        raise NotFoundOrForbidden("Category not found")
    if category.type != txn_type:
        raise ValidationError("Category type mismatch")
    if subcategory_id is None:
        if txn_type == TransactionType.expense:
            raise ValidationError("Expenses require a subcategory")
        return category, None
    subcategory = session.get(Subcategory, subcategory_id)
    if (
        not subcategory
        or subcategory.category_id != category.id
        or subcategory.archived_at
    ):
        raise NotFoundOrForbidden("Subcategory not found")
    return category, subcategory


def _origin_column(origin: Union[RecurringOrigin, InstallmentOrigin]):
    if isinstance(origin, RecurringOrigin):
        return Transaction.definition_id, origin.definition_id
    return Transaction.plan_id, origin.plan_id


def _is_exhausted(definition: RecurringDefinition, child_count: int) -> bool:
    if definition.next_due_date is None:
        return False
    if definition.end_date is not None:
        return definition.next_due_date > definition.end_date
    if definition.occurrences is not None:
        return child_count >= definition.occurrences
    return False


class ChildChange(str, Enum):
    edited = "edited"
    deleted = "deleted"
    restored = "restored"


class ReconciliationService:
    """Keeps a parent consistent with its instances.

    Methods only flush; the calling entry point commits them as one unit.
    """

    def __init__(
        self, session: Session, user_id: int, settings: Optional[Settings] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()

    def applies_to(self, definition_id: Optional[int]) -> bool:
        if definition_id is None:
            return False
        definition = self.session.get(RecurringDefinition, definition_id)
        if not definition or definition.user_id != self.user_id:
            return False
        if definition.type == TransactionType.income:
            return True
        return self.settings.reconcile_expenses

    def reconcile_definition(
        self, definition_id: int, change: ChildChange
    ) -> Optional[RecurringDefinition]:
        definition = self.session.scalar(
            select(RecurringDefinition).where(
                RecurringDefinition.id == definition_id,
                RecurringDefinition.user_id == self.user_id,
                RecurringDefinition.state == RecordState.active,
            )
        )
        if definition is None:
            return None

        self.session.flush()
        children = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.definition_id == definition.id,
                Transaction.state == RecordState.active,
            )
            .order_by(Transaction.date, Transaction.id)
        ).all()

        if not children:
            definition.is_active = False
            definition.next_due_date = None
        else:
            if change != ChildChange.edited and definition.occurrences is not None:
                definition.occurrences = len(children)
            definition.start_date = children[0].date
            # end_date and occurrences are exclusive; only an end-dated
            # definition tracks its last child.
            if definition.end_date is not None:
                definition.end_date = children[-1].date
            if _is_exhausted(definition, len(children)):
                definition.is_active = False
                definition.next_due_date = None
        self.session.flush()
        logger.info(
            f"reconcile: definition_id={definition.id} change={change.value} "
            f"children={len(children)} is_active={definition.is_active}"
        )
        return definition

    def archive_instances(
        self,
        origin: Union[RecurringOrigin, InstallmentOrigin],
        at: datetime,
        *,
        unprocessed_only: bool,
    ) -> int:
        column, parent_id = _origin_column(origin)
        stmt = update(Transaction).where(
            Transaction.user_id == self.user_id,
            column == parent_id,
            Transaction.state == RecordState.active,
        )
        if unprocessed_only:
            stmt = stmt.where(Transaction.is_processed.is_(False))
        result = self.session.execute(
            stmt.values(state=RecordState.archived, archived_at=at)
        )
        return result.rowcount or 0

    def load_parent(
        self, origin: Origin, *, include_archived: bool = False
    ) -> Union[RecurringDefinition, InstallmentPlan]:
        if origin is None:
            raise ValidationError("Transaction does not belong to a schedule")
        if isinstance(origin, RecurringOrigin):
            parent = self.session.get(RecurringDefinition, origin.definition_id)
        else:
            parent = self.session.get(InstallmentPlan, origin.plan_id)
        if not parent or parent.user_id != self.user_id:
            raise NotFoundOrForbidden("Schedule not found")
        if parent.is_archived and not include_archived:
            raise NotFoundOrForbidden("Schedule not found")
        return parent

    def delete_all_instances_and_parent(
        self, origin: Union[RecurringOrigin, InstallmentOrigin]
    ) -> int:
        parent = self.load_parent(origin)
        at = utcnow()
        archived = self.archive_instances(origin, at, unprocessed_only=False)
        parent.archive(at)
        self.session.flush()
        logger.info(
            f"cascade_archive: origin={origin} instances={archived} archived_at={at}"
        )
        return archived

    def restore_all_instances_and_parent(
        self, origin: Union[RecurringOrigin, InstallmentOrigin]
    ) -> int:
        """Restore an archived parent and the instances archived with it."""
        parent = self.load_parent(origin, include_archived=True)
        if not parent.is_archived:
            return 0
        column, parent_id = _origin_column(origin)
        stamp = parent.archived_at
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                column == parent_id,
                Transaction.state == RecordState.archived,
                Transaction.archived_at == stamp,
            )
            .values(state=RecordState.active, archived_at=None)
        )
        parent.restore()
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConsistencyViolation(
                "Restoring would duplicate an existing occurrence"
            ) from exc
        restored = result.rowcount or 0
        logger.info(f"cascade_restore: origin={origin} instances={restored}")
        return restored


class RecurringDefinitionService:
    def __init__(
        self, session: Session, user_id: int, settings: Optional[Settings] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.materializer = InstanceMaterializer(session, user_id)
        self.reconciliation = ReconciliationService(session, user_id, self.settings)

    def get(
        self, definition_id: int, *, include_archived: bool = False
    ) -> RecurringDefinition:
        definition = self.session.get(RecurringDefinition, definition_id)
        if not definition or definition.user_id != self.user_id:
            raise NotFoundOrForbidden("Recurring definition not found")
        if definition.is_archived and not include_archived:
            raise NotFoundOrForbidden("Recurring definition not found")
        return definition

    def list(
        self, txn_type: Optional[TransactionType] = None
    ) -> list[RecurringDefinition]:
        stmt = select(RecurringDefinition).where(
            RecurringDefinition.user_id == self.user_id,
            RecurringDefinition.state == RecordState.active,
        )
        if txn_type is not None:
            stmt = stmt.where(RecurringDefinition.type == txn_type)
        stmt = stmt.order_by(RecurringDefinition.start_date.desc())
        return self.session.scalars(stmt).all()

    def instances(self, definition_id: int) -> list[Transaction]:
        definition = self.get(definition_id, include_archived=True)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.definition_id == definition.id,
                Transaction.state == RecordState.active,
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: RecurringDefinitionIn) -> RecurringDefinition:
        frequency = validate_schedule(
            data.frequency,
            data.interval,
            data.start_date,
            data.end_date,
            data.occurrences,
        )
        resolve_category(
            self.session,
            self.user_id,
            data.type,
            data.category_id,
            data.subcategory_id,
        )
        with atomic(self.session):
            definition = RecurringDefinition(
                user_id=self.user_id,
                type=data.type,
                category_id=data.category_id,
                subcategory_id=data.subcategory_id,
                amount_cents=to_cents(data.amount),
                description=data.description,
                payment_method=data.payment_method,
                frequency=frequency,
                interval=data.interval,
                start_date=data.start_date,
                end_date=data.end_date,
                occurrences=data.occurrences,
                is_active=data.is_active,
                next_due_date=data.start_date if data.is_active else None,
                state=RecordState.active,
            )
            self.session.add(definition)
            self.session.flush()
            if definition.is_active:
                self._regenerate(definition)
        logger.info(
            f"definition_created: definition_id={definition.id} "
            f"type={definition.type.value} frequency={definition.frequency.value}"
        )
        return definition

    def update(
        self, definition_id: int, data: RecurringDefinitionUpdate
    ) -> RecurringDefinition:
        definition = self.get(definition_id)
        changes = data.model_dump(exclude_unset=True)
        propagate = changes.pop("propagate", False)
        for field in ("amount", "frequency", "interval", "start_date", "category_id", "is_active"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be cleared")
        if "amount" in changes:
            changes["amount_cents"] = to_cents(changes.pop("amount"))

        validate_schedule(
            changes.get("frequency", definition.frequency),
            changes.get("interval", definition.interval),
            changes.get("start_date", definition.start_date),
            changes.get("end_date", definition.end_date),
            changes.get("occurrences", definition.occurrences),
        )
        if "category_id" in changes or "subcategory_id" in changes:
            resolve_category(
                self.session,
                self.user_id,
                definition.type,
                changes.get("category_id", definition.category_id),
                changes.get("subcategory_id", definition.subcategory_id),
            )

        schedule_changed = any(
            field in changes and changes[field] != getattr(definition, field)
            for field in SCHEDULE_FIELDS
        )
        was_active = definition.is_active
        requested_active = changes.pop("is_active", None)
        stays_active = was_active if requested_active is None else requested_active

        with atomic(self.session):
            for field, value in changes.items():
                setattr(definition, field, value)
            if schedule_changed:
                dropped = self.reconciliation.archive_instances(
                    RecurringOrigin(definition.id), utcnow(), unprocessed_only=True
                )
                logger.info(
                    f"definition_rescheduled: definition_id={definition.id} "
                    f"archived_unprocessed={dropped}"
                )
            if propagate:
                self._propagate(definition)
            if not stays_active:
                definition.is_active = False
                definition.next_due_date = None
            elif schedule_changed or not was_active:
                definition.is_active = True
                self._regenerate(definition)
            self.session.flush()
        return definition

    def set_active(self, definition_id: int, is_active: bool) -> RecurringDefinition:
        return self.update(definition_id, RecurringDefinitionUpdate(is_active=is_active))

    def delete(self, definition_id: int) -> int:
        """Archive the definition and its unprocessed instances.

        Processed instances stay active for reporting.
        """
        definition = self.get(definition_id)
        with atomic(self.session):
            at = utcnow()
            archived = self.reconciliation.archive_instances(
                RecurringOrigin(definition.id), at, unprocessed_only=True
            )
            definition.archive(at)
            self.session.flush()
        logger.info(
            f"definition_deleted: definition_id={definition.id} "
            f"archived_unprocessed={archived}"
        )
        return archived

    def restore(self, definition_id: int) -> RecurringDefinition:
        definition = self.get(definition_id, include_archived=True)
        with atomic(self.session):
            self.reconciliation.restore_all_instances_and_parent(
                RecurringOrigin(definition.id)
            )
        return definition

    def _regenerate(self, definition: RecurringDefinition) -> list[Transaction]:
        occurrences = definition_schedule(
            definition, hard_cap=self.settings.expansion_hard_cap
        )
        return self.materializer.materialize(definition, occurrences)

    def _propagate(self, definition: RecurringDefinition) -> int:
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.definition_id == definition.id,
                Transaction.state == RecordState.active,
                Transaction.is_processed.is_(False),
            )
            .values(
                {field: getattr(definition, field) for field in PROPAGATED_FIELDS}
            )
        )
        return result.rowcount or 0


class InstallmentPlanService:
    def __init__(
        self, session: Session, user_id: int, settings: Optional[Settings] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.materializer = InstanceMaterializer(session, user_id)
        self.reconciliation = ReconciliationService(session, user_id, self.settings)

    def get(self, plan_id: int, *, include_archived: bool = False) -> InstallmentPlan:
        plan = self.session.get(InstallmentPlan, plan_id)
        if not plan or plan.user_id != self.user_id:
            raise NotFoundOrForbidden("Installment plan not found")
        if plan.is_archived and not include_archived:
            raise NotFoundOrForbidden("Installment plan not found")
        return plan

    def list(self) -> list[InstallmentPlan]:
        stmt = (
            select(InstallmentPlan)
            .where(
                InstallmentPlan.user_id == self.user_id,
                InstallmentPlan.state == RecordState.active,
            )
            .order_by(InstallmentPlan.first_payment_date.desc())
        )
        return self.session.scalars(stmt).all()

    def instances(self, plan_id: int) -> list[Transaction]:
        plan = self.get(plan_id, include_archived=True)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.plan_id == plan.id,
                Transaction.state == RecordState.active,
            )
            .order_by(Transaction.occurrence_date)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: InstallmentPlanIn) -> InstallmentPlan:
        resolve_category(
            self.session,
            self.user_id,
            TransactionType.expense,
            data.category_id,
            data.subcategory_id,
        )
        total_cents = to_cents(data.total_amount)
        plan = InstallmentPlan(
            user_id=self.user_id,
            category_id=data.category_id,
            subcategory_id=data.subcategory_id,
            total_cents=total_cents,
            number_of_installments=data.number_of_installments,
            installment_cents=installment_amount_cents(
                total_cents, data.number_of_installments
            ),
            description=data.description,
            payment_method=data.payment_method,
            first_payment_date=data.first_payment_date,
            is_completed=False,
            state=RecordState.active,
        )
        occurrences = plan_schedule(plan, hard_cap=self.settings.expansion_hard_cap)
        with atomic(self.session):
            self.session.add(plan)
            self.session.flush()
            self.materializer.materialize(plan, occurrences)
        logger.info(
            f"plan_created: plan_id={plan.id} installments={plan.number_of_installments}"
        )
        return plan

    def update(self, plan_id: int, data: InstallmentPlanUpdate) -> InstallmentPlan:
        plan = self.get(plan_id)
        changes = data.model_dump(exclude_unset=True)
        total_amount = changes.pop("total_amount", None)
        if total_amount is not None and to_cents(total_amount) != plan.total_cents:
            raise ConsistencyViolation(
                "Total amount cannot be modified after creation"
            )
        count = changes.pop("number_of_installments", None)
        if count is not None and count != plan.number_of_installments:
            raise ConsistencyViolation(
                "Number of installments cannot be modified after creation"
            )
        if plan.is_completed and changes.get("is_completed") is False:
            raise ConsistencyViolation("Cannot un-complete a completed plan")
        if "is_completed" in changes and changes["is_completed"] is None:
            changes.pop("is_completed")

        with atomic(self.session):
            for field, value in changes.items():
                setattr(plan, field, value)
            self.session.flush()
        return plan

    def delete(self, plan_id: int) -> int:
        plan = self.get(plan_id)
        with atomic(self.session):
            at = utcnow()
            archived = self.reconciliation.archive_instances(
                InstallmentOrigin(plan.id), at, unprocessed_only=True
            )
            plan.archive(at)
            self.session.flush()
        logger.info(f"plan_deleted: plan_id={plan.id} archived_unprocessed={archived}")
        return archived

    def restore(self, plan_id: int) -> InstallmentPlan:
        plan = self.get(plan_id, include_archived=True)
        with atomic(self.session):
            self.reconciliation.restore_all_instances_and_parent(
                InstallmentOrigin(plan.id)
            )
        return plan


class TransactionService:
    def __init__(
        self, session: Session, user_id: int, settings: Optional[Settings] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.reconciliation = ReconciliationService(session, user_id, self.settings)

    def get(self, transaction_id: int, *, include_archived: bool = False) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundOrForbidden("Transaction not found")
        if txn.is_archived and not include_archived:
            raise NotFoundOrForbidden("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        resolve_category(
            self.session,
            self.user_id,
            data.type,
            data.category_id,
            data.subcategory_id,
        )
        with atomic(self.session):
            txn = Transaction(
                user_id=self.user_id,
                type=data.type,
                kind=TransactionKind.single,
                amount_cents=to_cents(data.amount),
                date=data.date,
                description=data.description,
                payment_method=data.payment_method,
                category_id=data.category_id,
                subcategory_id=data.subcategory_id,
                is_processed=True,
                state=RecordState.active,
            )
            self.session.add(txn)
            self.session.flush()
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("amount", "date"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be cleared")
        if "amount" in changes:
            changes["amount_cents"] = to_cents(changes.pop("amount"))

        with atomic(self.session):
            for field, value in changes.items():
                setattr(txn, field, value)
            self.session.flush()
            if self.reconciliation.applies_to(txn.definition_id):
                self.reconciliation.reconcile_definition(
                    txn.definition_id, ChildChange.edited
                )
        return txn

    def delete(
        self, transaction_id: int, scope: DeleteScope = DeleteScope.occurrence
    ) -> int:
        """Archive one instance, or every instance of its schedule plus the schedule.

        Returns the number of archived instances.
        """
        txn = self.get(transaction_id)
        with atomic(self.session):
            if scope == DeleteScope.all and txn.origin is not None:
                return self.reconciliation.delete_all_instances_and_parent(txn.origin)
            txn.archive(utcnow())
            self.session.flush()
            if self.reconciliation.applies_to(txn.definition_id):
                self.reconciliation.reconcile_definition(
                    txn.definition_id, ChildChange.deleted
                )
        return 1

    def restore(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id, include_archived=True)
        if not txn.is_archived:
            return txn
        if txn.origin is not None:
            parent = self.reconciliation.load_parent(txn.origin, include_archived=True)
            if parent.is_archived:
                raise ConsistencyViolation("Restore the parent schedule first")
        with atomic(self.session):
            txn.restore()
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ConsistencyViolation(
                    "Another instance already occupies this occurrence"
                ) from exc
            if self.reconciliation.applies_to(txn.definition_id):
                self.reconciliation.reconcile_definition(
                    txn.definition_id, ChildChange.restored
                )
        return txn

    def mark_processed(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id)
        if txn.kind == TransactionKind.single:
            raise ConsistencyViolation("Single transactions are already processed")
        if txn.is_processed:
            raise ConsistencyViolation("Transaction is already processed")
        with atomic(self.session):
            txn.is_processed = True
            self.session.flush()
            if txn.plan_id is not None:
                self._complete_plan_if_paid(txn.plan_id)
        return txn

    def _complete_plan_if_paid(self, plan_id: int) -> None:
        outstanding = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == self.user_id,
                Transaction.plan_id == plan_id,
                Transaction.state == RecordState.active,
                Transaction.is_processed.is_(False),
            )
        ).scalar_one()
        if outstanding == 0:
            plan = self.session.get(InstallmentPlan, plan_id)
            plan.is_completed = True
            logger.info(f"plan_completed: plan_id={plan_id}")


@dataclass(frozen=True)
class BudgetStatus:
    allocation_id: Optional[int]
    subcategory_id: int
    year: int
    month: int
    allocated: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: Decimal


def budget_percentage(allocated_cents: int, spent_cents: int) -> Decimal:
    # Nothing allocated: any spending counts as fully used.
    if allocated_cents <= 0:
        return Decimal("100.00") if spent_cents > 0 else Decimal("0.00")
    ratio = Decimal(spent_cents) * 100 / Decimal(allocated_cents)
    return ratio.quantize(CENT, rounding=ROUND_HALF_UP)


def build_status(allocation: BudgetAllocation, spent_cents: int) -> BudgetStatus:
    return BudgetStatus(
        allocation_id=allocation.id,
        subcategory_id=allocation.subcategory_id,
        year=allocation.year,
        month=allocation.month,
        allocated=from_cents(allocation.allocated_cents),
        spent=from_cents(spent_cents),
        remaining=from_cents(allocation.allocated_cents - spent_cents),
        percentage=budget_percentage(allocation.allocated_cents, spent_cents),
    )


def counts_toward_budget(
    txn: Transaction, subcategory_id: int, period: Period
) -> bool:
    return (
        txn.type == TransactionType.expense
        and txn.is_processed
        and not txn.is_archived
        and txn.subcategory_id == subcategory_id
        and period.contains(txn.date)
    )


def compute_status(
    allocation: BudgetAllocation, period_instances: Iterable[Transaction]
) -> BudgetStatus:
    period = month_period(allocation.year, allocation.month)
    spent = sum(
        txn.amount_cents
        for txn in period_instances
        if counts_toward_budget(txn, allocation.subcategory_id, period)
    )
    return build_status(allocation, spent)


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create_profile(self, data: BudgetProfileIn) -> BudgetProfile:
        with atomic(self.session):
            profile = BudgetProfile(
                user_id=self.user_id,
                name=data.name,
                description=data.description,
                is_active=data.is_active,
            )
            self.session.add(profile)
            self.session.flush()
        return profile

    def get_profile(self, profile_id: int) -> BudgetProfile:
        profile = self.session.get(BudgetProfile, profile_id)
        if not profile or profile.user_id != self.user_id:
            raise NotFoundOrForbidden("Budget profile not found")
        return profile

    def get_allocation(self, allocation_id: int) -> BudgetAllocation:
        allocation = self.session.get(BudgetAllocation, allocation_id)
        if not allocation or allocation.user_id != self.user_id:
            raise NotFoundOrForbidden("Budget allocation not found")
        return allocation

    def upsert_allocation(self, data: BudgetAllocationIn) -> BudgetAllocation:
        profile = self.get_profile(data.profile_id)
        subcategory = self.session.get(Subcategory, data.subcategory_id)
        if (
            not subcategory
            or subcategory.archived_at
            or subcategory.category.user_id != self.user_id
        ):
            raise NotFoundOrForbidden("Subcategory not found")
        if subcategory.category.type != TransactionType.expense:
            raise ValidationError("Budgets can only be set for expense subcategories")

        allocated_cents = to_cents(data.allocated_amount)
        with atomic(self.session):
            allocation = self.session.scalar(
                select(BudgetAllocation).where(
                    BudgetAllocation.profile_id == profile.id,
                    BudgetAllocation.subcategory_id == subcategory.id,
                    BudgetAllocation.year == data.year,
                    BudgetAllocation.month == data.month,
                )
            )
            if allocation:
                allocation.allocated_cents = allocated_cents
            else:
                allocation = BudgetAllocation(
                    user_id=self.user_id,
                    profile_id=profile.id,
                    subcategory_id=subcategory.id,
                    year=data.year,
                    month=data.month,
                    allocated_cents=allocated_cents,
                )
                self.session.add(allocation)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ConsistencyViolation(
                    "An allocation for this subcategory and month already exists"
                ) from exc
        return allocation

    def delete_allocation(self, allocation_id: int) -> None:
        allocation = self.get_allocation(allocation_id)
        with atomic(self.session):
            self.session.delete(allocation)

    def spent_by_subcategory_for_month(
        self, year: int, month: int, subcategory_ids: Optional[Iterable[int]] = None
    ) -> dict[int, int]:
        period = month_period(year, month)
        stmt = (
            select(
                Transaction.subcategory_id,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.state == RecordState.active,
                Transaction.type == TransactionType.expense,
                Transaction.is_processed.is_(True),
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.subcategory_id)
        )
        if subcategory_ids is not None:
            stmt = stmt.where(Transaction.subcategory_id.in_(list(subcategory_ids)))
        return {
            row.subcategory_id: int(row.spent or 0)
            for row in self.session.execute(stmt)
        }

    def status_for_month(
        self, profile_id: int, year: int, month: int
    ) -> list[BudgetStatus]:
        profile = self.get_profile(profile_id)
        allocations = self.session.scalars(
            select(BudgetAllocation)
            .where(
                BudgetAllocation.user_id == self.user_id,
                BudgetAllocation.profile_id == profile.id,
                BudgetAllocation.year == year,
                BudgetAllocation.month == month,
            )
            .order_by(BudgetAllocation.subcategory_id)
        ).all()
        if not allocations:
            return []
        spent = self.spent_by_subcategory_for_month(
            year, month, [a.subcategory_id for a in allocations]
        )
        return [build_status(a, spent.get(a.subcategory_id, 0)) for a in allocations]

    def get_budget_status(self, allocation_id: int) -> BudgetStatus:
        allocation = self.get_allocation(allocation_id)
        spent = self.spent_by_subcategory_for_month(
            allocation.year, allocation.month, [allocation.subcategory_id]
        )
        return build_status(allocation, spent.get(allocation.subcategory_id, 0))
