from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import from_cents


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionKind(str, Enum):
    single = "single"
    recurring_instance = "recurring_instance"
    installment_instance = "installment_instance"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    bi_monthly = "bi-monthly"
    quarterly = "quarterly"
    semi_annually = "semi-annually"
    annually = "annually"


FREQUENCY_ENUM = SAEnum(
    Frequency,
    name="frequency",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class RecordState(str, Enum):
    active = "active"
    archived = "archived"


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Archived:
    at: datetime


Lifecycle = Union[Active, Archived]


@dataclass(frozen=True)
class RecurringOrigin:
    definition_id: int


@dataclass(frozen=True)
class InstallmentOrigin:
    plan_id: int


# None for one-off transactions
Origin = Optional[Union[RecurringOrigin, InstallmentOrigin]]

ACTIVE_ONLY = text("state = 'active'")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class ArchivableMixin:
    state: Mapped[RecordState] = mapped_column(
        SAEnum(RecordState), default=RecordState.active, nullable=False
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @property
    def lifecycle(self) -> Lifecycle:
        if self.state == RecordState.archived:
            return Archived(self.archived_at)
        return Active()

    @property
    def is_archived(self) -> bool:
        return isinstance(self.lifecycle, Archived)

    def archive(self, at: datetime) -> None:
        if self.is_archived:
            return
        self.state = RecordState.archived
        self.archived_at = at

    def restore(self) -> None:
        self.state = RecordState.active
        self.archived_at = None


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    subcategories: Mapped[list["Subcategory"]] = relationship(
        "Subcategory", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Subcategory(Base, TimestampMixin):
    __tablename__ = "subcategories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="subcategories"
    )

    __table_args__ = (
        UniqueConstraint("category_id", "name", name="uq_subcategory_category_name"),
    )


class RecurringDefinition(Base, TimestampMixin, ArchivableMixin):
    __tablename__ = "recurring_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    frequency: Mapped[Frequency] = mapped_column(FREQUENCY_ENUM, nullable=False)
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    occurrences: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_due_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category")
    subcategory: Mapped[Optional["Subcategory"]] = relationship("Subcategory")
    instances: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="definition"
    )

    __table_args__ = (
        CheckConstraint('"interval" > 0', name="ck_definition_interval_positive"),
        CheckConstraint("amount_cents >= 0", name="ck_definition_amount_positive"),
        CheckConstraint(
            "end_date IS NULL OR occurrences IS NULL",
            name="ck_definition_single_end_condition",
        ),
        CheckConstraint(
            "occurrences IS NULL OR occurrences > 0",
            name="ck_definition_occurrences_positive",
        ),
        Index("ix_definitions_user_state", "user_id", "state"),
    )

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)


class InstallmentPlan(Base, TimestampMixin, ArchivableMixin):
    __tablename__ = "installment_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    number_of_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    first_payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped["Category"] = relationship("Category")
    subcategory: Mapped[Optional["Subcategory"]] = relationship("Subcategory")
    instances: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="plan"
    )

    __table_args__ = (
        CheckConstraint(
            "number_of_installments >= 2", name="ck_plan_installments_minimum"
        ),
        CheckConstraint("total_cents > 0", name="ck_plan_total_positive"),
        Index("ix_plans_user_state", "user_id", "state"),
    )

    @property
    def total_amount(self) -> Decimal:
        return from_cents(self.total_cents)

    @property
    def installment_amount(self) -> Decimal:
        return from_cents(self.installment_cents)


class Transaction(Base, TimestampMixin, ArchivableMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind), nullable=False, default=TransactionKind.single
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # schedule slot that produced the row; never changes after creation
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    is_processed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    definition_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_definitions.id")
    )
    plan_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("installment_plans.id")
    )

    category: Mapped["Category"] = relationship("Category")
    subcategory: Mapped[Optional["Subcategory"]] = relationship("Subcategory")
    definition: Mapped[Optional["RecurringDefinition"]] = relationship(
        "RecurringDefinition", back_populates="instances"
    )
    plan: Mapped[Optional["InstallmentPlan"]] = relationship(
        "InstallmentPlan", back_populates="instances"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "definition_id IS NULL OR plan_id IS NULL",
            name="ck_transactions_single_origin",
        ),
        CheckConstraint(
            "(kind = 'single' AND definition_id IS NULL AND plan_id IS NULL)"
            " OR (kind = 'recurring_instance' AND definition_id IS NOT NULL)"
            " OR (kind = 'installment_instance' AND plan_id IS NOT NULL)",
            name="ck_transactions_kind_matches_origin",
        ),
        Index(
            "uq_txn_definition_occurrence",
            "definition_id",
            "occurrence_date",
            unique=True,
            sqlite_where=ACTIVE_ONLY,
            postgresql_where=ACTIVE_ONLY,
        ),
        Index(
            "uq_txn_plan_occurrence",
            "plan_id",
            "occurrence_date",
            unique=True,
            sqlite_where=ACTIVE_ONLY,
            postgresql_where=ACTIVE_ONLY,
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index(
            "ix_transactions_user_subcategory_date", "user_id", "subcategory_id", "date"
        ),
    )

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)

    @property
    def origin(self) -> Origin:
        if self.definition_id is not None:
            return RecurringOrigin(self.definition_id)
        if self.plan_id is not None:
            return InstallmentOrigin(self.plan_id)
        return None


class BudgetProfile(Base, TimestampMixin):
    __tablename__ = "budget_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    allocations: Mapped[list["BudgetAllocation"]] = relationship(
        "BudgetAllocation", back_populates="profile"
    )


class BudgetAllocation(Base, TimestampMixin):
    __tablename__ = "budget_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    profile_id: Mapped[int] = mapped_column(
        ForeignKey("budget_profiles.id"), nullable=False
    )
    subcategory_id: Mapped[int] = mapped_column(
        ForeignKey("subcategories.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    allocated_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    profile: Mapped["BudgetProfile"] = relationship(
        "BudgetProfile", back_populates="allocations"
    )
    subcategory: Mapped["Subcategory"] = relationship("Subcategory")

    __table_args__ = (
        CheckConstraint(
            "allocated_cents >= 0", name="ck_budget_allocation_amount_positive"
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_allocation_month"),
        UniqueConstraint(
            "profile_id",
            "subcategory_id",
            "year",
            "month",
            name="uq_budget_allocation_profile_subcategory_month",
        ),
        Index("ix_budget_allocation_user_month", "user_id", "year", "month"),
    )

    @property
    def allocated_amount(self) -> Decimal:
        return from_cents(self.allocated_cents)
