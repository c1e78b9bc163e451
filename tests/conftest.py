from types import SimpleNamespace

import pytest
from sqlalchemy.orm import Session

from config import Settings
from database import Base, build_engine
from models import Category, Subcategory, TransactionType


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite:///:memory:",
        expansion_hard_cap=730,
        reconcile_expenses=False,
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


def seed_categories(session: Session) -> SimpleNamespace:
    salary = Category(user_id=1, name="Salary", type=TransactionType.income)
    home = Category(user_id=1, name="Home", type=TransactionType.expense)
    rent = Subcategory(category=home, name="Rent")
    groceries = Subcategory(category=home, name="Groceries")
    foreign = Category(user_id=2, name="Other", type=TransactionType.expense)
    foreign_sub = Subcategory(category=foreign, name="Misc")
    session.add_all([salary, home, rent, groceries, foreign, foreign_sub])
    session.commit()
    return SimpleNamespace(
        salary=salary,
        home=home,
        rent=rent,
        groceries=groceries,
        foreign=foreign,
        foreign_sub=foreign_sub,
    )


@pytest.fixture
def session():
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def ledger(session) -> SimpleNamespace:
    return seed_categories(session)


@pytest.fixture
def settings() -> Settings:
    return make_settings()
