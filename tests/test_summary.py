from datetime import date, datetime

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Category, User, UserStatus, Wallet
from periods import month_period
from schemas import RepaymentIn, TransactionIn
from services import (
    CategoryService,
    DebtService,
    SummaryService,
    TransactionFilters,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session):
    user = User(
        name="Rui",
        username="rui",
        email="rui@example.com",
        password="x",
        status=UserStatus.active,
    )
    session.add(user)
    session.flush()
    CategoryService(session, user.id).ensure_defaults(session)
    wallet = Wallet(
        user_id=user.id, name="Main", type="bank", balance=0, target=5_000, threshold=100
    )
    session.add(wallet)
    session.commit()
    return user, wallet


def record(session, user, wallet, category_name, amount, when):
    category = session.scalar(
        select(Category).where(
            Category.user_id == user.id, Category.name == category_name
        )
    )
    return TransactionService(session, user.id).create(
        TransactionIn(
            name=f"{category_name} entry",
            amount=amount,
            date=when.date(),
            category_id=category.id,
            wallet_id=wallet.id,
        ),
        occurred_at=when,
    )


def test_totals_use_effective_signs() -> None:
    session = make_session()
    user, wallet = seed(session)
    record(session, user, wallet, "Salary", 2_000, datetime(2025, 6, 1, 9))
    record(session, user, wallet, "Food & Drinks", 300, datetime(2025, 6, 2, 12))
    debt = record(session, user, wallet, "Debt", 500, datetime(2025, 6, 3, 10))
    DebtService(session, user.id).repay(
        RepaymentIn(
            amount=200, wallet_id=wallet.id, parent_id=debt.id, date=date(2025, 6, 4)
        )
    )

    items = TransactionService(session, user.id).list(TransactionFilters())
    totals = SummaryService.totals(items)

    assert totals == {"income": 2_500, "expense": 500, "net_income": 2_000}


def test_outstanding_totals_sum_remaining_amounts() -> None:
    session = make_session()
    user, wallet = seed(session)
    debt = record(session, user, wallet, "Debt", 500, datetime(2025, 6, 3, 10))
    record(session, user, wallet, "Loan", 250, datetime(2025, 6, 3, 11))
    DebtService(session, user.id).repay(
        RepaymentIn(amount=200, wallet_id=wallet.id, parent_id=debt.id)
    )

    assert SummaryService(session, user.id).outstanding_totals() == {
        "total_debt": 300,
        "total_loan": 250,
    }


def test_monthly_by_category_stays_inside_the_period() -> None:
    session = make_session()
    user, wallet = seed(session)
    record(session, user, wallet, "Food & Drinks", 100, datetime(2025, 6, 2, 12))
    record(session, user, wallet, "Food & Drinks", 50, datetime(2025, 6, 30, 23, 59))
    record(session, user, wallet, "Food & Drinks", 999, datetime(2025, 7, 1, 0, 0))
    record(session, user, wallet, "Salary", 1_000, datetime(2025, 6, 25, 8))

    rows = SummaryService(session, user.id).monthly_by_category(
        wallet.id, month_period(2025, 6)
    )

    assert [(r["name"], r["total"], r["count"]) for r in rows] == [
        ("Salary", 1_000, 1),
        ("Food & Drinks", 150, 2),
    ]


def test_wallet_summary_reports_current_month() -> None:
    session = make_session()
    user, wallet = seed(session)
    record(session, user, wallet, "Salary", 1_000, datetime(2025, 6, 25, 8))
    record(session, user, wallet, "Bills", 400, datetime(2025, 5, 20, 8))

    summary = SummaryService(session, user.id).wallet_summary(
        session.get(Wallet, wallet.id), today=date(2025, 6, 28)
    )

    assert summary["month"] == "2025-06"
    assert summary["wallet"]["balance"] == 600
    assert summary["wallet"]["threshold"] == 100
    assert summary["totals"] == {"income": 1_000, "expense": 0, "net_income": 1_000}
    assert [c["name"] for c in summary["categories"]] == ["Salary"]
    assert summary["outstanding"] == {"total_debt": 0, "total_loan": 0}
