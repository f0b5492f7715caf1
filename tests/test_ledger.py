from datetime import date, datetime

import pytest

from errors import InvalidCategoryType, RemainingAmountExceeded
from ledger import (
    Effect,
    balance_delta,
    check_child_allowed,
    combine_date,
    effective_sign,
    remaining_after,
    sign_for,
    tracks_remaining,
)
from models import CategoryType


def test_sign_follows_direction_of_money() -> None:
    assert sign_for(CategoryType.income) == 1
    assert sign_for(CategoryType.debt) == 1
    assert sign_for(CategoryType.expense) == -1
    assert sign_for("loan") == -1


def test_unknown_category_type_is_rejected() -> None:
    with pytest.raises(InvalidCategoryType):
        sign_for("transfer")


def test_only_debt_and_loan_track_remaining() -> None:
    assert tracks_remaining(CategoryType.debt)
    assert tracks_remaining(CategoryType.loan)
    assert not tracks_remaining(CategoryType.income)
    assert not tracks_remaining(CategoryType.expense)


def test_children_move_money_against_their_parent() -> None:
    assert effective_sign(CategoryType.expense, CategoryType.debt) == -1
    assert effective_sign(CategoryType.income, CategoryType.debt) == -1
    assert effective_sign(CategoryType.income, CategoryType.loan) == 1
    assert effective_sign(CategoryType.expense, CategoryType.loan) == 1
    assert effective_sign(CategoryType.expense, None) == -1


def test_balance_delta_covers_create_update_and_delete() -> None:
    expense = Effect(50, -1)
    income = Effect(50, 1)

    assert balance_delta(None, expense) == -50
    assert balance_delta(expense, income) == 100
    assert balance_delta(income, None) == -50
    assert balance_delta(expense, expense) == 0


def test_remaining_after_subtracts_children() -> None:
    assert remaining_after(500, [200, 100]) == 200
    assert remaining_after(500, []) == 500
    assert remaining_after(300, [300]) == 0
    with pytest.raises(RemainingAmountExceeded):
        remaining_after(200, [300])


def test_child_allowed_only_within_remaining() -> None:
    check_child_allowed(300, 300)
    with pytest.raises(RemainingAmountExceeded):
        check_child_allowed(300, 400)
    with pytest.raises(RemainingAmountExceeded):
        check_child_allowed(0, 1)


def test_combine_date_keeps_original_time() -> None:
    original = datetime(2025, 5, 1, 9, 45, 12)

    assert combine_date(original, date(2025, 5, 1)) is original
    assert combine_date(original, date(2025, 5, 3)) == datetime(2025, 5, 3, 9, 45, 12)
