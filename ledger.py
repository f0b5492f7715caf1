"""Balance and remaining-amount arithmetic.

Everything here is pure: callers load rows inside an atomic unit, ask these
functions what to change, and write the result back in the same unit.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from errors import InvalidCategoryType, RemainingAmountExceeded
from models import CategoryType

_INFLOW = {CategoryType.income, CategoryType.debt}
_OUTFLOW = {CategoryType.expense, CategoryType.loan}
_TRACKED = {CategoryType.debt, CategoryType.loan}


@dataclass(frozen=True)
class Effect:
    amount: int
    sign: int

    @property
    def signed(self) -> int:
        return self.sign * self.amount


def _coerce(category_type) -> CategoryType:
    try:
        return CategoryType(category_type)
    except ValueError as exc:
        raise InvalidCategoryType(f"Invalid category type: {category_type}") from exc


def sign_for(category_type) -> int:
    kind = _coerce(category_type)
    if kind in _INFLOW:
        return 1
    if kind in _OUTFLOW:
        return -1
    raise InvalidCategoryType(f"Invalid category type: {category_type}")


def tracks_remaining(category_type) -> bool:
    return _coerce(category_type) in _TRACKED


def effective_sign(category_type, parent_type=None) -> int:
    # repaying a debt is an outflow, collecting a loan is an inflow
    if parent_type is not None and tracks_remaining(parent_type):
        return -sign_for(parent_type)
    return sign_for(category_type)


def balance_delta(old: Optional[Effect], new: Optional[Effect]) -> int:
    delta = 0
    if new is not None:
        delta += new.signed
    if old is not None:
        delta -= old.signed
    return delta


def remaining_after(parent_amount: int, child_amounts: Iterable[int]) -> int:
    paid = sum(child_amounts)
    remaining = parent_amount - paid
    if remaining < 0:
        raise RemainingAmountExceeded(
            f"Total payments ({paid}) exceed the amount ({parent_amount}). "
            "Remaining amount cannot be negative."
        )
    return remaining


def check_child_allowed(parent_remaining: int, amount: int) -> None:
    if parent_remaining == 0:
        raise RemainingAmountExceeded("Remaining amount is already settled")
    if amount > parent_remaining:
        raise RemainingAmountExceeded(
            f"Amount ({amount}) exceeds the remaining amount ({parent_remaining})"
        )


def combine_date(old_at: datetime, new_date: date) -> datetime:
    if old_at.date() == new_date:
        return old_at
    return datetime.combine(new_date, old_at.time())
