from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from auth import check_password, hash_password
from config import get_settings
from database import end_reads, is_object_id, new_object_id, with_transaction
from errors import (
    ExternalServiceError,
    Forbidden,
    NotFound,
    Unauthorized,
    ValidationError,
)
from gateways import (
    LanguageModelClient,
    PaymentGatewayClient,
    PushClient,
    parse_json_object,
)
from ledger import (
    Effect,
    balance_delta,
    check_child_allowed,
    combine_date,
    effective_sign,
    remaining_after,
    tracks_remaining,
)
from models import (
    Category,
    CategoryType,
    Message,
    Notification,
    Payment,
    PaymentStatus,
    Transaction,
    User,
    UserStatus,
    Wallet,
)
from periods import Period, month_period
from schemas import (
    CategoryIn,
    LoginIn,
    PaymentWebhookIn,
    ProfileUpdateIn,
    RegisterIn,
    RepaymentIn,
    SettlementIn,
    TransactionIn,
    TransactionUpdateIn,
    WalletIn,
    WalletUpdateIn,
)

logger = logging.getLogger(__name__)

REPAYMENT_CATEGORY = "Repayment"
DEBT_COLLECTION_CATEGORY = "Debt Collection"

DEFAULT_CATEGORIES: list[tuple[str, CategoryType]] = [
    ("Salary", CategoryType.income),
    ("Food & Drinks", CategoryType.expense),
    ("Transportation", CategoryType.expense),
    ("Bills", CategoryType.expense),
    ("Shopping", CategoryType.expense),
    ("Debt", CategoryType.debt),
    ("Loan", CategoryType.loan),
    (REPAYMENT_CATEGORY, CategoryType.expense),
    (DEBT_COLLECTION_CATEGORY, CategoryType.income),
]


def local_now() -> datetime:
    return (
        datetime.now(ZoneInfo(get_settings().timezone))
        .replace(tzinfo=None)
        .replace(microsecond=0)
    )


def require_object_id(value: Optional[str], label: str) -> str:
    if not is_object_id(value):
        raise ValidationError(f"Invalid {label} ID")
    return value


def owned_wallet(
    session: Session, user_id: str, wallet_id: str, *, lock: bool = False
) -> Wallet:
    require_object_id(wallet_id, "wallet")
    stmt = select(Wallet).where(Wallet.id == wallet_id, Wallet.deleted_at.is_(None))
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    wallet = session.scalar(stmt)
    if not wallet:
        raise NotFound("Wallet not found")
    if wallet.user_id != user_id:
        raise Forbidden("Unauthorized access to wallet")
    return wallet


def owned_category(session: Session, user_id: str, category_id: str) -> Category:
    require_object_id(category_id, "category")
    category = session.get(Category, category_id)
    if not category:
        raise NotFound("Category not found")
    if category.user_id != user_id:
        raise Forbidden("Unauthorized access to category")
    return category


def _lock_wallet(session: Session, wallet_id: str) -> Wallet:
    # existing rows keep adjusting their wallet even after it was soft-deleted
    session.flush()
    return session.scalars(
        select(Wallet)
        .where(Wallet.id == wallet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).one()


def _lock_transaction(session: Session, transaction_id: str) -> Transaction:
    # pending changes must reach the row before it is reloaded
    session.flush()
    txn = session.scalars(
        select(Transaction)
        .options(joinedload(Transaction.category))
        .where(Transaction.id == transaction_id)
        .with_for_update(of=Transaction)
        .execution_options(populate_existing=True)
    ).one_or_none()
    if txn is None:
        raise NotFound("Transaction not found")
    return txn


def _children(session: Session, parent_id: str, *, lock: bool = False) -> list[Transaction]:
    stmt = (
        select(Transaction)
        .options(joinedload(Transaction.category))
        .where(Transaction.parent_id == parent_id)
        .order_by(Transaction.date.asc(), Transaction.id.asc())
    )
    if lock:
        stmt = stmt.with_for_update(of=Transaction).execution_options(
            populate_existing=True
        )
    return list(session.scalars(stmt).all())


def _effect(txn: Transaction, parent: Optional[Transaction]) -> Effect:
    parent_type = parent.category.type if parent is not None else None
    return Effect(txn.amount, effective_sign(txn.category.type, parent_type))


def _recompute_remaining(session: Session, parent: Transaction) -> None:
    session.flush()
    amounts = [child.amount for child in _children(session, parent.id)]
    parent.remaining_amount = remaining_after(parent.amount, amounts)


@dataclass
class TransactionFilters:
    wallet_id: Optional[str] = None
    category_id: Optional[str] = None
    parent_id: Optional[str] = None
    period: Optional[Period] = None


class TransactionService:
    """Create, update and delete transactions together with their effects.

    Every write touches the transaction row, one or two wallet balances and,
    for repayments, the parent's remaining amount. All of it runs in a single
    ``with_transaction`` unit so no caller can observe a half-applied change.
    """

    def __init__(
        self,
        session: Session,
        user_id: str,
        notifier: Optional["NotificationService"] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.notifier = notifier

    def get(self, transaction_id: str) -> Transaction:
        require_object_id(transaction_id, "transaction")
        txn = self.session.scalar(
            select(Transaction)
            .options(
                joinedload(Transaction.category),
                joinedload(Transaction.wallet),
                joinedload(Transaction.parent),
            )
            .where(Transaction.id == transaction_id)
        )
        if not txn:
            raise NotFound("Transaction not found")
        wallet = txn.wallet
        if wallet is None or wallet.deleted_at is not None or wallet.user_id != self.user_id:
            raise Forbidden("Unauthorized access to transaction")
        return txn

    def children(self, transaction_id: str) -> list[Transaction]:
        return _children(self.session, transaction_id)

    def list(self, filters: TransactionFilters) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .join(Wallet, Wallet.id == Transaction.wallet_id)
            .options(joinedload(Transaction.category))
            .where(Wallet.user_id == self.user_id, Wallet.deleted_at.is_(None))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if filters.wallet_id:
            owned_wallet(self.session, self.user_id, filters.wallet_id)
            stmt = stmt.where(Transaction.wallet_id == filters.wallet_id)
        if filters.category_id:
            require_object_id(filters.category_id, "category")
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.parent_id:
            require_object_id(filters.parent_id, "parent")
            stmt = stmt.where(Transaction.parent_id == filters.parent_id)
        if filters.period:
            stmt = stmt.where(
                Transaction.date.between(filters.period.start_at, filters.period.end_at)
            )
        return list(self.session.scalars(stmt).unique().all())

    def validate_parent(
        self,
        parent_id: str,
        child_category: Category,
        *,
        child_id: Optional[str] = None,
    ) -> Transaction:
        require_object_id(parent_id, "parent")
        if child_id is not None and parent_id == child_id:
            raise ValidationError("A transaction cannot be its own parent")
        try:
            parent = self.get(parent_id)
        except NotFound as exc:
            raise NotFound("Parent transaction not found") from exc
        if not tracks_remaining(parent.category.type):
            raise ValidationError("Parent transaction must be a debt or loan")
        if parent.parent_id is not None:
            raise ValidationError("Parent transaction cannot itself be a repayment")
        if tracks_remaining(child_category.type):
            raise ValidationError(
                "A repayment or collection cannot use a debt or loan category"
            )
        return parent

    def prepare(self, data: TransactionIn) -> Category:
        """Ownership and shape checks that run before the atomic unit."""
        owned_wallet(self.session, self.user_id, data.wallet_id)
        category = owned_category(self.session, self.user_id, data.category_id)
        if data.parent_id:
            parent = self.validate_parent(data.parent_id, category)
            check_child_allowed(parent.remaining_amount, data.amount)
        if data.message_id and not self.session.get(Message, data.message_id):
            raise NotFound("Message not found")
        return category

    def create(
        self, data: TransactionIn, occurred_at: Optional[datetime] = None
    ) -> Transaction:
        self.prepare(data)
        if occurred_at is None:
            occurred_at = datetime.combine(data.date, local_now().time())
        txn = with_transaction(self.session, self.apply_create, data, occurred_at)
        self.check_low_balance(txn.wallet_id)
        return txn

    def apply_create(
        self, session: Session, data: TransactionIn, occurred_at: datetime
    ) -> Transaction:
        """Insert a transaction and apply its effects inside the caller's unit."""
        category = session.get(Category, data.category_id)
        wallet = _lock_wallet(session, data.wallet_id)

        parent = None
        if data.parent_id:
            parent = _lock_transaction(session, data.parent_id)
            check_child_allowed(parent.remaining_amount, data.amount)
            parent.remaining_amount -= data.amount

        remaining = (
            data.amount if parent is None and tracks_remaining(category.type) else 0
        )
        txn = Transaction(
            name=data.name,
            description=data.description,
            amount=data.amount,
            date=occurred_at,
            category_id=category.id,
            wallet_id=wallet.id,
            parent_id=parent.id if parent is not None else None,
            remaining_amount=remaining,
            message_id=data.message_id,
        )
        txn.category = category
        session.add(txn)

        delta = balance_delta(None, _effect(txn, parent))
        wallet.balance += delta
        session.flush()
        logger.info(
            f"transaction_created: id={txn.id} wallet_id={wallet.id} "
            f"type={category.type.value} delta={delta} balance={wallet.balance}"
        )
        return txn

    def update(self, transaction_id: str, data: TransactionUpdateIn) -> Transaction:
        txn = self.get(transaction_id)
        if data.wallet_id != txn.wallet_id:
            try:
                owned_wallet(self.session, self.user_id, data.wallet_id)
            except Forbidden as exc:
                raise Forbidden("Unauthorized access to new wallet") from exc
        if data.category_id == txn.category_id:
            new_category = txn.category
        else:
            try:
                new_category = owned_category(
                    self.session, self.user_id, data.category_id
                )
            except Forbidden as exc:
                raise Forbidden("Unauthorized access to new category") from exc

        has_children = bool(self.children(txn.id))
        if has_children and new_category.type != txn.category.type:
            raise ValidationError(
                "Cannot change the category type of a transaction with repayments"
            )

        new_parent_id = data.parent_id or txn.parent_id
        if new_parent_id:
            if has_children:
                raise ValidationError(
                    "A transaction with repayments cannot become a repayment"
                )
            self.validate_parent(new_parent_id, new_category, child_id=txn.id)
        if data.message_id and not self.session.get(Message, data.message_id):
            raise NotFound("Message not found")

        return with_transaction(
            self.session, self._apply_update, txn.id, data, new_category, new_parent_id
        )

    def _apply_update(
        self,
        session: Session,
        transaction_id: str,
        data: TransactionUpdateIn,
        new_category: Category,
        new_parent_id: Optional[str],
    ) -> Transaction:
        txn = _lock_transaction(session, transaction_id)
        old_parent = _lock_transaction(session, txn.parent_id) if txn.parent_id else None
        if new_parent_id is None:
            new_parent = None
        elif old_parent is not None and old_parent.id == new_parent_id:
            new_parent = old_parent
        else:
            new_parent = _lock_transaction(session, new_parent_id)

        old_effect = _effect(txn, old_parent)
        new_parent_type = new_parent.category.type if new_parent is not None else None
        new_effect = Effect(
            data.amount, effective_sign(new_category.type, new_parent_type)
        )

        if data.wallet_id == txn.wallet_id:
            wallet = _lock_wallet(session, txn.wallet_id)
            wallet.balance += balance_delta(old_effect, new_effect)
        else:
            source = _lock_wallet(session, txn.wallet_id)
            source.balance += balance_delta(old_effect, None)
            destination = _lock_wallet(session, data.wallet_id)
            destination.balance += balance_delta(None, new_effect)

        remaining = 0
        if new_parent is None and tracks_remaining(new_category.type):
            amounts = [child.amount for child in _children(session, txn.id)]
            remaining = remaining_after(data.amount, amounts)
            if (
                data.remaining_amount is not None
                and data.remaining_amount != remaining
            ):
                raise ValidationError(
                    f"Provided remaining amount ({data.remaining_amount}) does not "
                    f"match calculated remaining amount ({remaining})"
                )

        txn.name = data.name
        txn.description = data.description
        txn.amount = data.amount
        txn.date = combine_date(txn.date, data.date)
        txn.category_id = new_category.id
        txn.category = new_category
        txn.wallet_id = data.wallet_id
        txn.parent_id = new_parent.id if new_parent is not None else None
        txn.parent = new_parent
        txn.remaining_amount = remaining
        if data.message_id:
            txn.message_id = data.message_id

        affected = {p.id: p for p in (old_parent, new_parent) if p is not None}
        for parent in affected.values():
            _recompute_remaining(session, parent)

        session.flush()
        logger.info(
            f"transaction_updated: id={txn.id} wallet_id={txn.wallet_id} "
            f"old={old_effect.signed} new={new_effect.signed}"
        )
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        with_transaction(self.session, self._apply_delete, txn.id)

    def _apply_delete(self, session: Session, transaction_id: str) -> None:
        txn = _lock_transaction(session, transaction_id)
        parent = _lock_transaction(session, txn.parent_id) if txn.parent_id else None

        children = _children(session, txn.id, lock=True)
        for child in children:
            child_wallet = _lock_wallet(session, child.wallet_id)
            child_wallet.balance += balance_delta(_effect(child, txn), None)
            session.delete(child)
        session.flush()

        wallet = _lock_wallet(session, txn.wallet_id)
        wallet.balance += balance_delta(_effect(txn, parent), None)
        session.flush()
        session.delete(txn)

        if parent is not None:
            _recompute_remaining(session, parent)
        session.flush()
        logger.info(
            f"transaction_deleted: id={transaction_id} children={len(children)} "
            f"wallet_id={wallet.id} balance={wallet.balance}"
        )

    def check_low_balance(self, wallet_id: str) -> None:
        if self.notifier is not None:
            self.notifier.notify_low_balance(wallet_id)


class DebtService:
    """Repayments of debts and collections of loans."""

    def __init__(
        self,
        session: Session,
        user_id: str,
        notifier: Optional["NotificationService"] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.notifier = notifier

    def repay(self, data: RepaymentIn) -> Transaction:
        return self._settle(data.parent_id, data, CategoryType.debt)

    def collect(self, data: RepaymentIn) -> Transaction:
        return self._settle(data.parent_id, data, CategoryType.loan)

    def settle(self, parent_id: str, data: SettlementIn) -> Transaction:
        parent = TransactionService(self.session, self.user_id).get(parent_id)
        if not tracks_remaining(parent.category.type):
            raise ValidationError("Transaction is not a debt or loan")
        return self._settle(parent.id, data, parent.category.type)

    def outstanding(self, kind: CategoryType) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .join(Category, Category.id == Transaction.category_id)
            .join(Wallet, Wallet.id == Transaction.wallet_id)
            .options(joinedload(Transaction.category))
            .where(
                Category.user_id == self.user_id,
                Category.type == kind,
                Wallet.user_id == self.user_id,
                Wallet.deleted_at.is_(None),
                Transaction.parent_id.is_(None),
                Transaction.remaining_amount > 0,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).unique().all())

    def _fixed_category(self, kind: CategoryType) -> Category:
        name = REPAYMENT_CATEGORY if kind == CategoryType.debt else DEBT_COLLECTION_CATEGORY
        category = self.session.scalar(
            select(Category)
            .where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.lower(),
            )
            .order_by(Category.created_at.asc())
        )
        if not category:
            raise NotFound(f"Category '{name}' not found")
        return category

    def _settle(
        self, parent_id: str, data: SettlementIn | RepaymentIn, kind: CategoryType
    ) -> Transaction:
        label = "Debt" if kind == CategoryType.debt else "Loan"
        category = self._fixed_category(kind)
        txns = TransactionService(self.session, self.user_id, notifier=self.notifier)
        try:
            parent = txns.validate_parent(parent_id, category)
        except NotFound as exc:
            raise NotFound(f"{label} not found") from exc
        if parent.category.type != kind:
            raise ValidationError(f"Transaction is not a {kind.value}")
        check_child_allowed(parent.remaining_amount, data.amount)
        owned_wallet(self.session, self.user_id, data.wallet_id)

        prefix = "Repayment" if kind == CategoryType.debt else "Debt collection"
        now = local_now()
        on_date = data.date or now.date()
        txn_in = TransactionIn(
            name=f"{prefix} for {parent.name}"[:100],
            description=data.description,
            amount=data.amount,
            date=on_date,
            category_id=category.id,
            wallet_id=data.wallet_id,
            parent_id=parent.id,
        )
        occurred_at = datetime.combine(on_date, now.time())
        txn = with_transaction(self.session, txns.apply_create, txn_in, occurred_at)
        logger.info(
            f"debt_settled: parent_id={parent.id} kind={kind.value} "
            f"amount={data.amount} remaining={parent.remaining_amount}"
        )
        txns.check_low_balance(txn.wallet_id)
        return txn


class SummaryService:
    """Read-only aggregates over a user's ledger."""

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def totals(transactions: list[Transaction]) -> dict[str, int]:
        income = 0
        expense = 0
        for txn in transactions:
            parent = txn.parent if txn.parent_id else None
            signed = _effect(txn, parent).signed
            if signed >= 0:
                income += signed
            else:
                expense -= signed
        return {"income": income, "expense": expense, "net_income": income - expense}

    def outstanding_totals(self) -> dict[str, int]:
        rows = self.session.execute(
            select(
                Category.type,
                func.coalesce(func.sum(Transaction.remaining_amount), 0),
            )
            .join(Category, Category.id == Transaction.category_id)
            .join(Wallet, Wallet.id == Transaction.wallet_id)
            .where(
                Wallet.user_id == self.user_id,
                Wallet.deleted_at.is_(None),
                Category.type.in_([CategoryType.debt, CategoryType.loan]),
                Transaction.parent_id.is_(None),
            )
            .group_by(Category.type)
        ).all()
        by_type = {row[0]: int(row[1] or 0) for row in rows}
        return {
            "total_debt": by_type.get(CategoryType.debt, 0),
            "total_loan": by_type.get(CategoryType.loan, 0),
        }

    def monthly_by_category(self, wallet_id: str, period: Period) -> list[dict[str, object]]:
        rows = self.session.execute(
            select(
                Category.id,
                Category.name,
                Category.type,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.wallet_id == wallet_id,
                Transaction.date.between(period.start_at, period.end_at),
            )
            .group_by(Category.id, Category.name, Category.type)
            .order_by(func.sum(Transaction.amount).desc())
        ).all()
        return [
            {
                "category_id": row.id,
                "name": row.name,
                "type": row.type.value,
                "total": int(row.total or 0),
                "count": int(row.count or 0),
            }
            for row in rows
        ]

    def wallet_summary(
        self, wallet: Wallet, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_now().date()
        period = month_period(today.year, today.month)
        month_txns = TransactionService(self.session, self.user_id).list(
            TransactionFilters(wallet_id=wallet.id, period=period)
        )
        return {
            "wallet": {
                "id": wallet.id,
                "name": wallet.name,
                "type": wallet.type,
                "balance": wallet.balance,
                "target": wallet.target,
                "threshold": wallet.threshold,
            },
            "month": period.slug,
            "totals": self.totals(month_txns),
            "categories": self.monthly_by_category(wallet.id, period),
            "outstanding": self.outstanding_totals(),
        }


class NotificationService:
    LOW_BALANCE_INSTRUCTIONS = (
        "Write a push notification telling the user their wallet balance is at or "
        "below their alert threshold. Keep it casual and encouraging. Reply with "
        'JSON only, no other text: {"title": "...", "description": "..."}'
    )

    def __init__(
        self,
        session: Session,
        user_id: Optional[str] = None,
        language_model: Optional[LanguageModelClient] = None,
        push_client: Optional[PushClient] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.language_model = language_model
        self.push_client = push_client

    def list(self) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, notification_id: str) -> Notification:
        require_object_id(notification_id, "notification")
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise NotFound("Notification not found or unauthorized access")
        return notification

    def mark_read(self, notification_id: str, is_read: bool) -> Notification:
        notification = self.get(notification_id)

        def _mark(session: Session) -> Notification:
            notification.is_read = is_read
            session.flush()
            return notification

        return with_transaction(self.session, _mark)

    def notify_low_balance(self, wallet_id: str) -> Optional[Notification]:
        """Best effort: failures are logged and never reach the caller."""
        try:
            wallet = self.session.get(Wallet, wallet_id)
            if wallet is None or wallet.balance > wallet.threshold:
                end_reads(self.session)
                return None
            user = self.session.get(User, wallet.user_id)
            end_reads(self.session)
            title, description = self._compose(wallet)
            notification = with_transaction(
                self.session, self._store, wallet.user_id, title, description
            )
            logger.info(
                f"low_balance_notified: wallet_id={wallet.id} "
                f"balance={wallet.balance} threshold={wallet.threshold}"
            )
            if user is not None and user.push_token and self.push_client is not None:
                self.push_client.send(
                    user.push_token,
                    title,
                    description,
                    {"notification_id": notification.id},
                )
            return notification
        except Exception:
            logger.exception(f"low_balance_notification_failed: wallet_id={wallet_id}")
            return None

    def _compose(self, wallet: Wallet) -> tuple[str, str]:
        fallback = (
            f"Low balance on {wallet.name}",
            f"Your balance is {wallet.balance}, at or below your alert threshold "
            f"of {wallet.threshold}. Keep going, you've got this!",
        )
        if self.language_model is None:
            return fallback
        try:
            reply = self.language_model.generate(
                self.LOW_BALANCE_INSTRUCTIONS,
                f"Threshold: {wallet.threshold}. Current balance: {wallet.balance}.",
            )
            data = parse_json_object(reply)
        except ExternalServiceError as exc:
            logger.warning(f"low_balance_compose_fallback: wallet_id={wallet.id} error={exc}")
            return fallback
        title = str(data.get("title") or "").strip()[:200]
        description = str(data.get("description") or "").strip()
        if not title or not description:
            return fallback
        return title, description

    @staticmethod
    def _store(
        session: Session, user_id: str, title: str, description: str
    ) -> Notification:
        notification = Notification(
            user_id=user_id, title=title, description=description, is_read=False
        )
        session.add(notification)
        session.flush()
        return notification


class WalletService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Wallet]:
        stmt = (
            select(Wallet)
            .where(Wallet.user_id == self.user_id, Wallet.deleted_at.is_(None))
            .order_by(Wallet.created_at.asc(), Wallet.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, wallet_id: str) -> Wallet:
        return owned_wallet(self.session, self.user_id, wallet_id)

    def create(self, data: WalletIn) -> Wallet:
        def _create(session: Session) -> Wallet:
            wallet = Wallet(
                user_id=self.user_id,
                name=data.name.strip(),
                description=data.description,
                type=data.type.strip(),
                balance=data.balance,
                target=data.target,
                threshold=data.threshold,
            )
            session.add(wallet)
            session.flush()
            return wallet

        return with_transaction(self.session, _create)

    def update(self, wallet_id: str, data: WalletUpdateIn) -> Wallet:
        owned_wallet(self.session, self.user_id, wallet_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        def _update(session: Session) -> Wallet:
            wallet = owned_wallet(session, self.user_id, wallet_id, lock=True)
            for field, value in changes.items():
                setattr(wallet, field, value.strip() if isinstance(value, str) else value)
            session.flush()
            if "balance" in changes:
                logger.info(f"wallet_balance_set: id={wallet.id} balance={wallet.balance}")
            return wallet

        return with_transaction(self.session, _update)

    def delete(self, wallet_id: str) -> None:
        wallet = owned_wallet(self.session, self.user_id, wallet_id)

        def _delete(session: Session) -> None:
            wallet.deleted_at = datetime.utcnow()
            session.flush()

        with_transaction(self.session, _delete)


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: str) -> Category:
        return owned_category(self.session, self.user_id, category_id)

    def _find_duplicate(
        self, name: str, kind: CategoryType, exclude_id: Optional[str] = None
    ) -> Optional[Category]:
        stmt = select(Category).where(
            Category.user_id == self.user_id,
            Category.type == kind,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt)

    def _in_use(self, category_id: str) -> bool:
        count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category_id
            )
        ).scalar_one()
        return int(count or 0) > 0

    def create(self, data: CategoryIn) -> Category:
        if self._find_duplicate(data.name, data.type):
            raise ValidationError("Category with this name already exists")

        def _create(session: Session) -> Category:
            category = Category(
                user_id=self.user_id, name=data.name.strip(), type=data.type
            )
            session.add(category)
            session.flush()
            return category

        return with_transaction(self.session, _create)

    def update(self, category_id: str, data: CategoryIn) -> Category:
        category = self.get(category_id)
        if category.type != data.type and self._in_use(category.id):
            raise ValidationError(
                "Cannot change the type of a category that has transactions"
            )
        if self._find_duplicate(data.name, data.type, exclude_id=category.id):
            raise ValidationError("Category with this name already exists")

        def _update(session: Session) -> Category:
            category.name = data.name.strip()
            category.type = data.type
            session.flush()
            return category

        return with_transaction(self.session, _update)

    def delete(self, category_id: str) -> None:
        category = self.get(category_id)
        if self._in_use(category.id):
            raise ValidationError("Cannot delete a category that has transactions")

        def _delete(session: Session) -> None:
            session.delete(category)
            session.flush()

        with_transaction(self.session, _delete)

    def ensure_defaults(self, session: Session) -> list[Category]:
        """Add any missing default category inside the caller's unit."""
        existing = {
            (c.type, c.name.lower())
            for c in session.scalars(
                select(Category).where(Category.user_id == self.user_id)
            ).all()
        }
        created: list[Category] = []
        for name, kind in DEFAULT_CATEGORIES:
            if (kind, name.lower()) in existing:
                continue
            category = Category(user_id=self.user_id, name=name, type=kind)
            session.add(category)
            created.append(category)
        session.flush()
        return created


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: RegisterIn) -> User:
        if self.session.scalar(select(User).where(User.username == data.username)):
            raise ValidationError("Username already exists")
        if self.session.scalar(select(User).where(User.email == data.email)):
            raise ValidationError("Email already exists")
        hashed = hash_password(data.password)

        def _register(session: Session) -> User:
            user = User(
                name=data.name.strip(),
                username=data.username,
                email=data.email,
                password=hashed,
                status=UserStatus.active,
            )
            session.add(user)
            session.flush()
            CategoryService(session, user.id).ensure_defaults(session)
            return user

        user = with_transaction(self.session, _register)
        logger.info(f"user_registered: id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        identifier = data.email.strip().lower()
        user = self.session.scalar(
            select(User).where(or_(User.email == identifier, User.username == identifier))
        )
        if not user or not check_password(data.password, user.password):
            raise Unauthorized("Invalid email or password")
        return user

    def get(self, user_id: str) -> User:
        require_object_id(user_id, "user")
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def update_profile(self, user_id: str, data: ProfileUpdateIn) -> User:
        user = self.get(user_id)

        def _update(session: Session) -> User:
            user.push_token = data.push_token or None
            session.flush()
            return user

        return with_transaction(self.session, _update)


class PaymentService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[str] = None,
        gateway: Optional[PaymentGatewayClient] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.gateway = gateway

    def create_invoice(self) -> Payment:
        user = self.session.get(User, self.user_id) if self.user_id else None
        if not user:
            raise Unauthorized("Unauthorized")
        if self.gateway is None:
            raise ExternalServiceError("Payment gateway is not configured")
        settings = get_settings()
        end_reads(self.session)

        # the row is only written once the gateway has issued the invoice
        payment_id = new_object_id()
        payment_url = self.gateway.create_invoice(
            external_id=payment_id,
            amount=settings.premium_price,
            description=settings.premium_description,
            payer_email=user.email,
            customer={
                "reference_id": user.id,
                "email": user.email,
                "given_names": user.name,
            },
        )

        def _create(session: Session) -> Payment:
            payment = Payment(
                id=payment_id,
                user_id=user.id,
                amount=settings.premium_price,
                status=PaymentStatus.pending,
                payment_url=payment_url,
            )
            session.add(payment)
            session.flush()
            return payment

        payment = with_transaction(self.session, _create)
        logger.info(f"payment_invoice_created: id={payment.id} user_id={user.id}")
        return payment

    def confirm(self, data: PaymentWebhookIn) -> Optional[Payment]:
        status = data.data.status.upper()
        reference_id = require_object_id(data.data.reference_id, "reference")
        payment = self.session.get(Payment, reference_id)
        if not payment:
            raise NotFound("Payment not found")

        if status == "SUCCEEDED":

            def _succeed(session: Session) -> Payment:
                payment.status = PaymentStatus.success
                payment.paid_at = datetime.utcnow()
                user = session.get(User, payment.user_id)
                if user is None:
                    raise NotFound("User not found")
                user.status = UserStatus.premium
                session.flush()
                return payment

            result = with_transaction(self.session, _succeed)
        elif status in {"FAILED", "EXPIRED"}:

            def _fail(session: Session) -> Payment:
                payment.status = PaymentStatus.failed
                session.flush()
                return payment

            result = with_transaction(self.session, _fail)
        else:
            logger.info(f"payment_webhook_ignored: id={payment.id} status={status}")
            return None

        logger.info(f"payment_confirmed: id={payment.id} status={status}")
        return result
