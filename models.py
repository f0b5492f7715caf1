from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base, new_object_id


class CategoryType(str, Enum):
    income = "income"
    expense = "expense"
    debt = "debt"
    loan = "loan"


class ChatStatus(str, Enum):
    input = "input"
    ask = "ask"


class UserStatus(str, Enum):
    free = "free"
    active = "active"
    premium = "premium"


class PaymentStatus(str, Enum):
    pending = "pending"
    success = "success"
    failed = "failed"


def _id_column(**kwargs) -> Mapped[str]:
    return mapped_column(String(24), primary_key=True, default=new_object_id, **kwargs)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = _id_column()
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    username: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    password: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[UserStatus] = mapped_column(
        SAEnum(UserStatus), nullable=False, default=UserStatus.free
    )
    trial_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    push_token: Mapped[Optional[str]] = mapped_column(String(255))

    wallets: Mapped[list["Wallet"]] = relationship("Wallet", back_populates="user")


class Wallet(Base, TimestampMixin):
    __tablename__ = "wallets"

    id: Mapped[str] = _id_column()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    user: Mapped["User"] = relationship("User", back_populates="wallets")

    __table_args__ = (Index("ix_wallets_user", "user_id"),)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = _id_column()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)

    __table_args__ = (
        Index("ix_categories_user_type", "user_id", "type"),
        Index("ix_categories_user_name", "user_id", "name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = _id_column()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    category_id: Mapped[str] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    wallet_id: Mapped[str] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(ForeignKey("transactions.id"))
    remaining_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message_id: Mapped[Optional[str]] = mapped_column(ForeignKey("messages.id"))

    category: Mapped["Category"] = relationship("Category")
    wallet: Mapped["Wallet"] = relationship("Wallet")
    parent: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", remote_side="Transaction.id"
    )

    __table_args__ = (
        Index("ix_transactions_wallet_date", "wallet_id", "date"),
        Index("ix_transactions_category_date", "category_id", "date"),
        Index("ix_transactions_parent", "parent_id"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "remaining_amount >= 0", name="ck_transactions_remaining_non_negative"
        ),
    )


class Room(Base, TimestampMixin):
    __tablename__ = "rooms"

    id: Mapped[str] = _id_column()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", name="uq_room_user"),)


class Message(Base, TimestampMixin):
    __tablename__ = "messages"

    id: Mapped[str] = _id_column()
    text: Mapped[str] = mapped_column(Text, nullable=False)
    chat_status: Mapped[ChatStatus] = mapped_column(SAEnum(ChatStatus), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"))
    room_id: Mapped[str] = mapped_column(ForeignKey("rooms.id"), nullable=False)
    wallet_id: Mapped[Optional[str]] = mapped_column(ForeignKey("wallets.id"))

    __table_args__ = (Index("ix_messages_room_created", "room_id", "created_at"),)


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[str] = _id_column()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("ix_notifications_user_created", "user_id", "created_at"),)


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id: Mapped[str] = _id_column()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus), nullable=False, default=PaymentStatus.pending
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    payment_url: Mapped[Optional[str]] = mapped_column(Text)
