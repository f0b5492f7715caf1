import datetime as dt
from datetime import date, datetime
from typing import Annotated, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from models import CategoryType, ChatStatus, PaymentStatus, UserStatus

ObjectIdStr = Annotated[str, Field(pattern=r"^[0-9a-fA-F]{24}$")]


class TransactionIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = ""
    amount: int = Field(..., gt=0)
    date: date
    category_id: ObjectIdStr
    wallet_id: ObjectIdStr
    parent_id: Optional[ObjectIdStr] = None
    message_id: Optional[ObjectIdStr] = None


class TransactionUpdateIn(TransactionIn):
    remaining_amount: Optional[int] = Field(default=None, ge=0)


class RepaymentIn(BaseModel):
    description: str = ""
    amount: int = Field(..., gt=0)
    wallet_id: ObjectIdStr
    parent_id: ObjectIdStr
    date: Optional[dt.date] = None


class SettlementIn(BaseModel):
    description: str = ""
    amount: int = Field(..., gt=0)
    wallet_id: ObjectIdStr
    date: Optional[dt.date] = None


class WalletIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: str = ""
    type: str = Field(..., min_length=2, max_length=30)
    balance: int = 0
    target: int = 0
    threshold: int = 0


class WalletUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = None
    type: Optional[str] = Field(default=None, min_length=2, max_length=30)
    balance: Optional[int] = None
    target: Optional[int] = None
    threshold: Optional[int] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType


class MessageIn(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)
    chat_status: ChatStatus
    wallet_id: ObjectIdStr = Field(
        validation_alias=AliasChoices("wallet_id", "Wallet_id")
    )


class NotificationUpdateIn(BaseModel):
    is_read: bool = Field(validation_alias=AliasChoices("is_read", "isRead"))


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    username: str = Field(..., min_length=3, max_length=20, pattern=r"^[a-zA-Z0-9_]+$")
    email: str = Field(..., max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator("username", "email")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.lower()


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProfileUpdateIn(BaseModel):
    push_token: Optional[str] = Field(default=None, max_length=255)


class PaymentWebhookData(BaseModel):
    reference_id: str
    status: str


class PaymentWebhookIn(BaseModel):
    data: PaymentWebhookData


class TransactionProposal(BaseModel):
    """What the language model returns for an ``input`` chat message."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = ""
    amount: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("amount", "ammount")
    )
    date: Optional[dt.date] = None
    category_name: Optional[str] = None
    category_type: Optional[str] = None
    reply_text: str = Field(
        default="", validation_alias=AliasChoices("reply_text", "ai_response")
    )
    error: Optional[str] = None

    @field_validator("date", "name", "category_name", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def has_transaction(self) -> bool:
        return bool(
            not self.error
            and self.name
            and self.amount
            and self.amount > 0
            and self.category_name
        )


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserOut(_Out):
    id: str
    name: str
    username: str
    email: str
    status: UserStatus
    trial_due_date: Optional[datetime] = None
    push_token: Optional[str] = None
    created_at: datetime


class WalletOut(_Out):
    id: str
    user_id: str
    name: str
    description: str
    type: str
    balance: int
    target: int
    threshold: int
    created_at: datetime
    updated_at: datetime


class CategoryOut(_Out):
    id: str
    user_id: str
    name: str
    type: CategoryType


class TransactionOut(_Out):
    id: str
    name: str
    description: str
    amount: int
    date: datetime
    category_id: str
    wallet_id: str
    parent_id: Optional[str] = None
    remaining_amount: int
    message_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TransactionListItemOut(TransactionOut):
    category: Optional[CategoryOut] = None


class MessageOut(_Out):
    id: str
    text: str
    chat_status: ChatStatus
    user_id: Optional[str] = None
    room_id: str
    wallet_id: Optional[str] = None
    created_at: datetime


class NotificationOut(_Out):
    id: str
    title: str
    description: str
    is_read: bool
    created_at: datetime


class PaymentOut(_Out):
    id: str
    amount: int
    status: PaymentStatus
    paid_at: Optional[datetime] = None
    payment_url: Optional[str] = None
