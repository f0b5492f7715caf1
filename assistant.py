"""Chat assistant that turns free text into ledger transactions.

``input`` messages are sent to the language model, which proposes a single
transaction; the proposal goes through the same create path as a manually
entered one. ``ask`` messages get a conversational answer grounded in the
wallet's current summary.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from database import end_reads, with_transaction
from errors import (
    CategoryNotFound,
    ExternalServiceError,
    Forbidden,
    NotFound,
    ValidationError,
)
from gateways import LanguageModelClient, parse_json_object
from models import Category, ChatStatus, Message, Room, Transaction, Wallet
from schemas import MessageIn, TransactionIn, TransactionProposal
from services import (
    CategoryService,
    NotificationService,
    SummaryService,
    TransactionService,
    local_now,
    owned_wallet,
)

logger = logging.getLogger(__name__)

INPUT_INSTRUCTIONS = """Turn the user's sentence into one financial transaction.

Pick the category from the user's existing categories: {categories}.
IMPORTANT: reply with JSON only, no other text. Example:
{{
  "name": "Electricity bill",
  "description": "Paid this month's electricity bill",
  "amount": 150000,
  "date": "<empty when no date is mentioned, otherwise YYYY-MM-DD>",
  "category_name": "<one of the existing categories>",
  "category_type": "<income, expense, debt or loan>",
  "reply_text": "<a casual confirmation that it was recorded>"
}}

If the sentence has no amount of money or nothing to name the transaction by,
reply with:
{{
  "error": "Nothing to record",
  "reply_text": "<a casual explanation of what is missing>"
}}
Write reply_text in the same language as the user."""

ASK_INSTRUCTIONS = """You are a friendly personal-finance assistant. Answer the
user's question casually and briefly, in the same language as the user.
Amounts are whole currency units. Current state of the wallet:
{summary}"""


@dataclass
class ChatResult:
    user_message: Message
    reply: Message
    transaction: Optional[Transaction] = None


def resolve_category(categories: list[Category], name: str) -> Category:
    """Match a model-proposed category name against the user's categories."""
    wanted = name.strip().lower()
    for category in categories:
        if category.name.strip().lower() == wanted:
            return category

    best_distance: Optional[int] = None
    best: list[Category] = []
    for category in categories:
        dist = int(Levenshtein.distance(wanted, category.name.strip().lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)

    if best_distance is None or best_distance > 1:
        raise CategoryNotFound("Category not found or unauthorized access")
    if len(best) > 1:
        options = ", ".join(sorted({c.name for c in best}))
        raise ValidationError(f"Category '{name}' is ambiguous; matches: {options}")
    return best[0]


class ChatService:
    def __init__(
        self,
        session: Session,
        user_id: str,
        language_model: LanguageModelClient,
        notifier: Optional[NotificationService] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.language_model = language_model
        self.notifier = notifier

    def _wallet(self, wallet_id: str) -> Wallet:
        try:
            return owned_wallet(self.session, self.user_id, wallet_id)
        except Forbidden as exc:
            raise NotFound("Wallet not found") from exc

    def room(self) -> Room:
        room = self.session.scalar(select(Room).where(Room.user_id == self.user_id))
        if room:
            return room

        def _create(session: Session) -> Room:
            created = Room(user_id=self.user_id)
            session.add(created)
            session.flush()
            return created

        return with_transaction(self.session, _create)

    def history(self, limit: int = 50, offset: int = 0) -> list[Message]:
        room = self.session.scalar(select(Room).where(Room.user_id == self.user_id))
        if not room:
            return []
        stmt = (
            select(Message)
            .where(Message.room_id == room.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def post_message(self, data: MessageIn) -> ChatResult:
        wallet = self._wallet(data.wallet_id)
        room = self.room()
        if data.chat_status == ChatStatus.input:
            return self._record(room, wallet, data)
        return self._answer(room, wallet, data)

    def _propose(self, text: str, categories: list[Category]) -> TransactionProposal:
        listing = ", ".join(f"{c.name} ({c.type.value})" for c in categories)
        reply = self.language_model.generate(
            INPUT_INSTRUCTIONS.format(categories=listing or "none"), text
        )
        try:
            return TransactionProposal.model_validate(parse_json_object(reply))
        except PydanticValidationError as exc:
            raise ExternalServiceError("AI response is not a valid transaction") from exc

    def _record(self, room: Room, wallet: Wallet, data: MessageIn) -> ChatResult:
        categories = CategoryService(self.session, self.user_id).list_all()
        end_reads(self.session)
        proposal = self._propose(data.text, categories)
        logger.info(
            f"assistant_proposal: user_id={self.user_id} "
            f"has_transaction={proposal.has_transaction} error={proposal.error}"
        )

        txns = TransactionService(self.session, self.user_id, notifier=self.notifier)
        txn_in = None
        occurred_at = None
        if proposal.has_transaction:
            category = resolve_category(categories, proposal.category_name)
            now = local_now()
            on_date = proposal.date or now.date()
            try:
                txn_in = TransactionIn(
                    name=proposal.name.strip()[:100],
                    description=proposal.description or "",
                    amount=proposal.amount,
                    date=on_date,
                    category_id=category.id,
                    wallet_id=wallet.id,
                )
            except PydanticValidationError as exc:
                raise ExternalServiceError(
                    "AI response is not a valid transaction"
                ) from exc
            txns.prepare(txn_in)
            occurred_at = datetime.combine(on_date, now.time())

        reply_text = proposal.reply_text.strip() or (
            "Recorded." if txn_in is not None else "Nothing to record."
        )
        result = with_transaction(
            self.session,
            self._store_input,
            room.id,
            wallet.id,
            data.text,
            reply_text,
            txns,
            txn_in,
            occurred_at,
        )
        if result.transaction is not None:
            txns.check_low_balance(result.transaction.wallet_id)
        return result

    def _store_input(
        self,
        session: Session,
        room_id: str,
        wallet_id: str,
        text: str,
        reply_text: str,
        txns: TransactionService,
        txn_in: Optional[TransactionIn],
        occurred_at: Optional[datetime],
    ) -> ChatResult:
        user_message, reply = self._store_pair(
            session, room_id, wallet_id, text, reply_text, ChatStatus.input
        )
        transaction = None
        if txn_in is not None:
            transaction = txns.apply_create(
                session,
                txn_in.model_copy(update={"message_id": reply.id}),
                occurred_at,
            )
        return ChatResult(user_message, reply, transaction)

    def _store_pair(
        self,
        session: Session,
        room_id: str,
        wallet_id: str,
        text: str,
        reply_text: str,
        status: ChatStatus,
    ) -> tuple[Message, Message]:
        user_message = Message(
            text=text,
            chat_status=status,
            user_id=self.user_id,
            room_id=room_id,
            wallet_id=wallet_id,
        )
        session.add(user_message)
        session.flush()
        reply = Message(
            text=reply_text,
            chat_status=status,
            user_id=None,
            room_id=room_id,
            wallet_id=wallet_id,
        )
        session.add(reply)
        session.flush()
        return user_message, reply

    def _answer(self, room: Room, wallet: Wallet, data: MessageIn) -> ChatResult:
        summary = SummaryService(self.session, self.user_id).wallet_summary(wallet)
        limit = get_settings().chat_history_limit
        recent = list(
            self.session.scalars(
                select(Message)
                .where(Message.room_id == room.id, Message.chat_status == ChatStatus.ask)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            ).all()
        )
        lines = [
            f"{'User' if m.user_id else 'Assistant'}: {m.text}" for m in reversed(recent)
        ]
        lines.append(f"User: {data.text}")
        end_reads(self.session)

        reply_text = self.language_model.generate(
            ASK_INSTRUCTIONS.format(summary=json.dumps(summary, default=str)),
            "\n".join(lines),
        ).strip()
        if not reply_text:
            raise ExternalServiceError("AI response is empty")

        def _store(session: Session) -> ChatResult:
            user_message, reply = self._store_pair(
                session, room.id, wallet.id, data.text, reply_text, ChatStatus.ask
            )
            return ChatResult(user_message, reply)

        return with_transaction(self.session, _store)
