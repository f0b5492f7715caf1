import json

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from assistant import ChatService, resolve_category
from database import Base
from errors import CategoryNotFound, ExternalServiceError, NotFound, ValidationError
from gateways import LanguageModelClient
from models import (
    Category,
    CategoryType,
    ChatStatus,
    Message,
    Transaction,
    User,
    UserStatus,
    Wallet,
)
from schemas import MessageIn
from services import CategoryService


class ScriptedModel(LanguageModelClient):
    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def generate(self, instructions, input_text):
        self.calls.append((instructions, input_text))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session):
    user = User(
        name="Tari",
        username="tari",
        email="tari@example.com",
        password="x",
        status=UserStatus.active,
    )
    session.add(user)
    session.flush()
    CategoryService(session, user.id).ensure_defaults(session)
    wallet = Wallet(user_id=user.id, name="Cash", type="cash", balance=1_000)
    session.add(wallet)
    session.commit()
    return user, wallet


def post(session, user, wallet, model, text, status=ChatStatus.input):
    return ChatService(session, user.id, model).post_message(
        MessageIn(text=text, chat_status=status, wallet_id=wallet.id)
    )


def test_input_message_records_transaction_linked_to_reply() -> None:
    session = make_session()
    user, wallet = seed(session)
    model = ScriptedModel(
        {
            "name": "Electricity bill",
            "description": "June electricity",
            "ammount": 150,
            "date": "2025-06-05",
            "category_name": "bills",
            "category_type": "expense",
            "ai_response": "Got it, recorded your electricity bill!",
        }
    )

    result = post(session, user, wallet, model, "paid electricity 150 on june 5")

    assert result.user_message.user_id == user.id
    assert result.reply.user_id is None
    assert result.reply.text == "Got it, recorded your electricity bill!"
    txn = result.transaction
    assert txn.message_id == result.reply.id
    assert txn.category.name == "Bills"
    assert txn.date.date().isoformat() == "2025-06-05"
    assert session.get(Wallet, wallet.id).balance == 850
    assert "Bills (expense)" in model.calls[0][0]


def test_category_name_may_be_one_typo_away() -> None:
    session = make_session()
    user, wallet = seed(session)
    model = ScriptedModel(
        {
            "name": "Salary June",
            "amount": 5_000,
            "category_name": "Salery",
            "category_type": "income",
            "reply_text": "Nice!",
        }
    )

    result = post(session, user, wallet, model, "got my salary 5000")

    assert result.transaction.category.name == "Salary"
    assert session.get(Wallet, wallet.id).balance == 6_000


def test_unknown_category_writes_nothing() -> None:
    session = make_session()
    user, wallet = seed(session)
    model = ScriptedModel(
        {
            "name": "Gym",
            "amount": 300,
            "category_name": "Fitness",
            "category_type": "expense",
            "reply_text": "Recorded!",
        }
    )

    with pytest.raises(CategoryNotFound):
        post(session, user, wallet, model, "gym membership 300")

    assert session.scalars(select(Message)).all() == []
    assert session.scalars(select(Transaction)).all() == []
    assert session.get(Wallet, wallet.id).balance == 1_000


def test_error_proposal_only_stores_messages() -> None:
    session = make_session()
    user, wallet = seed(session)
    model = ScriptedModel(
        {"error": "Nothing to record", "reply_text": "How much was it?"}
    )

    result = post(session, user, wallet, model, "bought something")

    assert result.transaction is None
    assert result.reply.text == "How much was it?"
    assert len(session.scalars(select(Message)).all()) == 2
    assert session.scalars(select(Transaction)).all() == []


def test_model_failure_leaves_nothing_written() -> None:
    session = make_session()
    user, wallet = seed(session)

    with pytest.raises(ExternalServiceError):
        post(session, user, wallet, ScriptedModel("   "), "coffee 20")
    with pytest.raises(ExternalServiceError):
        post(session, user, wallet, ScriptedModel("sure! coffee 20"), "coffee 20")
    with pytest.raises(ExternalServiceError):
        post(
            session,
            user,
            wallet,
            ScriptedModel(ExternalServiceError("language model request failed")),
            "coffee 20",
        )

    assert session.scalars(select(Message)).all() == []


def test_ask_mode_uses_wallet_summary_and_history() -> None:
    session = make_session()
    user, wallet = seed(session)
    model = ScriptedModel("You have 1000 left.", "Still 1000.")

    first = post(session, user, wallet, model, "how much left?", ChatStatus.ask)
    post(session, user, wallet, model, "and now?", ChatStatus.ask)

    assert first.transaction is None
    assert '"balance": 1000' in model.calls[0][0]
    history_prompt = model.calls[1][1]
    assert "User: how much left?" in history_prompt
    assert "Assistant: You have 1000 left." in history_prompt
    assert history_prompt.endswith("User: and now?")
    history = ChatService(session, user.id, model).history()
    assert len(history) == 4


def test_foreign_wallet_is_not_found() -> None:
    session = make_session()
    user, wallet = seed(session)
    other = User(name="Ola", username="ola", email="ola@example.com", password="x")
    session.add(other)
    session.commit()

    with pytest.raises(NotFound):
        ChatService(session, other.id, ScriptedModel()).post_message(
            MessageIn(text="hi", chat_status=ChatStatus.ask, wallet_id=wallet.id)
        )


def test_resolve_category_reports_ambiguous_matches() -> None:
    categories = [
        Category(name="Cat", type=CategoryType.expense),
        Category(name="Car", type=CategoryType.expense),
    ]

    assert resolve_category(categories, "CAT").name == "Cat"
    with pytest.raises(ValidationError):
        resolve_category(categories, "Cap")
    with pytest.raises(CategoryNotFound):
        resolve_category(categories, "Boat")
