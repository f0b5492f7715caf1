import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from assistant import ChatService
from auth import bearer_token, issue_token, verify_token
from config import get_settings
from database import SessionLocal, is_object_id
from errors import AppError, Unauthorized, ValidationError, error_response
from gateways import (
    LanguageModelClient,
    PaymentGatewayClient,
    PushClient,
    default_language_model,
    default_payment_gateway,
    default_push_client,
)
from models import CategoryType
from periods import resolve_period
from schemas import (
    CategoryIn,
    CategoryOut,
    LoginIn,
    MessageIn,
    MessageOut,
    NotificationOut,
    NotificationUpdateIn,
    PaymentOut,
    PaymentWebhookIn,
    ProfileUpdateIn,
    RegisterIn,
    RepaymentIn,
    SettlementIn,
    TransactionIn,
    TransactionListItemOut,
    TransactionOut,
    TransactionUpdateIn,
    UserOut,
    WalletIn,
    WalletOut,
    WalletUpdateIn,
)
from services import (
    CategoryService,
    DebtService,
    NotificationService,
    PaymentService,
    SummaryService,
    TransactionFilters,
    TransactionService,
    UserService,
    WalletService,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Smart Spend Assistant")

PUBLIC_PATHS = {"/api/login", "/api/register", "/api/confirmations"}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_language_model() -> LanguageModelClient:
    return default_language_model()


def get_push_client() -> PushClient:
    return default_push_client()


def get_payment_gateway() -> PaymentGatewayClient:
    return default_payment_gateway()


def current_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not is_object_id(user_id):
        raise ValidationError("Invalid user ID")
    return user_id


def get_notifier(
    db: Session = Depends(get_db),
    language_model: LanguageModelClient = Depends(get_language_model),
    push_client: PushClient = Depends(get_push_client),
) -> NotificationService:
    return NotificationService(
        db, language_model=language_model, push_client=push_client
    )


def _error(exc: BaseException) -> JSONResponse:
    message, status = error_response(exc)
    return JSONResponse({"message": message}, status_code=status)


@app.middleware("http")
async def authenticate(request: Request, call_next):
    path = request.url.path.rstrip("/") or "/"
    if path.startswith("/api") and path not in PUBLIC_PATHS:
        try:
            token = bearer_token(request.headers.get("Authorization"))
            request.state.user_id = verify_token(token)
        except AppError as exc:
            return _error(exc)
    return await call_next(request)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return _error(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    return _error(exc)


def _dump(schema, obj) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


def _dump_all(schema, items) -> list[dict]:
    return [_dump(schema, item) for item in items]


@app.post("/api/register", status_code=201)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    user = UserService(db).register(data)
    return {"message": "User registered successfully", "data": _dump(UserOut, user)}


@app.post("/api/login")
def login(data: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data)
    logging.info(f"user_login: id={user.id}")
    return {"message": "Login successful", "access_token": issue_token(user.id)}


@app.get("/api/profile")
def get_profile(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    user = UserService(db).get(user_id)
    return {"message": "Profile retrieved successfully", "data": _dump(UserOut, user)}


@app.patch("/api/profile")
def update_profile(
    data: ProfileUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    user = UserService(db).update_profile(user_id, data)
    return {"message": "Profile updated successfully", "data": _dump(UserOut, user)}


@app.get("/api/wallets")
def list_wallets(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    wallets = WalletService(db, user_id).list_all()
    return {
        "message": "Wallets retrieved successfully",
        "data": _dump_all(WalletOut, wallets),
    }


@app.post("/api/wallets", status_code=201)
def create_wallet(
    data: WalletIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    wallet = WalletService(db, user_id).create(data)
    return {"message": "Wallet created successfully", "data": _dump(WalletOut, wallet)}


@app.get("/api/wallets/{wallet_id}")
def get_wallet(
    wallet_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    wallet = WalletService(db, user_id).get(wallet_id)
    return {"message": "Wallet retrieved successfully", "data": _dump(WalletOut, wallet)}


@app.put("/api/wallets/{wallet_id}")
def update_wallet(
    wallet_id: str,
    data: WalletUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    wallet = WalletService(db, user_id).update(wallet_id, data)
    return {"message": "Wallet updated successfully", "data": _dump(WalletOut, wallet)}


@app.delete("/api/wallets/{wallet_id}")
def delete_wallet(
    wallet_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    WalletService(db, user_id).delete(wallet_id)
    return {"message": "Wallet deleted successfully"}


@app.get("/api/wallets/{wallet_id}/transactions")
def wallet_transactions(
    wallet_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    wallet = WalletService(db, user_id).get(wallet_id)
    items = TransactionService(db, user_id).list(TransactionFilters(wallet_id=wallet.id))
    return {
        "message": "Wallet transactions retrieved successfully",
        "wallet": _dump(WalletOut, wallet),
        "summary": SummaryService.totals(items),
        "data": _dump_all(TransactionListItemOut, items),
        "total": len(items),
    }


@app.get("/api/wallets/{wallet_id}/summary")
def wallet_summary(
    wallet_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    wallet = WalletService(db, user_id).get(wallet_id)
    summary = SummaryService(db, user_id).wallet_summary(wallet)
    return {"message": "Wallet summary retrieved successfully", "data": summary}


@app.get("/api/categories")
def list_categories(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    categories = CategoryService(db, user_id).list_all()
    return {
        "message": "Categories retrieved successfully",
        "data": _dump_all(CategoryOut, categories),
    }


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).create(data)
    return {
        "message": "Category created successfully",
        "data": _dump(CategoryOut, category),
    }


@app.get("/api/categories/{category_id}")
def get_category(
    category_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).get(category_id)
    return {
        "message": "Category retrieved successfully",
        "data": _dump(CategoryOut, category),
    }


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: str,
    data: CategoryIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).update(category_id, data)
    return {
        "message": "Category updated successfully",
        "data": _dump(CategoryOut, category),
    }


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    CategoryService(db, user_id).delete(category_id)
    return {"message": "Category deleted successfully"}


@app.get("/api/transactions")
def list_transactions(
    wallet_id: Optional[str] = Query(default=None),
    category_id: Optional[str] = Query(default=None),
    parent_id: Optional[str] = Query(default=None),
    month: Optional[str] = Query(default=None),
    year: Optional[str] = Query(default=None),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(
        wallet_id=wallet_id,
        category_id=category_id,
        parent_id=parent_id,
        period=resolve_period(month, year),
    )
    items = TransactionService(db, user_id).list(filters)
    summary = SummaryService(db, user_id)
    return {
        "message": "Transactions retrieved successfully",
        "summary": {**summary.totals(items), **summary.outstanding_totals()},
        "data": _dump_all(TransactionListItemOut, items),
        "total": len(items),
        "filter": {"month": month, "year": year},
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    txn = TransactionService(db, user_id, notifier=notifier).create(data)
    return {
        "message": "Transaction created successfully",
        "data": _dump(TransactionOut, txn),
    }


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, user_id)
    txn = service.get(transaction_id)
    data = _dump(TransactionListItemOut, txn)
    data["wallet"] = _dump(WalletOut, txn.wallet)
    data["parent"] = _dump(TransactionOut, txn.parent) if txn.parent else None
    data["children"] = _dump_all(TransactionOut, service.children(txn.id))
    return {"message": "Transaction retrieved successfully", "data": data}


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    data: TransactionUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user_id).update(transaction_id, data)
    return {
        "message": "Transaction updated successfully",
        "data": _dump(TransactionOut, txn),
    }


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    TransactionService(db, user_id).delete(transaction_id)
    return {"message": "Transaction and its repayments deleted successfully"}


@app.post("/api/transactions/{transaction_id}/repayments", status_code=201)
def settle_transaction(
    transaction_id: str,
    data: SettlementIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    txn = DebtService(db, user_id, notifier=notifier).settle(transaction_id, data)
    return {"message": "Payment recorded successfully", "data": _dump(TransactionOut, txn)}


@app.post("/api/debts/repayments", status_code=201)
def repay_debt(
    data: RepaymentIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    txn = DebtService(db, user_id, notifier=notifier).repay(data)
    return {
        "message": "Debt repayment created successfully",
        "data": _dump(TransactionOut, txn),
    }


@app.post("/api/loans/collections", status_code=201)
def collect_loan(
    data: RepaymentIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    txn = DebtService(db, user_id, notifier=notifier).collect(data)
    return {
        "message": "Debt collection created successfully",
        "data": _dump(TransactionOut, txn),
    }


@app.get("/api/debts")
def list_debts(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    items = DebtService(db, user_id).outstanding(CategoryType.debt)
    return {
        "message": "Debts retrieved successfully",
        "data": _dump_all(TransactionListItemOut, items),
    }


@app.get("/api/loans")
def list_loans(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    items = DebtService(db, user_id).outstanding(CategoryType.loan)
    return {
        "message": "Loans retrieved successfully",
        "data": _dump_all(TransactionListItemOut, items),
    }


@app.get("/api/messages")
def list_messages(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    language_model: LanguageModelClient = Depends(get_language_model),
):
    messages = ChatService(db, user_id, language_model).history(limit, offset)
    return {
        "message": "Messages retrieved successfully",
        "data": _dump_all(MessageOut, messages),
        "pagination": {"limit": limit, "offset": offset},
    }


@app.post("/api/messages", status_code=201)
def post_message(
    data: MessageIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    language_model: LanguageModelClient = Depends(get_language_model),
    notifier: NotificationService = Depends(get_notifier),
):
    result = ChatService(db, user_id, language_model, notifier=notifier).post_message(
        data
    )
    return {
        "message": "Message created successfully",
        "data": {
            "user_message": _dump(MessageOut, result.user_message),
            "reply": _dump(MessageOut, result.reply),
            "transaction": _dump(TransactionOut, result.transaction)
            if result.transaction
            else None,
        },
    }


@app.get("/api/notifications")
def list_notifications(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    items = NotificationService(db, user_id).list()
    return {
        "message": "Notifications retrieved successfully",
        "data": _dump_all(NotificationOut, items),
    }


@app.get("/api/notifications/{notification_id}")
def get_notification(
    notification_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    notification = NotificationService(db, user_id).get(notification_id)
    return {
        "message": "Notification retrieved successfully",
        "data": _dump(NotificationOut, notification),
    }


@app.patch("/api/notifications/{notification_id}")
def update_notification(
    notification_id: str,
    data: NotificationUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    notification = NotificationService(db, user_id).mark_read(
        notification_id, data.is_read
    )
    return {
        "message": "Notification updated successfully",
        "data": _dump(NotificationOut, notification),
    }


@app.post("/api/payments", status_code=201)
def create_payment(
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
):
    payment = PaymentService(db, user_id, gateway=gateway).create_invoice()
    return {"message": "Payment created successfully", "data": _dump(PaymentOut, payment)}


@app.post("/api/confirmations")
def confirm_payment(
    data: PaymentWebhookIn,
    db: Session = Depends(get_db),
    x_callback_token: Optional[str] = Header(default=None),
):
    expected = get_settings().xendit_callback_token
    if expected and x_callback_token != expected:
        raise Unauthorized("Invalid callback token")
    payment = PaymentService(db).confirm(data)
    return {
        "message": "Payment confirmation processed",
        "data": _dump(PaymentOut, payment) if payment else None,
    }
