from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings
from database import is_object_id
from errors import Unauthorized, ValidationError


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="access-token")


def issue_token(user_id: str) -> str:
    return _serializer().dumps({"_id": user_id})


def verify_token(token: str) -> str:
    settings = get_settings()
    try:
        data = _serializer().loads(token, max_age=settings.token_max_age_secs)
    except SignatureExpired as exc:
        raise Unauthorized("Token expired") from exc
    except BadSignature as exc:
        raise Unauthorized("Unauthorized") from exc

    user_id = data.get("_id") if isinstance(data, dict) else None
    if not is_object_id(user_id):
        raise Unauthorized("Unauthorized")
    return user_id


def bearer_token(header: Optional[str]) -> str:
    if not header or not header.startswith("Bearer "):
        raise Unauthorized("Unauthorized")
    return header[len("Bearer "):].strip()


def hash_password(password: str) -> str:
    raw = password.encode("utf-8")
    if len(raw) > 72:
        raise ValidationError("Password must not exceed 72 bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=10)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False
