import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_secs: int,
        log_level: str,
        openai_api_key: str,
        openai_model: str,
        openai_base_url: str,
        push_url: str,
        xendit_api_key: str,
        xendit_callback_token: str,
        premium_price: int,
        premium_description: str,
        http_timeout_secs: float,
        chat_history_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_secs = token_max_age_secs
        self.log_level = log_level
        self.openai_api_key = openai_api_key
        self.openai_model = openai_model
        self.openai_base_url = openai_base_url
        self.push_url = push_url
        self.xendit_api_key = xendit_api_key
        self.xendit_callback_token = xendit_callback_token
        self.premium_price = premium_price
        self.premium_description = premium_description
        self.http_timeout_secs = http_timeout_secs
        self.chat_history_limit = chat_history_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SSA_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("SSA_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'smart_spend.db'}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("SSA_TIMEZONE", "Asia/Jakarta"),
        secret_key=os.getenv(
            "SSA_SECRET_KEY",
            "3f6c1b0e9d5a47e2b8c4f1a6d0e9b7c25a8f3e1d6c4b2a0f9e7d5c3b1a8f6e4d",
        ),
        token_max_age_secs=int(os.getenv("SSA_TOKEN_MAX_AGE_SECS", str(7 * 86400))),
        log_level=os.getenv("SSA_LOG_LEVEL", "INFO"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("SSA_OPENAI_MODEL", "gpt-4.1-nano"),
        openai_base_url=os.getenv("SSA_OPENAI_BASE_URL", "https://api.openai.com/v1"),
        push_url=os.getenv("SSA_PUSH_URL", "https://exp.host/--/api/v2/push/send"),
        xendit_api_key=os.getenv("XENDIT_API_KEY", ""),
        xendit_callback_token=os.getenv("XENDIT_CALLBACK_TOKEN", ""),
        premium_price=int(os.getenv("SSA_PREMIUM_PRICE", "50000")),
        premium_description=os.getenv(
            "SSA_PREMIUM_DESCRIPTION", "Smart Spend Assistant (SSA) - Premium"
        ),
        http_timeout_secs=float(os.getenv("SSA_HTTP_TIMEOUT_SECS", "30")),
        chat_history_limit=int(os.getenv("SSA_CHAT_HISTORY_LIMIT", "10")),
    )
