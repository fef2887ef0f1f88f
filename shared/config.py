import os
from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv(".venv/.env")
load_dotenv()


def require_env(var_name: str, default: Optional[str] = None) -> str:
    val = os.getenv(var_name)
    if not val:
        if default is None:
            raise ValueError(f"Missing required environment variable: {var_name}")
        val = default
    return val


def _env_bool(var_name: str, default: bool = False) -> bool:
    val = os.getenv(var_name)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # server
    host: str = "0.0.0.0"
    port: int = 3000
    env: str = "development"

    # auth
    jwt_secret: str = "change-me"
    jwt_expires_in_hours: int = 24
    api_key: str = "change-me"

    # outbound delivery
    rate_limit_per_minute: int = 60
    delivery_concurrency: int = 5
    delivery_max_attempts: int = 3
    delivery_backoff_seconds: float = 2.0
    completed_retention_seconds: int = 3600
    completed_retention_count: int = 1000
    failed_retention_seconds: int = 86400

    # whatsapp session
    whatsapp_auth_path: str = "./data/auth"
    whatsapp_chat_suffix: str = "@c.us"
    whatsapp_reconnect_delay: float = 5.0
    whatsapp_max_reconnects: int = 5
    green_api_url: str = "https://api.green-api.com"
    green_api_id_instance: Optional[str] = None
    green_api_token_instance: Optional[str] = None

    # inference
    inference_api_key: Optional[str] = None
    inference_api_url: Optional[str] = None
    inference_model: str = "gpt-4o-mini"

    # finance backend
    backend_api_url: str = "http://localhost:7000"
    mint_user_tokens: bool = False

    # storage
    store_backend: Literal["firestore", "memory"] = "firestore"
    secrets_dir: str = ".secrets"

    # conversation
    default_country_code: str = "62"
    pending_selection_ttl: int = 300
    verification_code_ttl: int = 600


def load_settings() -> Settings:
    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        env=os.getenv("APP_ENV", "development"),
        jwt_secret=require_env("JWT_SECRET", "your-secret-key-change-in-production"),
        jwt_expires_in_hours=int(os.getenv("JWT_EXPIRES_IN_HOURS", "24")),
        api_key=require_env("API_KEY", "your-api-key-change-in-production"),
        rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "60")),
        delivery_concurrency=int(os.getenv("DELIVERY_CONCURRENCY", "5")),
        delivery_max_attempts=int(os.getenv("DELIVERY_MAX_ATTEMPTS", "3")),
        delivery_backoff_seconds=float(os.getenv("DELIVERY_BACKOFF_SECONDS", "2")),
        whatsapp_auth_path=os.getenv("WHATSAPP_AUTH_PATH", "./data/auth"),
        whatsapp_chat_suffix=os.getenv("WHATSAPP_CHAT_SUFFIX", "@c.us"),
        whatsapp_reconnect_delay=float(os.getenv("WHATSAPP_RECONNECT_DELAY", "5")),
        whatsapp_max_reconnects=int(os.getenv("WHATSAPP_MAX_RECONNECTS", "5")),
        green_api_url=require_env("GREEN_API_URL", "https://api.green-api.com"),
        green_api_id_instance=os.getenv("GREEN_API_ID_INSTANCE") or None,
        green_api_token_instance=os.getenv("GREEN_API_TOKEN_INSTANCE") or None,
        inference_api_key=os.getenv("INFERENCE_API_KEY") or os.getenv("OPENAI_API_KEY") or None,
        inference_api_url=os.getenv("INFERENCE_API_URL") or None,
        inference_model=os.getenv("INFERENCE_MODEL", "gpt-4o-mini"),
        backend_api_url=require_env("BACKEND_API_URL", "http://localhost:7000"),
        mint_user_tokens=_env_bool("MINT_USER_TOKENS"),
        store_backend=os.getenv("STORE_BACKEND", "firestore"),
        secrets_dir=os.getenv("SECRETS_DIR", ".secrets"),
        default_country_code=os.getenv("DEFAULT_COUNTRY_CODE", "62"),
        pending_selection_ttl=int(os.getenv("PENDING_SELECTION_TTL", "300")),
        verification_code_ttl=int(os.getenv("VERIFICATION_CODE_TTL", "600")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
