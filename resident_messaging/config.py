# resident_messaging/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import EmailStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Database ---
    database_url: str = "sqlite:///resident_messaging/portal_dev.db"

    # --- Security / JWT ---
    jwt_secret: str = "dev-secret-please-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # --- CORS ---
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:5174"]

    # --- Logging ---
    log_level: str = "INFO"

    # --- Email ---
    email_backend: str = "local"
    sendgrid_api_key: Optional[str] = None
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"
    email_host: Optional[str] = None
    email_port: int = 587
    email_use_tls: bool = True
    email_host_user: Optional[str] = None
    email_host_password: Optional[str] = None
    email_from_address: Optional[EmailStr] = None
    email_from_name: str = "Sandpiper Run HOA"
    email_reply_to: Optional[EmailStr] = None
    email_output_dir: str = "uploads/emails"
    email_subject_prefix: str = "SPR-HOA: "

    # --- Messaging ---
    community_name: str = "Sandpiper Run HOA"
    sender_display_name: str = "SPR Admin"
    system_sender_label: str = "System"
    buildings: List[str] = ["A", "B", "C", "D"]
    admin_user_ids: List[int] = []
    admin_role_names: List[str] = ["ADMIN", "SYSADMIN"]
    # Emergency broadcasts sort ahead of everything, including unread notices.
    emergency_overrides_read_state: bool = True
    resident_search_min_length: int = 2
    resident_search_limit: int = 25
    sent_message_log_limit: int = 10


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
