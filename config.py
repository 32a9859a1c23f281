"""
Runtime settings for Instaqueue.
Values come from the environment (and a local .env file, if present).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str, default: str = "0") -> bool:
    return str(os.getenv(name, default)).strip().lower() in TRUTHY


class Settings(BaseModel):
    database_path: str = "instaqueue.db"
    accounts_file: str = "accounts.json"
    account_map_json: Optional[str] = None
    graph_api_version: str = "v21.0"

    # Scheduler
    tick_interval: float = 60.0
    due_limit: int = 25
    run_scheduler: bool = True

    # Publisher
    poll_interval: float = 3.0
    poll_timeout: float = 180.0
    request_timeout: float = 60.0

    # Ingress
    default_timezone: str = "UTC"
    upload_dir: str = "uploads"
    app_base_url: Optional[str] = None
    admin_api_key: Optional[str] = None
    allow_open_admin: bool = False
    port: int = 5000

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from environment variables, then apply overrides."""
        values = {
            "database_path": os.getenv("DATABASE_PATH", "instaqueue.db"),
            "accounts_file": os.getenv("ACCOUNTS_FILE", "accounts.json"),
            "account_map_json": os.getenv("IG_ACCOUNT_MAP_JSON") or os.getenv("IG_ACCOUNT_MAP"),
            "graph_api_version": os.getenv("GRAPH_API_VERSION", "v21.0"),
            "tick_interval": float(os.getenv("TICK_INTERVAL", "60")),
            "due_limit": int(os.getenv("DUE_LIMIT", "25")),
            "run_scheduler": _env_flag("RUN_SCHEDULER", "1"),
            "poll_interval": float(os.getenv("POLL_INTERVAL", "3")),
            "poll_timeout": float(os.getenv("POLL_TIMEOUT", "180")),
            "request_timeout": float(os.getenv("REQUEST_TIMEOUT", "60")),
            "default_timezone": os.getenv("DEFAULT_TIMEZONE", "UTC"),
            "upload_dir": os.getenv("UPLOAD_DIR", "uploads"),
            "app_base_url": os.getenv("APP_BASE_URL") or None,
            "admin_api_key": os.getenv("ADMIN_API_KEY") or None,
            "allow_open_admin": _env_flag("ALLOW_OPEN_ADMIN"),
            "port": int(os.getenv("PORT", "5000")),
        }
        values.update(overrides)
        return cls(**values)
