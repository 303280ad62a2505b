"""
Engine configuration from environment variables
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


@dataclass
class EngineSettings:
    """Runtime settings; every field maps to one environment variable"""
    database_url: str = "sqlite+aiosqlite:///./automation_engine.db"
    workflows_dir: Optional[str] = None
    scheduler_poll_interval: float = 5.0
    scheduler_batch_size: int = 100
    scheduler_lease_seconds: float = 300.0
    dispatch_max_attempts: int = 5
    retry_initial_delay: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_delay: float = 60.0
    message_transport: str = "mock"
    whatsapp_api_base: str = "https://graph.facebook.com/v18.0"
    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_access_token: Optional[str] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "EngineSettings":
        """Read settings from the environment, loading .env first"""
        if dotenv:
            load_dotenv()

        defaults = cls()
        settings = cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            workflows_dir=os.getenv("WORKFLOWS_DIR") or None,
            scheduler_poll_interval=_env_float("SCHEDULER_POLL_INTERVAL", defaults.scheduler_poll_interval),
            scheduler_batch_size=_env_int("SCHEDULER_BATCH_SIZE", defaults.scheduler_batch_size),
            scheduler_lease_seconds=_env_float("SCHEDULER_LEASE_SECONDS", defaults.scheduler_lease_seconds),
            dispatch_max_attempts=_env_int("DISPATCH_MAX_ATTEMPTS", defaults.dispatch_max_attempts),
            retry_initial_delay=_env_float("RETRY_INITIAL_DELAY", defaults.retry_initial_delay),
            retry_backoff_factor=_env_float("RETRY_BACKOFF_FACTOR", defaults.retry_backoff_factor),
            retry_max_delay=_env_float("RETRY_MAX_DELAY", defaults.retry_max_delay),
            message_transport=os.getenv("MESSAGE_TRANSPORT", defaults.message_transport).lower(),
            whatsapp_api_base=os.getenv("WHATSAPP_API_BASE", defaults.whatsapp_api_base),
            whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID") or None,
            whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN") or None,
            api_host=os.getenv("API_HOST", defaults.api_host),
            api_port=_env_int("API_PORT", defaults.api_port),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )
        if settings.message_transport not in ("mock", "whatsapp"):
            raise ValueError(f"MESSAGE_TRANSPORT must be 'mock' or 'whatsapp', got '{settings.message_transport}'")
        return settings


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )
