"""
config/settings.py — Centralized configuration via Pydantic Settings.

All env vars are loaded from .env and validated at startup.
"""

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Configure basic logging level globally
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from core.timing import parse_quiet_hours


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Telegram delivery ─────────────────────────────────────
    telegram_bot_token: str = Field(default="", description="Telegram bot token from @BotFather")
    allowed_chat_ids: str = Field(
        default="", description="Comma-separated list of Telegram chat IDs; the first receives notifications"
    )

    # ── Data sources (read-only) ─────────────────────────────
    data_dir: Path = Field(default=Path("data"), description="Portfolio, tickers, news and goals caches")
    projects_dir: Path = Field(default=Path("projects"), description="One sub-directory per project")
    memory_dir: Path = Field(default=Path("memory"), description="Holds thesis.md")

    # ── Scheduler state ──────────────────────────────────────
    state_file: Path = Field(default=Path("data/proactive/scheduler-state.json"))
    tick_seconds: float = Field(default=60.0, gt=0)
    quiet_hours: str = Field(default="22:00-07:00", description="HH:MM-HH:MM, may wrap midnight")
    timezone: Optional[str] = Field(default=None, description="IANA zone for wall-clock decisions")

    # ── Quota & cooldown ─────────────────────────────────────
    daily_cap: int = Field(default=8, ge=0)
    cooldown_minutes: float = Field(default=10.0, ge=0)

    # ── Content generation ───────────────────────────────────
    generator_command: str = Field(default="claude", description="CLI invoked as `<cmd> -p <prompt>`")
    generator_timeout_seconds: float = Field(default=180.0, gt=0)
    max_message_chars: int = Field(default=1000, gt=0)
    max_prompt_chars: int = Field(default=6000, gt=0)

    # ── Precondition thresholds ──────────────────────────────
    market_move_threshold_pct: float = Field(default=3.0, ge=0)
    goal_stall_days: int = Field(default=3, ge=0)
    goal_near_complete_pct: float = Field(default=75.0, ge=0, le=100)
    project_stale_days: int = Field(default=7, ge=0)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("quiet_hours")
    @classmethod
    def _validate_quiet_hours(cls, value: str) -> str:
        parse_quiet_hours(value)
        return value

    @property
    def allowed_chat_id_list(self) -> list[int]:
        """Parse comma-separated chat IDs into a list of ints."""
        if not self.allowed_chat_ids:
            return []
        return [int(cid.strip()) for cid in self.allowed_chat_ids.split(",") if cid.strip()]

    @property
    def telegram_configured(self) -> bool:
        """True if Telegram delivery has both a token and a destination chat."""
        return bool(self.telegram_bot_token and self.allowed_chat_id_list)

    @property
    def quiet_window(self):
        return parse_quiet_hours(self.quiet_hours)


# Singleton — import this across the app
settings = Settings()
