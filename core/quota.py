import logging
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger("core.quota")

CAP_REACHED = "daily cap reached"
COOLDOWN_ACTIVE = "cooldown active"


class QuotaController:
    """
    Owner of the global daily message counter and the shared cooldown timestamp.

    Both are scheduler-wide resources, not per-job. A job that passes the
    gate holds a reservation until its execution completes, so jobs running
    concurrently can never push the sent count past the cap.

    All methods are synchronous and only called from the event loop thread;
    completion events reach this object through the scheduler's UpdateQueue.
    """

    def __init__(self, daily_cap: int = 8, cooldown_minutes: float = 10.0):
        self.daily_cap = daily_cap
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self.sent_today = 0
        self.reserved = 0
        self.cooldown_until: Optional[datetime] = None

    def reset(self, sent_today: int = 0):
        """Start a new day (or resume one) with the given sent count."""
        self.sent_today = sent_today
        self.reserved = 0

    def cooldown_active(self, now: datetime) -> bool:
        return self.cooldown_until is not None and now < self.cooldown_until

    def acquire(self, now: datetime) -> Optional[str]:
        """
        Quota gate then cooldown gate.

        Returns a skip reason, or None after reserving a slot for the caller.
        """
        if self.sent_today + self.reserved >= self.daily_cap:
            return CAP_REACHED
        if self.cooldown_active(now):
            return COOLDOWN_ACTIVE
        self.reserved += 1
        return None

    def release(self):
        """Give back a reservation for an execution that did not send."""
        if self.reserved > 0:
            self.reserved -= 1

    def commit_sent(self):
        """Turn a reservation into a counted send."""
        self.release()
        self.sent_today += 1

    def trigger_cooldown(self, now: datetime):
        until = now + self.cooldown
        if self.cooldown_until is None or until > self.cooldown_until:
            self.cooldown_until = until
        logger.warning(f"🧊 Cooldown active until {self.cooldown_until.isoformat(timespec='seconds')}")
