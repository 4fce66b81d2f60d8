import asyncio
import logging
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from core.errors import DeliveryError, TransientError, UnknownJobError
from core.generator import ContentGenerator, NothingToShare
from core.handlers import CategoryHandler, DataSources, Thresholds, build_handler_table, fit_prompt
from core.job_catalog import JOB_DEFINITIONS, index_jobs
from core.job_types import (
    Failed,
    JobCategory,
    JobDefinition,
    JobRuntimeState,
    SchedulerState,
    Sent,
    Skipped,
)
from core.quota import COOLDOWN_ACTIVE, QuotaController
from core.sources import GoalsSource, MemorySource, PortfolioSource, ProjectsSource
from core.state_store import StateStore
from core.timing import (
    day_key,
    in_quiet_hours,
    is_weekend,
    minute_of_day,
    minutes_to_time,
    pick_target_minute,
)
from core.update_queue import UpdateQueue
from interfaces.base import DeliveryAdapter

logger = logging.getLogger("core.scheduler")

NowFn = Callable[[], datetime]

NOTHING_TO_SHARE = "nothing worth sharing"


class ProactiveScheduler:
    """
    Decides when each catalog job runs and drives its execution pipeline.

    Every tick: roll the day over if needed, stand down during quiet hours,
    then dispatch each pending job whose target minute has arrived. A job is
    marked fired the moment it is dispatched, whatever the outcome, so it is
    attempted at most once per calendar day. Executions run as independent
    tasks; their completions are applied through a single UpdateQueue.
    """

    def __init__(
        self,
        *,
        handlers: Dict[JobCategory, CategoryHandler],
        generator: ContentGenerator,
        delivery: DeliveryAdapter,
        store: StateStore,
        quota: Optional[QuotaController] = None,
        definitions: Optional[List[JobDefinition]] = None,
        quiet_hours: Tuple[int, int] = (22 * 60, 7 * 60),
        tick_seconds: float = 60.0,
        max_prompt_chars: int = 6000,
        tz: Optional[ZoneInfo] = None,
        now_fn: Optional[NowFn] = None,
        rng: Optional[random.Random] = None,
    ):
        self.definitions = index_jobs(definitions if definitions is not None else JOB_DEFINITIONS)
        self.handlers = handlers
        self.generator = generator
        self.delivery = delivery
        self.store = store
        self.quota = quota or QuotaController()
        self.quiet_hours = quiet_hours
        self.tick_seconds = tick_seconds
        self.max_prompt_chars = max_prompt_chars
        self.tz = tz
        self._now_fn = now_fn
        self._rng = rng

        self.jobs: Dict[str, JobRuntimeState] = {job_id: JobRuntimeState() for job_id in self.definitions}
        self.current_date: Optional[str] = None
        self.running = False
        self._persisted: Optional[SchedulerState] = None
        self._loaded = False
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._updates = UpdateQueue()

    # ── Clock ─────────────────────────────────────────────────

    def now(self) -> datetime:
        if self._now_fn is not None:
            return self._now_fn()
        return datetime.now(self.tz) if self.tz else datetime.now()

    def is_quiet_hours(self, now: Optional[datetime] = None) -> bool:
        return in_quiet_hours(minute_of_day(now or self.now()), self.quiet_hours)

    @property
    def daily_message_count(self) -> int:
        return self.quota.sent_today

    # ── Lifecycle ─────────────────────────────────────────────

    def load(self):
        """Read the persisted snapshot once, before the first rollover."""
        self._persisted = self.store.load()
        self._loaded = True

    async def start(self):
        """Start the tick loop."""
        if self.running:
            return
        self.running = True
        if not self._loaded:
            self.load()
        self.rollover(self.now())

        logger.info(f"Proactive scheduler started with {len(self.definitions)} jobs.")
        for job_id, definition in self.definitions.items():
            state = self.jobs[job_id]
            mode = "conditional" if definition.conditional else "always"
            logger.info(f"  {job_id} → {minutes_to_time(state.target_minute)} ({mode})")

        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self):
        """Halt the tick loop. In-flight executions finish on their own adapter timeouts."""
        self.running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.drain()
        self._save()
        logger.info("Proactive scheduler stopped.")

    async def drain(self):
        """Wait for every dispatched execution to complete."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_loop(self):
        while self.running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.tick_seconds)

    # ── Tick ──────────────────────────────────────────────────

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Evaluate every job once. Returns the ids dispatched on this tick."""
        now = now or self.now()
        self.rollover(now)

        if self.is_quiet_hours(now):
            return []

        current = minute_of_day(now)
        weekend = is_weekend(now)
        dispatched = []
        for job_id, definition in self.definitions.items():
            state = self.jobs[job_id]
            if state.fired_today:
                continue
            if definition.weekdays_only and weekend:
                continue
            if state.target_minute is None or current < state.target_minute:
                continue
            self._mark_fired(job_id, now)
            self._dispatch(definition)
            dispatched.append(job_id)
        return dispatched

    def _mark_fired(self, job_id: str, now: datetime):
        self.jobs[job_id].fired_today = True
        self._save(now)

    def _dispatch(self, definition: JobDefinition, idempotency_key: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(self.execute(definition, idempotency_key))
        self._inflight.add(task)

        def _done(t: asyncio.Task):
            self._inflight.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Execution of {definition.id} crashed: {t.exception()}")

        task.add_done_callback(_done)
        return task

    # ── Day rollover ──────────────────────────────────────────

    def rollover(self, now: datetime) -> bool:
        """Reset per-day state when the calendar day changes. Idempotent within a day."""
        today = day_key(now)
        if self.current_date == today:
            return False
        if not self._loaded:
            self.load()

        restored = self._persisted if self._persisted and self._persisted.date == today else None
        self._persisted = None
        self.current_date = today

        self.quota.reset(restored.daily_message_count if restored else 0)
        for job_id, definition in self.definitions.items():
            saved = restored.jobs.get(job_id) if restored else None
            state = saved.model_copy() if saved else JobRuntimeState()
            if state.target_minute is not None and not definition.window.contains(state.target_minute):
                logger.warning(f"Discarding out-of-window target for {job_id}: {state.target_minute}")
                state.target_minute = None
            self.jobs[job_id] = state

        self._assign_targets()
        self._save(now)

        if restored:
            logger.info(f"Resumed state for {today} ({self.daily_message_count} messages sent)")
        else:
            logger.info(f"New day: {today}")
        return True

    def _assign_targets(self):
        """Randomize target minutes only for jobs that have none for today."""
        for job_id, definition in self.definitions.items():
            state = self.jobs[job_id]
            if state.target_minute is None:
                state.target_minute = pick_target_minute(definition.window.start, definition.window.end, self._rng)

    # ── Execution pipeline ────────────────────────────────────

    async def execute(self, definition: JobDefinition, idempotency_key: Optional[str] = None):
        """Run one job through the gates, generation and delivery. Never raises."""
        started = self.now()
        day = self.current_date or day_key(started)
        key = idempotency_key or f"proactive:{day}:{definition.id}"
        logger.info(f"Executing: {definition.id}")

        skip_reason = self.quota.acquire(started)
        if skip_reason:
            outcome = Skipped(reason=skip_reason, at=started)
            await self._updates.submit(self._complete, definition, outcome, day, False)
            return outcome

        try:
            outcome = await self._run_pipeline(definition, started, key)
        except TransientError as e:
            outcome = Failed(error=str(e), at=self.now())
        except Exception as e:
            logger.error(f"Unexpected error executing {definition.id}: {e}", exc_info=True)
            outcome = Failed(error=f"{type(e).__name__}: {e}", at=self.now())

        await self._updates.submit(self._complete, definition, outcome, day, True)
        return outcome

    async def _run_pipeline(self, definition: JobDefinition, now: datetime, key: str):
        handler = self.handlers[definition.category]
        evaluation = handler.collect(definition, now)
        if definition.conditional and not evaluation.items:
            return Skipped(reason=evaluation.skip_reason or "preconditions not met", at=now)

        prompt = fit_prompt(handler.build_prompt(definition, evaluation, now), self.max_prompt_chars)
        result = await self.generator.generate(prompt)
        if isinstance(result, NothingToShare):
            return Skipped(reason=NOTHING_TO_SHARE, at=self.now())

        # Another job may have failed while this one was generating
        if self.quota.cooldown_active(self.now()):
            return Skipped(reason=COOLDOWN_ACTIVE, at=self.now())

        delivered = await self.delivery.deliver(result.text, definition.notification_tag, key)
        if not delivered:
            raise DeliveryError("delivery channel rejected the message")
        return Sent(message_length=len(result.text), at=self.now())

    def _complete(self, definition: JobDefinition, outcome, day: str, reserved: bool):
        """Apply a finished execution to shared state. Runs on the UpdateQueue."""
        same_day = day == self.current_date

        if reserved and same_day:
            if isinstance(outcome, Sent):
                self.quota.commit_sent()
            else:
                self.quota.release()
        if isinstance(outcome, Failed):
            self.quota.trigger_cooldown(outcome.at)

        if same_day:
            self.jobs[definition.id].last_result = outcome
            self._save()
        else:
            logger.info(f"{definition.id} finished after rollover; not recorded for {self.current_date}")

        if isinstance(outcome, Sent):
            logger.info(f"{definition.id}: sent ({self.daily_message_count}/{self.quota.daily_cap} today)")
        elif isinstance(outcome, Skipped):
            logger.info(f"{definition.id}: skipped, {outcome.reason}")
        else:
            logger.warning(f"{definition.id}: failed, {outcome.error}")

        self.store.log_run(definition.id, outcome.model_dump(mode="json", by_alias=True))

    # ── State ─────────────────────────────────────────────────

    def snapshot(self) -> SchedulerState:
        return SchedulerState(
            date=self.current_date,
            daily_message_count=self.daily_message_count,
            jobs={job_id: state.model_copy() for job_id, state in self.jobs.items()},
        )

    def _save(self, now: Optional[datetime] = None):
        if self.current_date is None:
            return
        self.store.save(self.snapshot(), saved_at=now or self.now())

    # ── Operational surface ───────────────────────────────────

    async def trigger_job(self, job_id: str):
        """
        Force one job's pipeline now, outside its window.

        The job's target minute is left alone; it is marked fired so the
        scheduled run does not send a second message today.
        """
        definition = self.definitions.get(job_id)
        if definition is None:
            raise UnknownJobError(job_id)

        now = self.now()
        self.rollover(now)
        self._mark_fired(job_id, now)
        key = f"proactive:{self.current_date}:{job_id}:manual:{now.strftime('%H%M%S')}"
        logger.info(f"Manual trigger for {job_id}")
        return await self.execute(definition, key)

    def get_status(self) -> dict:
        now = self.now()
        job_list = []
        for job_id, definition in self.definitions.items():
            state = self.jobs[job_id]
            job_list.append({
                "id": job_id,
                "category": definition.category.value,
                "description": definition.description,
                "targetTime": minutes_to_time(state.target_minute) if state.target_minute is not None else None,
                "window": str(definition.window),
                "conditional": definition.conditional,
                "weekdaysOnly": definition.weekdays_only,
                "firedToday": state.fired_today,
                "lastResult": state.last_result.model_dump(mode="json", by_alias=True) if state.last_result else None,
            })
        cooldown_until = self.quota.cooldown_until
        return {
            "running": self.running,
            "today": self.current_date or day_key(now),
            "dailyMessageCount": self.daily_message_count,
            "dailyCap": self.quota.daily_cap,
            "isQuietHours": self.is_quiet_hours(now),
            "cooldownActive": self.quota.cooldown_active(now),
            "cooldownUntil": cooldown_until.isoformat() if cooldown_until else None,
            "jobs": job_list,
        }


def build_scheduler(settings) -> ProactiveScheduler:
    """Wire a scheduler from application settings."""
    from core.delivery import build_delivery

    sources = DataSources(
        portfolio=PortfolioSource(settings.data_dir),
        goals=GoalsSource(settings.data_dir),
        projects=ProjectsSource(settings.projects_dir),
        memory=MemorySource(settings.memory_dir, settings.data_dir),
    )
    thresholds = Thresholds(
        market_move_pct=settings.market_move_threshold_pct,
        goal_stall_days=settings.goal_stall_days,
        goal_near_complete_pct=settings.goal_near_complete_pct,
        project_stale_days=settings.project_stale_days,
    )
    return ProactiveScheduler(
        handlers=build_handler_table(sources, thresholds),
        generator=ContentGenerator(
            settings.generator_command,
            timeout=settings.generator_timeout_seconds,
            max_chars=settings.max_message_chars,
        ),
        delivery=build_delivery(settings),
        store=StateStore(settings.state_file),
        quota=QuotaController(settings.daily_cap, settings.cooldown_minutes),
        quiet_hours=settings.quiet_window,
        tick_seconds=settings.tick_seconds,
        max_prompt_chars=settings.max_prompt_chars,
        tz=ZoneInfo(settings.timezone) if settings.timezone else None,
    )
