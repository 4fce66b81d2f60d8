"""
core/handlers.py — Per-category precondition evaluation and prompt building.

Each job category maps to one handler, resolved once at startup into a
table. A handler collects the relevant population from the data sources
(``collect``) and turns it into a bounded generation prompt
(``build_prompt``). For conditional jobs an empty population is a skip.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.job_types import JobCategory, JobDefinition
from core.sources import GoalsSource, MemorySource, PortfolioSource, ProjectsSource

logger = logging.getLogger("core.handlers")

MAX_STALE_PROJECTS = 3
MAX_LISTED_POSITIONS = 10

# Headings that open the instruction part of every prompt
_INSTRUCTION_HEADINGS = ("\nTONE:", "\nDECISION:", "\nRULES:")


@dataclass
class Evaluation:
    """Relevant items for a job, plus the context the prompt needs."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    skip_reason: Optional[str] = None


@dataclass
class Thresholds:
    market_move_pct: float = 3.0
    goal_stall_days: int = 3
    goal_near_complete_pct: float = 75.0
    project_stale_days: int = 7


@dataclass
class DataSources:
    portfolio: PortfolioSource
    goals: GoalsSource
    projects: ProjectsSource
    memory: MemorySource


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def fit_prompt(prompt: str, max_chars: int) -> str:
    """
    Cap a prompt at max_chars by shortening its data section.

    The instructions and output contract at the end are kept whole; only when
    they alone exceed the budget is the prompt cut from the end.
    """
    if len(prompt) <= max_chars:
        return prompt
    starts = [i for i in (prompt.find(h) for h in _INSTRUCTION_HEADINGS) if i >= 0]
    if not starts:
        return prompt[:max_chars]
    instructions = prompt[min(starts):]
    budget = max_chars - len(instructions)
    if budget <= 0:
        return prompt[:max_chars]
    return prompt[:min(starts)][:budget] + instructions


class CategoryHandler(ABC):
    category: JobCategory

    def __init__(self, sources: DataSources, thresholds: Thresholds):
        self.sources = sources
        self.thresholds = thresholds

    @abstractmethod
    def collect(self, job: JobDefinition, now: datetime) -> Evaluation:
        """Read current data and return the relevant population."""

    @abstractmethod
    def build_prompt(self, job: JobDefinition, evaluation: Evaluation, now: datetime) -> str:
        """Compose the generation prompt from the collected population."""

    # Shared collectors

    def _stale_projects(self, now: datetime) -> List[Dict[str, Any]]:
        snapshot = self.sources.projects.snapshot()
        stale = [
            {"name": p.name, "title": p.title, "daysSinceTouch": p.days_since_touch(now)}
            for p in snapshot.projects
            if p.is_stale(now, self.thresholds.project_stale_days)
        ]
        stale.sort(key=lambda p: p["daysSinceTouch"], reverse=True)
        return stale[:MAX_STALE_PROJECTS]

    def _active_goals(self, limit: int = 5) -> List[Dict[str, Any]]:
        return [
            {"title": g.title, "category": g.category, "progress": g.progress}
            for g in self.sources.goals.snapshot().active[:limit]
        ]


# ── Brief ─────────────────────────────────────────────────────

class BriefHandler(CategoryHandler):
    category = JobCategory.BRIEF

    def collect(self, job: JobDefinition, now: datetime) -> Evaluation:
        portfolio = self.sources.portfolio.snapshot()
        return Evaluation(
            items=self._active_goals(),
            context={
                "equity": portfolio.equity,
                "cash": portfolio.cash,
                "positions": [
                    {"symbol": p.symbol, "pl": p.unrealized_pl, "changePct": round(p.change_pct, 2)}
                    for p in portfolio.positions[:8]
                ],
                "staleProjects": self._stale_projects(now),
            },
        )

    def build_prompt(self, job: JobDefinition, evaluation: Evaluation, now: datetime) -> str:
        morning = job.id.startswith("morning")
        label = "morning brief" if morning else "evening brief"
        focus = (
            "what matters today and one thing to start with"
            if morning
            else "how the day went and what to line up for tomorrow"
        )
        ctx = evaluation.context
        return f"""Write a short {label} message for the user.

DATE: {now.strftime("%A, %B %d, %Y")}

PORTFOLIO:
Equity: ${ctx.get("equity") or "?"} | Cash: ${ctx.get("cash") or "?"}
Positions: {json.dumps(ctx.get("positions", []))}

ACTIVE GOALS:
{_dump(evaluation.items)}

PROJECTS NOT TOUCHED RECENTLY:
{_dump(ctx.get("staleProjects", []))}

RULES:
- Focus on {focus}
- Use *bold* and _italic_ sparingly, no markdown headers
- Keep under 1000 characters
- No greetings, no sign-off filler

Return ONLY the message text, nothing else."""


# ── Market ────────────────────────────────────────────────────

_MARKET_LABELS = {
    "market-open": "pre-market opening snapshot",
    "market-midday": "midday market alert (significant move detected)",
    "market-close": "end-of-day market recap",
}


class MarketHandler(CategoryHandler):
    category = JobCategory.MARKET

    def collect(self, job: JobDefinition, now: datetime) -> Evaluation:
        portfolio = self.sources.portfolio.snapshot()
        threshold = self.thresholds.market_move_pct
        movers = [
            {"symbol": p.symbol, "changePct": round(p.change_pct, 2), "pl": p.unrealized_pl}
            for p in portfolio.positions
            if abs(p.change_pct) > threshold
        ][:MAX_LISTED_POSITIONS]

        spy = portfolio.ticker("SPY")
        spy_line = None
        if spy and spy.price is not None:
            change = spy.change_percent or 0.0
            spy_line = f"SPY: ${spy.price:.2f} ({'+' if change >= 0 else ''}{change:.2f}%)"

        return Evaluation(
            items=movers,
            context={
                "equity": portfolio.equity,
                "cash": portfolio.cash,
                "positions": [
                    {
                        "symbol": p.symbol,
                        "qty": p.qty,
                        "avgEntry": p.avg_entry,
                        "current": p.current,
                        "unrealizedPL": p.unrealized_pl,
                        "changePct": f"{p.change_pct:.2f}%",
                    }
                    for p in portfolio.positions[:MAX_LISTED_POSITIONS]
                ],
                "topTickers": [
                    {"symbol": t.symbol, "score": round(t.ranking, 1), "price": t.price}
                    for t in portfolio.top_tickers()
                ],
                "spy": spy_line,
                "headlines": portfolio.recent_headlines(now),
            },
            skip_reason=f"no position moved more than {threshold:g}%",
        )

    def build_prompt(self, job: JobDefinition, evaluation: Evaluation, now: datetime) -> str:
        ctx = evaluation.context
        label = _MARKET_LABELS.get(job.id, "market update")
        news = "\n".join(f"- {title}" for title in ctx.get("headlines", [])) or "- none"
        return f"""Generate a concise {label} for the user.

MARKET CONTEXT:
{ctx.get("spy") or "SPY: unavailable"}
TODAY'S NEWS:
{news}

PORTFOLIO:
Equity: ${ctx.get("equity") or "?"} | Cash: ${ctx.get("cash") or "?"}
Positions: {json.dumps(ctx.get("positions", []))}

BIG MOVERS: {json.dumps(evaluation.items)}
TOP TICKERS BY SCORE: {json.dumps(ctx.get("topTickers", []))}

TONE: a sharp friend who manages their money, not a financial newsletter.

RULES:
- Use *bold* and _italic_, keep under 1000 characters
- Mention SPY and its direction up front when available
- Include actual numbers (P&L, %, $)
- Midday alert: what moved, why, and whether to act
- Market close: how the day went and any moves for tomorrow
- No greetings, no "happy trading" filler; end with one concrete insight

Return ONLY the message text, nothing else."""


# ── Goals ─────────────────────────────────────────────────────

class GoalsHandler(CategoryHandler):
    category = JobCategory.GOALS

    def collect(self, job: JobDefinition, now: datetime) -> Evaluation:
        active = self.sources.goals.snapshot().active
        stall_days = self.thresholds.goal_stall_days
        near_pct = self.thresholds.goal_near_complete_pct

        items = []
        seen = set()
        for goal in active:
            if goal.is_stalled(now, stall_days):
                items.append({
                    "title": goal.title,
                    "category": goal.category,
                    "progress": goal.progress,
                    "daysSinceUpdate": goal.days_since_update(now),
                    "type": "stalled",
                })
                seen.add(goal.id if goal.id is not None else goal.title)

        for goal in active:
            key = goal.id if goal.id is not None else goal.title
            if key in seen:
                continue
            if near_pct <= goal.progress < 100:
                items.append({
                    "title": goal.title,
                    "category": goal.category,
                    "progress": goal.progress,
                    "type": "near-complete",
                })

        return Evaluation(items=items, skip_reason="no goals need attention")

    def build_prompt(self, job: JobDefinition, evaluation: Evaluation, now: datetime) -> str:
        return f"""Write a short nudge about the user's goals.

GOALS NEEDING ATTENTION:
{_dump(evaluation.items)}

TONE: a friend who cares about their progress, not a productivity app.

RULES:
- Use *bold* and _italic_, keep under 500 characters
- Near-complete goals: acknowledge the work done, one push left
- Stalled goals: mention it honestly, suggest one tiny next step
- No "You've got this!" type filler

Return ONLY the message text."""


# ── Projects ──────────────────────────────────────────────────

class ProjectsHandler(CategoryHandler):
    category = JobCategory.PROJECTS

    def collect(self, job: JobDefinition, now: datetime) -> Evaluation:
        if not self.sources.projects.projects_dir.is_dir():
            return Evaluation(skip_reason="no projects directory")
        return Evaluation(items=self._stale_projects(now), skip_reason="no stale projects")

    def build_prompt(self, job: JobDefinition, evaluation: Evaluation, now: datetime) -> str:
        return f"""Generate a project nudge. These projects haven't been touched in {self.thresholds.project_stale_days}+ days:

{_dump(evaluation.items)}

RULES:
- Use *bold*, _italic_ and bullet points, keep under 500 characters
- Ask whether each should be resumed, archived, or deprioritized
- Be helpful, not guilt-inducing
- No markdown headers, no [links]

Return ONLY the message text, nothing else."""


# ── Ad-hoc ────────────────────────────────────────────────────

class AdhocHandler(CategoryHandler):
    category = JobCategory.ADHOC

    def collect(self, job: JobDefinition, now: datetime) -> Evaluation:
        memory = self.sources.memory.snapshot()
        positions = [
            {"symbol": p.symbol, "pl": p.unrealized_pl}
            for p in self.sources.portfolio.snapshot().positions[:5]
        ]
        goals = self._active_goals()

        items: List[Dict[str, Any]] = [{"goal": g} for g in goals] + [{"position": p} for p in positions]
        if memory.thesis:
            items.append({"thesis": memory.thesis[:300]})
        items.extend({"belief": b} for b in memory.beliefs[:5])

        return Evaluation(
            items=items,
            context={
                "goals": goals,
                "positions": positions,
                "thesis": memory.thesis[:300],
                "beliefs": memory.beliefs[:5],
            },
            skip_reason="nothing to review",
        )

    def build_prompt(self, job: JobDefinition, evaluation: Evaluation, now: datetime) -> str:
        ctx = evaluation.context
        return f"""You are a proactive assistant. Decide if there's anything time-sensitive or valuable to share with the user RIGHT NOW.

CONTEXT:
- Date: {now.strftime("%A, %B %d, %Y")}
- Current thesis: {ctx.get("thesis") or "Not set"}
- Active goals: {json.dumps(ctx.get("goals", []))}
- Portfolio positions: {json.dumps(ctx.get("positions", []))}
- Core beliefs: {json.dumps(ctx.get("beliefs", []))}

DECISION:
If there is something genuinely time-sensitive, actionable, or insightful to share, write a concise message.
If there is NOTHING worth interrupting the user for, respond with exactly: SKIP

RULES:
- Don't manufacture urgency
- Use *bold*, _italic_ and bullet points, keep under 500 characters
- No markdown headers, no [links]

Return ONLY the message text or "SKIP"."""


HANDLER_CLASSES = (BriefHandler, MarketHandler, GoalsHandler, ProjectsHandler, AdhocHandler)


def build_handler_table(sources: DataSources, thresholds: Thresholds) -> Dict[JobCategory, CategoryHandler]:
    """Resolve one handler per job category."""
    table = {cls.category: cls(sources, thresholds) for cls in HANDLER_CLASSES}
    missing = set(JobCategory) - set(table)
    if missing:
        raise ValueError(f"No handler for categories: {sorted(c.value for c in missing)}")
    return table
