"""
core/sources.py — Read-only snapshots of the data the jobs look at.

Every source exposes a single ``snapshot()`` call. Missing or malformed
files produce an empty snapshot rather than an error; the scheduler never
writes to any of them.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger("core.sources")

SECONDS_PER_DAY = 24 * 60 * 60


def read_json_safe(path: Path) -> Any:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read {path}: {e}")
    return None


def read_text_safe(path: Path) -> str:
    try:
        if path.exists():
            return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not read {path}: {e}")
    return ""


def _as_dict(raw: Any) -> dict:
    return raw if isinstance(raw, dict) else {}


def _validate_list(model, raw: Any) -> list:
    items = []
    for entry in raw if isinstance(raw, list) else []:
        try:
            items.append(model.model_validate(entry))
        except ValidationError as e:
            logger.debug(f"Skipping malformed {model.__name__}: {e}")
    return items


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Portfolio ─────────────────────────────────────────────────

class Position(_Record):
    symbol: str
    qty: Optional[float] = None
    avg_entry: Optional[float] = Field(None, alias="avg_entry_price")
    current: Optional[float] = Field(None, alias="current_price")
    unrealized_pl: Optional[float] = None
    unrealized_plpc: Optional[float] = None
    change_today: Optional[float] = None

    @property
    def change_pct(self) -> float:
        """Signed move in percent (the caches store fractions)."""
        fraction = self.unrealized_plpc or self.change_today or 0.0
        return fraction * 100


class Ticker(_Record):
    symbol: str
    score: Optional[float] = None
    effective_score: Optional[float] = Field(None, alias="effectiveScore")
    price: Optional[float] = Field(None, validation_alias=AliasChoices("price", "lastPrice"))
    change_percent: Optional[float] = Field(None, alias="changePercent")

    @property
    def ranking(self) -> float:
        if self.effective_score is not None:
            return self.effective_score
        return self.score or 0.0


class Headline(_Record):
    title: str
    published_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("publishedAt", "date"))


class PortfolioSnapshot(BaseModel):
    equity: Optional[float] = None
    cash: Optional[float] = None
    positions: List[Position] = Field(default_factory=list)
    tickers: List[Ticker] = Field(default_factory=list)
    headlines: List[Headline] = Field(default_factory=list)

    def top_tickers(self, limit: int = 5) -> List[Ticker]:
        return sorted(self.tickers, key=lambda t: t.ranking, reverse=True)[:limit]

    def ticker(self, symbol: str) -> Optional[Ticker]:
        return next((t for t in self.tickers if t.symbol == symbol), None)

    def recent_headlines(self, now: datetime, limit: int = 3) -> List[str]:
        cutoff = now.timestamp() - SECONDS_PER_DAY
        recent = [h.title for h in self.headlines if h.published_at and h.published_at.timestamp() > cutoff]
        return recent[:limit]


class PortfolioSource:
    """Brokerage, ticker-score and news caches under the data directory."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def snapshot(self) -> PortfolioSnapshot:
        broker = _as_dict(read_json_safe(self.data_dir / "alpaca-cache.json"))
        tickers = _as_dict(read_json_safe(self.data_dir / "tickers-cache.json"))
        news = _as_dict(read_json_safe(self.data_dir / "news-cache.json"))
        account = _as_dict(broker.get("account"))

        def _number(value) -> Optional[float]:
            try:
                return float(value)
            except (TypeError, ValueError):
                return None

        return PortfolioSnapshot(
            equity=_number(account.get("equity")),
            cash=_number(account.get("cash")),
            positions=_validate_list(Position, broker.get("positions")),
            tickers=_validate_list(Ticker, tickers.get("tickers")),
            headlines=_validate_list(Headline, news.get("articles")),
        )


# ── Goals ─────────────────────────────────────────────────────

class Goal(_Record):
    id: Optional[Union[str, int]] = None
    title: str = "Untitled goal"
    category: Optional[str] = None
    status: str = ""
    progress: float = 0.0
    last_updated: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _coalesce(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key, default in (("progress", 0.0), ("status", ""), ("title", "Untitled goal")):
            if data.get(key) is None:
                data[key] = default
        # First timestamp that is actually set wins
        data["last_updated"] = next(
            (data[key] for key in ("last_updated", "lastUpdated", "updatedAt", "createdAt") if data.get(key)),
            None,
        )
        return data

    @property
    def is_active(self) -> bool:
        return self.status in ("active", "in_progress")

    def days_since_update(self, now: datetime) -> Optional[int]:
        if self.last_updated is None:
            return None
        return int((now.timestamp() - self.last_updated.timestamp()) // SECONDS_PER_DAY)

    def is_stalled(self, now: datetime, days: float) -> bool:
        # A goal with no timestamp at all has never moved
        if self.last_updated is None:
            return True
        return now.timestamp() - self.last_updated.timestamp() > days * SECONDS_PER_DAY


class GoalsSnapshot(BaseModel):
    goals: List[Goal] = Field(default_factory=list)

    @property
    def active(self) -> List[Goal]:
        return [g for g in self.goals if g.is_active]


class GoalsSource:
    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / "goals.json"

    def snapshot(self) -> GoalsSnapshot:
        raw = read_json_safe(self.path)
        if isinstance(raw, dict):
            raw = raw.get("goals")
        return GoalsSnapshot(goals=_validate_list(Goal, raw))


# ── Projects ──────────────────────────────────────────────────

_TITLE_RE = re.compile(r"^#\s+(.+)", re.MULTILINE)


class ProjectInfo(BaseModel):
    name: str
    title: str
    modified_at: float

    def days_since_touch(self, now: datetime) -> int:
        return int((now.timestamp() - self.modified_at) // SECONDS_PER_DAY)

    def is_stale(self, now: datetime, days: float) -> bool:
        return now.timestamp() - self.modified_at > days * SECONDS_PER_DAY


class ProjectsSnapshot(BaseModel):
    exists: bool = False
    projects: List[ProjectInfo] = Field(default_factory=list)


class ProjectsSource:
    """One sub-directory per project; its PROJECT.md mtime is the last-touched time."""

    def __init__(self, projects_dir: Path):
        self.projects_dir = Path(projects_dir)

    def snapshot(self) -> ProjectsSnapshot:
        if not self.projects_dir.is_dir():
            return ProjectsSnapshot(exists=False)

        projects = []
        try:
            for entry in sorted(self.projects_dir.iterdir()):
                project_md = entry / "PROJECT.md"
                if not entry.is_dir() or not project_md.exists():
                    continue
                head = read_text_safe(project_md)[:500]
                match = _TITLE_RE.search(head)
                projects.append(ProjectInfo(
                    name=entry.name,
                    title=match.group(1).strip() if match else entry.name,
                    modified_at=project_md.stat().st_mtime,
                ))
        except OSError as e:
            logger.warning(f"Could not scan projects in {self.projects_dir}: {e}")
        return ProjectsSnapshot(exists=True, projects=projects)


# ── Memory (thesis & beliefs) ────────────────────────────────

class MemorySnapshot(BaseModel):
    thesis: str = ""
    beliefs: List[str] = Field(default_factory=list)


class MemorySource:
    def __init__(self, memory_dir: Path, data_dir: Path):
        self.thesis_path = Path(memory_dir) / "thesis.md"
        self.beliefs_path = Path(data_dir) / "core-beliefs.json"

    def snapshot(self) -> MemorySnapshot:
        beliefs = []
        raw = read_json_safe(self.beliefs_path)
        for belief in raw if isinstance(raw, list) else []:
            if isinstance(belief, dict):
                name = belief.get("name") or belief.get("title")
                if name:
                    beliefs.append(str(name))
            elif belief:
                beliefs.append(str(belief))
        return MemorySnapshot(thesis=read_text_safe(self.thesis_path)[:1000].strip(), beliefs=beliefs)
