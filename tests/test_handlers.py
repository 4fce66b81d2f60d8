import os
from datetime import datetime, timedelta

from core.handlers import MAX_LISTED_POSITIONS, Thresholds, build_handler_table, fit_prompt
from core.job_catalog import JOB_DEFINITIONS, index_jobs
from core.job_types import JobCategory
from tests.conftest import write_json

NOW = datetime(2026, 10, 19, 12, 0)
JOBS = index_jobs(JOB_DEFINITIONS)


def _handlers(sources, **thresholds):
    return build_handler_table(sources, Thresholds(**thresholds))


def _iso(days_ago: float) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat()


def test_table_covers_every_category(sources):
    table = _handlers(sources)
    assert set(table) == set(JobCategory)


# ── Goals ─────────────────────────────────────────────────────

def test_goal_check_skips_when_nothing_stalled_or_near_complete(sources, data_dir):
    write_json(data_dir / "goals.json", [
        {"id": 1, "title": "Run 10k", "status": "active", "progress": 40, "lastUpdated": _iso(1)},
        {"id": 2, "title": "Ship app", "status": "completed", "progress": 100, "lastUpdated": _iso(30)},
    ])

    evaluation = _handlers(sources)[JobCategory.GOALS].collect(JOBS["goal-check"], NOW)

    assert evaluation.items == []
    assert evaluation.skip_reason == "no goals need attention"


def test_goal_check_finds_stalled_and_near_complete_without_duplicates(sources, data_dir):
    write_json(data_dir / "goals.json", {"goals": [
        {"id": 1, "title": "Read more", "status": "active", "progress": 10, "lastUpdated": _iso(5)},
        {"id": 2, "title": "Launch site", "status": "in_progress", "progress": 80, "updatedAt": _iso(0.5)},
        {"id": 3, "title": "Old and nearly done", "status": "active", "progress": 90, "lastUpdated": _iso(10)},
        {"id": 4, "title": "No timestamp", "status": "active", "progress": 0},
    ]})

    evaluation = _handlers(sources)[JobCategory.GOALS].collect(JOBS["goal-check"], NOW)
    by_title = {item["title"]: item["type"] for item in evaluation.items}

    assert by_title == {
        "Read more": "stalled",
        "Old and nearly done": "stalled",
        "No timestamp": "stalled",
        "Launch site": "near-complete",
    }


def test_goal_prompt_lists_goals(sources, data_dir):
    write_json(data_dir / "goals.json", [
        {"id": 1, "title": "Read more", "status": "active", "progress": 10, "lastUpdated": _iso(5)},
    ])
    handler = _handlers(sources)[JobCategory.GOALS]

    evaluation = handler.collect(JOBS["goal-check"], NOW)
    prompt = handler.build_prompt(JOBS["goal-check"], evaluation, NOW)

    assert "Read more" in prompt
    assert "Return ONLY the message text." in prompt


def test_goal_with_null_progress_is_still_checked(sources, data_dir):
    write_json(data_dir / "goals.json", [
        {"id": 1, "title": "Learn Spanish", "status": "active", "progress": None, "lastUpdated": _iso(10)},
    ])

    evaluation = _handlers(sources)[JobCategory.GOALS].collect(JOBS["goal-check"], NOW)

    assert [(item["title"], item["type"], item["progress"]) for item in evaluation.items] == [
        ("Learn Spanish", "stalled", 0.0),
    ]


def test_goal_timestamp_falls_through_null_fields(sources, data_dir):
    write_json(data_dir / "goals.json", [
        {"id": 1, "title": "Fresh", "status": "active", "progress": 10,
         "lastUpdated": None, "updatedAt": _iso(2 / 24)},
    ])

    evaluation = _handlers(sources)[JobCategory.GOALS].collect(JOBS["goal-check"], NOW)

    assert evaluation.items == []
    assert evaluation.skip_reason == "no goals need attention"


def test_goal_without_status_is_not_active(sources, data_dir):
    write_json(data_dir / "goals.json", [
        {"id": 1, "title": "Someday", "progress": 5, "lastUpdated": _iso(30)},
        {"id": 2, "title": "Paused", "status": None, "progress": 90, "lastUpdated": _iso(1)},
    ])

    evaluation = _handlers(sources)[JobCategory.GOALS].collect(JOBS["goal-check"], NOW)

    assert evaluation.items == []


# ── Market ────────────────────────────────────────────────────

def _write_market(data_dir, plpc_values):
    write_json(data_dir / "alpaca-cache.json", {
        "account": {"equity": "10500.25", "cash": "1200"},
        "positions": [
            {"symbol": symbol, "qty": "10", "unrealized_pl": "42.5", "unrealized_plpc": plpc}
            for symbol, plpc in plpc_values.items()
        ],
    })
    write_json(data_dir / "tickers-cache.json", {"tickers": [
        {"symbol": "SPY", "price": 512.3, "changePercent": -0.42, "score": 5},
        {"symbol": "NVDA", "effectiveScore": 9.1, "score": 6, "price": 120},
    ]})
    write_json(data_dir / "news-cache.json", {"articles": [
        {"title": "Fed holds rates", "publishedAt": _iso(0.2)},
        {"title": "Stale story", "publishedAt": _iso(3)},
    ]})


def test_market_midday_population_is_positions_past_threshold(sources, data_dir):
    _write_market(data_dir, {"AAPL": "0.012", "TSLA": "-0.045"})

    evaluation = _handlers(sources)[JobCategory.MARKET].collect(JOBS["market-midday"], NOW)

    assert [item["symbol"] for item in evaluation.items] == ["TSLA"]
    assert evaluation.context["spy"] == "SPY: $512.30 (-0.42%)"
    assert evaluation.context["headlines"] == ["Fed holds rates"]
    assert evaluation.context["topTickers"][0]["symbol"] == "NVDA"


def test_market_skip_reason_names_threshold(sources, data_dir):
    _write_market(data_dir, {"AAPL": "0.01"})

    evaluation = _handlers(sources, market_move_pct=3.0)[JobCategory.MARKET].collect(JOBS["market-midday"], NOW)

    assert evaluation.items == []
    assert evaluation.skip_reason == "no position moved more than 3%"


def test_market_prompt_uses_job_label(sources, data_dir):
    _write_market(data_dir, {"AAPL": "0.05"})
    handler = _handlers(sources)[JobCategory.MARKET]

    prompt = handler.build_prompt(JOBS["market-close"], handler.collect(JOBS["market-close"], NOW), NOW)

    assert "end-of-day market recap" in prompt
    assert "Fed holds rates" in prompt


def test_market_prompt_keeps_instructions_with_many_positions(sources, data_dir):
    _write_market(data_dir, {f"SYM{i}": "0.05" for i in range(200)})
    handler = _handlers(sources)[JobCategory.MARKET]
    evaluation = handler.collect(JOBS["market-close"], NOW)

    prompt = fit_prompt(handler.build_prompt(JOBS["market-close"], evaluation, NOW), 2500)

    assert len(evaluation.context["positions"]) == MAX_LISTED_POSITIONS
    assert len(evaluation.items) == MAX_LISTED_POSITIONS
    assert len(prompt) <= 2500
    assert prompt.endswith("Return ONLY the message text, nothing else.")
    assert "RULES:" in prompt


def test_fit_prompt_shortens_data_not_instructions():
    prompt = "DATA:\n" + "x" * 500 + "\n\nRULES:\n- be brief\n\nReturn ONLY the message text."

    fitted = fit_prompt(prompt, 100)

    assert len(fitted) <= 100
    assert fitted.startswith("DATA:")
    assert fitted.endswith("\nRULES:\n- be brief\n\nReturn ONLY the message text.")
    assert fit_prompt("short", 100) == "short"
    assert fit_prompt("no headings " * 20, 30) == ("no headings " * 20)[:30]


def test_market_tolerates_missing_caches(sources):
    evaluation = _handlers(sources)[JobCategory.MARKET].collect(JOBS["market-open"], NOW)

    assert evaluation.items == []
    assert evaluation.context["positions"] == []
    assert evaluation.context["spy"] is None


# ── Projects ──────────────────────────────────────────────────

def _make_project(root, name, days_old, heading=None):
    directory = root / name
    directory.mkdir(parents=True)
    project_md = directory / "PROJECT.md"
    project_md.write_text(f"# {heading}\n\nNotes" if heading else "Notes only")
    stamp = NOW.timestamp() - days_old * 24 * 60 * 60
    os.utime(project_md, (stamp, stamp))


def test_projects_skip_without_directory(sources):
    evaluation = _handlers(sources)[JobCategory.PROJECTS].collect(JOBS["project-nudge"], NOW)

    assert evaluation.items == []
    assert evaluation.skip_reason == "no projects directory"


def test_projects_returns_top_three_most_stale(sources, tmp_path):
    root = tmp_path / "projects"
    _make_project(root, "fresh", 2, "Fresh Thing")
    _make_project(root, "alpha", 8, "Alpha Launch")
    _make_project(root, "beta", 20)
    _make_project(root, "gamma", 12, "Gamma")
    _make_project(root, "delta", 30, "Delta")
    (root / "no-markdown").mkdir()

    evaluation = _handlers(sources)[JobCategory.PROJECTS].collect(JOBS["project-nudge"], NOW)

    assert [item["name"] for item in evaluation.items] == ["delta", "beta", "gamma"]
    assert evaluation.items[1]["title"] == "beta"
    assert evaluation.items[0]["daysSinceTouch"] == 30


def test_projects_threshold_is_shared_with_brief(sources, tmp_path):
    root = tmp_path / "projects"
    _make_project(root, "alpha", 8, "Alpha Launch")
    handlers = _handlers(sources, project_stale_days=10)

    nudge = handlers[JobCategory.PROJECTS].collect(JOBS["project-nudge"], NOW)
    brief = handlers[JobCategory.BRIEF].collect(JOBS["morning-brief"], NOW)

    assert nudge.items == []
    assert nudge.skip_reason == "no stale projects"
    assert brief.context["staleProjects"] == []


def test_project_exactly_at_threshold_is_not_stale(sources, tmp_path):
    root = tmp_path / "projects"
    _make_project(root, "edge", 7, "Right On The Line")
    _make_project(root, "past", 7 + 1 / 24, "Just Past")

    evaluation = _handlers(sources, project_stale_days=7)[JobCategory.PROJECTS].collect(JOBS["project-nudge"], NOW)

    assert [item["name"] for item in evaluation.items] == ["past"]


# ── Brief & ad-hoc ────────────────────────────────────────────

def test_brief_prompt_differs_for_morning_and_evening(sources):
    handler = _handlers(sources)[JobCategory.BRIEF]

    morning = handler.build_prompt(JOBS["morning-brief"], handler.collect(JOBS["morning-brief"], NOW), NOW)
    evening = handler.build_prompt(JOBS["evening-brief"], handler.collect(JOBS["evening-brief"], NOW), NOW)

    assert "morning brief" in morning
    assert "evening brief" in evening


def test_adhoc_has_nothing_to_review_on_empty_data(sources):
    evaluation = _handlers(sources)[JobCategory.ADHOC].collect(JOBS["adhoc-intel"], NOW)

    assert evaluation.items == []
    assert evaluation.skip_reason == "nothing to review"


def test_adhoc_collects_thesis_beliefs_and_asks_for_sentinel(sources, tmp_path, data_dir):
    (tmp_path / "memory").mkdir()
    (tmp_path / "memory" / "thesis.md").write_text("Rates stay higher for longer.")
    write_json(data_dir / "core-beliefs.json", [{"name": "Compounding"}, "Health first"])
    handler = _handlers(sources)[JobCategory.ADHOC]

    evaluation = handler.collect(JOBS["adhoc-intel"], NOW)
    prompt = handler.build_prompt(JOBS["adhoc-intel"], evaluation, NOW)

    assert {"belief": "Compounding"} in evaluation.items
    assert {"belief": "Health first"} in evaluation.items
    assert "Rates stay higher for longer." in prompt
    assert "respond with exactly: SKIP" in prompt
