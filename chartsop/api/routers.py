"""Internal API routers — /status, /reports, /analyze endpoints.

No business logic. Delegates to the report repo, the job runner, and the
shared batch state.
"""

import logging
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Query

from chartsop.analysis.pips import normalize_pair
from chartsop.errors import ChartSOPError

logger = logging.getLogger("chartsop")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_report_repo = None    # Set via configure_routers()
_analyze_job: Optional[Callable[[str, str], Awaitable]] = None  # Set via configure_routers()
_batch_status: dict = {
    "running": False,
    "started_at": None,
    "finished_at": None,
    "summary": None,
}


def configure_routers(
    report_repo,
    analyze_job: Optional[Callable[[str, str], Awaitable]] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        report_repo: A ``ReportRepo`` instance (or duck-type for tests).
        analyze_job: Coroutine function ``(pair, strategy) -> PipelineResult``.
    """
    global _report_repo, _analyze_job  # noqa: PLW0603
    _report_repo = report_repo
    _analyze_job = analyze_job


def update_batch_status(**fields) -> None:
    """Update individual fields of the batch status dict."""
    _batch_status.update(fields)


# ── Routes ───────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the state and summary of the most recent batch."""
    return dict(_batch_status)


@router.get("/reports")
async def get_reports(limit: int = Query(20, ge=1, le=200)):
    """Return the most recent persisted decisions, newest first."""
    if _report_repo is None:
        return {"reports": []}
    try:
        return {"reports": _report_repo.list_reports(limit=limit)}
    except ChartSOPError as exc:
        logger.error("Could not list reports: %s", exc)
        return {"error": str(exc)}


@router.post("/analyze")
async def post_analyze(body: dict):
    """Run one pair × strategy job and return its decision."""
    pair = normalize_pair(body.get("pair") or "")
    strategy = str(body.get("strategy") or "").lower()
    if not pair or not strategy:
        return {"error": "Both 'pair' and 'strategy' are required"}
    if _analyze_job is None:
        return {"error": "No job runner configured"}

    try:
        result = await _analyze_job(pair, strategy)
    except KeyError as exc:
        return {"error": str(exc.args[0]) if exc.args else str(exc)}
    except ChartSOPError as exc:
        logger.error("Analyze %s/%s failed: %s", pair, strategy, exc)
        return {"error": str(exc)}

    return {
        "decision": result.decision.to_dict(),
        "report_path": result.report_path,
        "images": list(result.image_paths),
    }
