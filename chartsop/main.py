"""ChartSOP — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
single-job and batch analysis runs.
"""

import logging
import pathlib
from datetime import datetime, timezone

from fastapi import FastAPI

from chartsop.api.routers import router

app = FastAPI(title="ChartSOP Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("chartsop")

_JOBS_FILE = pathlib.Path(__file__).resolve().parent.parent / "chartsop.json"


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── Wiring ───────────────────────────────────────────────────────────────


def build_runners(config):
    """Return ``(run_job, analyze_job, repo)`` bound to *config*.

    ``run_job(job, token)`` runs one pipeline with a batch cancel token;
    ``analyze_job(pair, strategy)`` is the ad-hoc variant used by the API.
    """
    from chartsop.capture.session import DirectoryCaptureSession
    from chartsop.config import JobConfig
    from chartsop.pipeline import CancelToken, PipelineOrchestrator
    from chartsop.render.zone_drawer import ZoneDrawer
    from chartsop.repos.report_repo import ReportRepo
    from chartsop.sop.registry import get_strategy
    from chartsop.vision.client import VisionClient

    vision = VisionClient(config)
    repo = ReportRepo(config.reports_dir, config.output_dir)
    drawer = ZoneDrawer(config.zones)

    async def run_job(job: JobConfig, token: CancelToken):
        orchestrator = PipelineOrchestrator(
            config=config,
            strategy=get_strategy(job.strategy, config),
            vision=vision,
            session_factory=lambda: DirectoryCaptureSession(config.capture_dir),
            repo=repo,
            drawer=drawer,
            cancel_token=token,
        )
        return await orchestrator.run(job.pair)

    async def analyze_job(pair: str, strategy: str):
        return await run_job(JobConfig(pair=pair, strategy=strategy), CancelToken())

    return run_job, analyze_job, repo


def apply_cli_overrides(config, args):
    """Fold ``--min-pips``/``--max-pips``/``--threshold`` into *config*."""
    from chartsop.config import with_overrides

    zones = {}
    if args.min_pips is not None:
        zones["min_pips"] = args.min_pips
    if args.max_pips is not None:
        zones["max_pips"] = args.max_pips

    groups = {"zones": zones}
    if args.threshold is not None:
        targets = [args.strategy] if args.strategy else ["swing", "scalping"]
        for name in targets:
            groups[name] = {"confidence_threshold": args.threshold}
    return with_overrides(config, **groups)


def select_jobs(config, args):
    """Resolve the job list from CLI flags, ``chartsop.json`` or env."""
    from chartsop.analysis.pips import normalize_pair
    from chartsop.config import JobConfig, load_jobs

    if args.pair:
        strategies = [args.strategy] if args.strategy else list(config.active_strategies)
        return [JobConfig(pair=normalize_pair(args.pair), strategy=s) for s in strategies]
    jobs = load_jobs(config, _JOBS_FILE)
    if args.strategy:
        jobs = [j for j in jobs if j.strategy == args.strategy]
    return jobs


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to batch and/or server mode."""
    import argparse
    import asyncio

    from chartsop.api.routers import configure_routers
    from chartsop.config import load_config

    parser = argparse.ArgumentParser(description="ChartSOP multi-timeframe chart analysis")
    parser.add_argument("--pair", help="Analyze a single pair (e.g. XAUUSD)")
    parser.add_argument(
        "--strategy",
        choices=["swing", "scalping"],
        help="Restrict to one strategy (default: all active strategies)",
    )
    parser.add_argument("--all", action="store_true", help="Analyze every configured job")
    parser.add_argument("--serve", action="store_true", help="Start the internal API server")
    parser.add_argument("--min-pips", type=float, help="Override minimum zone width in pips")
    parser.add_argument("--max-pips", type=float, help="Override maximum zone width in pips")
    parser.add_argument("--threshold", type=float, help="Override the confidence threshold")
    args = parser.parse_args()

    config = apply_cli_overrides(load_config(), args)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    run_job, analyze_job, repo = build_runners(config)
    configure_routers(report_repo=repo, analyze_job=analyze_job)

    jobs = select_jobs(config, args) if (args.all or args.pair or not args.serve) else []

    if args.serve:
        asyncio.run(_run_server_and_batch(config, jobs, run_job))
    else:
        asyncio.run(_run_batch(config, jobs, run_job))


async def _run_batch(config, jobs, run_job) -> list:
    """Run *jobs* through a ``BatchRunner`` and publish its summary."""
    from chartsop.api.routers import update_batch_status
    from chartsop.batch import BatchRunner

    if not jobs:
        logger.info("No jobs to run.")
        return []

    logger.info("Starting batch of %d job(s).", len(jobs))
    update_batch_status(running=True, started_at=datetime.now(timezone.utc).isoformat())
    runner = BatchRunner(jobs, run_job, max_concurrency=config.max_concurrent_jobs)
    outcomes = await runner.run_all()
    update_batch_status(
        running=False,
        finished_at=datetime.now(timezone.utc).isoformat(),
        summary=runner.last_summary,
    )
    return outcomes


async def _run_server_and_batch(config, jobs, run_job) -> None:
    """Start the API server and the batch concurrently."""
    import asyncio
    import uvicorn

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=config.health_port,
        log_level=config.log_level.lower(),
    )
    server = uvicorn.Server(uvi_config)

    logger.info("API available at http://localhost:%d", config.health_port)
    results = await asyncio.gather(
        server.serve(),
        _run_batch(config, jobs, run_job),
        return_exceptions=True,
    )
    logger.info("ChartSOP stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()
