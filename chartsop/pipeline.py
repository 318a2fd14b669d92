"""ChartSOP — per-job pipeline (orchestration of one pair × strategy).

capture primary → analyze primary → capture entry → analyze entry (with
primary context) → validate → combine → draw (if valid) → persist.

A primary failure fails the job.  An entry failure still yields a
primary-only decision.  Cancellation is honoured between stages.
"""

import asyncio
import dataclasses
import functools
import io
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from PIL import Image

from chartsop.analysis.models import (
    CombinedDecision,
    TimeframeResult,
    TimeframeRole,
    ValidationOutcome,
)
from chartsop.analysis.pips import normalize_pair
from chartsop.capture.session import CaptureSession, acquire_session, capture_with_retry
from chartsop.config import Config
from chartsop.errors import CaptureError, JobCancelled, SchemaError, VisionError
from chartsop.geometry.price_mapper import normalize_coordinates
from chartsop.render.zone_drawer import ZoneDrawer
from chartsop.repos.report_repo import ReportRepo
from chartsop.sop.base import SOPStrategyProtocol
from chartsop.vision.client import VisionClient
from chartsop.vision.fallback import analyze_locally

logger = logging.getLogger("chartsop.pipeline")


def _image_size(image: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(image)) as img:
        return img.size


class CancelToken:
    """Cooperative cancellation flag checked between pipeline stages."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def checkpoint(self, stage: str) -> None:
        """Raise ``JobCancelled`` if cancellation was requested."""
        if self._cancelled:
            raise JobCancelled(stage)


@dataclass(frozen=True)
class PipelineResult:
    """Terminal output of one job."""

    decision: CombinedDecision
    report_path: str
    image_paths: list[str] = field(default_factory=list)


class PipelineOrchestrator:
    """Runs the full SOP pipeline for one pair with one strategy.

    Args:
        config: Application configuration.
        strategy: Any ``SOPStrategyProtocol`` implementation (see ``sop.registry``).
        vision: A ``VisionClient`` (or compatible duck-type / mock).
        session_factory: Zero-arg callable returning a fresh ``CaptureSession``.
        repo: Report storage.
        drawer: Zone renderer; built from ``config.zones`` when omitted.
        cancel_token: Shared with the batch runner for cancellation.
    """

    def __init__(
        self,
        config: Config,
        strategy: SOPStrategyProtocol,
        vision: VisionClient,
        session_factory: Callable[[], CaptureSession],
        repo: ReportRepo,
        drawer: Optional[ZoneDrawer] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> None:
        self._config = config
        self._strategy = strategy
        self._vision = vision
        self._session_factory = session_factory
        self._repo = repo
        self._drawer = drawer or ZoneDrawer(config.zones)
        self.cancel_token = cancel_token or CancelToken()

    # ── Stages ───────────────────────────────────────────────────────────

    async def _capture(self, session: CaptureSession, pair: str, role: TimeframeRole) -> Optional[bytes]:
        timeframe = self._strategy.timeframe_for(role)
        logger.info("[%s/%s] Capturing %s (%s)", pair, self._strategy.name, timeframe, role.value)
        return await capture_with_retry(
            session,
            pair,
            timeframe,
            retries=self._config.max_retries,
            delay=self._config.retry_delay_seconds,
            timeout=self._config.capture_timeout_seconds,
        )

    async def _analyze(
        self,
        image: bytes,
        pair: str,
        role: TimeframeRole,
        prior: Optional[TimeframeResult] = None,
    ) -> TimeframeResult:
        strategy = self._strategy
        timeframe = strategy.timeframe_for(role)
        prompt = strategy.build_prompt(pair, role, prior)
        parse = functools.partial(strategy.parse, pair=pair, role=role)
        fallback = functools.partial(
            analyze_locally,
            image,
            pair=pair,
            strategy=strategy.name,
            timeframe_id=timeframe,
            role=role,
            prior=prior,
        )
        result, source = await self._vision.analyze_with_fallback(image, prompt, parse, fallback)
        logger.info(
            "[%s/%s] %s analysis (%s): trend=%s signal=%s pattern=%s confidence=%s",
            pair, strategy.name, timeframe, source, result.trend,
            result.signal.value if result.signal else None, result.pattern, result.confidence,
        )
        return result

    async def _entry_step(
        self,
        session: CaptureSession,
        pair: str,
        primary: TimeframeResult,
    ) -> tuple[Optional[TimeframeResult], Optional[bytes], ValidationOutcome]:
        token = self.cancel_token
        token.checkpoint("capture_entry")
        image = await self._capture(session, pair, TimeframeRole.ENTRY)
        if image is None:
            reason = f"Entry capture failed for {pair} {self._strategy.entry_timeframe}"
            logger.warning("[%s/%s] %s — continuing with primary only", pair, self._strategy.name, reason)
            return None, None, ValidationOutcome.failure(reason)

        token.checkpoint("analyze_entry")
        try:
            entry = await self._analyze(image, pair, TimeframeRole.ENTRY, primary)
        except (VisionError, SchemaError) as exc:
            logger.warning(
                "[%s/%s] Entry analysis failed (%s) — continuing with primary only",
                pair, self._strategy.name, exc,
            )
            return None, image, ValidationOutcome.failure(f"Entry analysis failed: {exc}")

        return entry, image, self._strategy.validate_entry(entry, primary)

    def _drawn_zone(self, role: TimeframeRole, timeframe: str, instruction, width: int, height: int) -> dict:
        rect = instruction.pixel_rect
        return {
            "timeframe": timeframe,
            "role": role.value,
            "label": instruction.label,
            "rect": dataclasses.asdict(rect),
            "relative": normalize_coordinates(rect, width, height),
        }

    async def _render(
        self,
        session: CaptureSession,
        decision: CombinedDecision,
        images: dict[TimeframeRole, Optional[bytes]],
    ) -> tuple[list[str], list[dict]]:
        paths: list[str] = []
        zones: list[dict] = []
        for role, image in images.items():
            if image is None:
                continue
            timeframe = self._strategy.timeframe_for(role)
            width, height = await asyncio.to_thread(_image_size, image)
            scale = None
            scale_lookup = getattr(session, "price_scale", None)
            if callable(scale_lookup):
                scale = await asyncio.to_thread(scale_lookup, decision.pair, timeframe, width, height)

            instruction = self._strategy.drawing_instruction(decision, role, width, height, scale)
            if instruction is None:
                logger.info("[%s/%s] Cannot draw %s zone — skipped", decision.pair, decision.strategy, timeframe)
                continue
            watermark = f"{decision.pair} | {decision.strategy.upper()} | {timeframe}"
            rendered = await asyncio.to_thread(self._drawer.render, image, [instruction], watermark=watermark)
            paths.append(await asyncio.to_thread(self._repo.save_image, decision, timeframe, rendered))
            zones.append(self._drawn_zone(role, timeframe, instruction, width, height))
        return paths, zones

    # ── Run ──────────────────────────────────────────────────────────────

    async def run(self, pair: str) -> PipelineResult:
        """Execute every stage for *pair* and persist the decision.

        Raises:
            CaptureError: the primary screenshot could not be captured.
            VisionError / SchemaError: primary analysis failed with no fallback.
            JobCancelled: cancellation was requested between stages.
            PersistenceError: the report could not be written.
        """
        token = self.cancel_token
        name = self._strategy.name
        token.checkpoint("acquire_session")
        raw_pair, pair = pair, normalize_pair(pair)
        if not pair:
            raise CaptureError(f"Invalid pair {raw_pair!r}")

        async with acquire_session(self._session_factory) as session:
            token.checkpoint("capture_primary")
            primary_image = await self._capture(session, pair, TimeframeRole.PRIMARY)
            if primary_image is None:
                raise CaptureError(f"Primary capture failed for {pair} {self._strategy.primary_timeframe}")

            token.checkpoint("analyze_primary")
            primary = await self._analyze(primary_image, pair, TimeframeRole.PRIMARY)
            primary_validation = self._strategy.validate_primary(primary)
            if not primary_validation.valid:
                logger.info("[%s/%s] Primary validation errors: %s", pair, name, list(primary_validation.errors))

            entry, entry_image, entry_validation = await self._entry_step(session, pair, primary)

            decision = self._strategy.combine(primary, primary_validation, entry, entry_validation)
            logger.info(
                "[%s/%s] Decision: %s (valid=%s, confidence=%.2f)",
                pair, name, decision.status.value, decision.valid, decision.confidence,
            )

            image_paths: list[str] = []
            zones: list[dict] = []
            if decision.valid:
                token.checkpoint("draw")
                image_paths, zones = await self._render(
                    session,
                    decision,
                    {TimeframeRole.PRIMARY: primary_image, TimeframeRole.ENTRY: entry_image},
                )

        token.checkpoint("persist")
        report_path = await asyncio.to_thread(self._repo.save_decision, decision, image_paths, zones)
        logger.info("[%s/%s] Report saved: %s", pair, name, report_path)
        return PipelineResult(decision=decision, report_path=report_path, image_paths=image_paths)
