"""Tests for chartsop.pipeline — one pair × strategy job end to end.

Screenshots come from a temporary capture directory; the vision service
is replaced by a scripted stand-in that feeds replies through the real
strategy parser.
"""

import asyncio
import io
import json
import os
import threading

import pytest
from PIL import Image, ImageDraw

from chartsop.analysis.models import DecisionStatus, Signal
from chartsop.capture.session import DirectoryCaptureSession
from chartsop.config import Config
from chartsop.errors import CaptureError, JobCancelled, VisionError
from chartsop.pipeline import CancelToken, PipelineOrchestrator
from chartsop.render.zone_drawer import ZoneDrawer
from chartsop.repos.report_repo import ReportRepo
from chartsop.sop.registry import get_strategy


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(capture_dir: str, **overrides) -> Config:
    defaults = dict(
        vision_api_key="sk-test",
        vision_base_url="https://vision.test/v1",
        vision_model="test-model",
        vision_max_tokens=1000,
        vision_timeout_seconds=5.0,
        max_retries=1,
        retry_delay_seconds=0.0,
        enable_local_fallback=True,
        trading_pairs=("XAUUSD",),
        active_strategies=("swing",),
        capture_dir=capture_dir,
        capture_timeout_seconds=5.0,
        output_dir="output",
        reports_dir="reports",
        max_concurrent_jobs=1,
        log_level="WARNING",
        health_port=8080,
    )
    defaults.update(overrides)
    return Config(**defaults)


def _write_chart(path, width=400, height=300) -> None:
    img = Image.new("RGB", (width, height), (12, 12, 18))
    draw = ImageDraw.Draw(img)
    draw.rectangle([334, 120, 338, 160], fill=(230, 230, 230))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    path.write_bytes(buffer.getvalue())


PRIMARY_REPLY = json.dumps({
    "trend": "uptrend",
    "signal": "buy",
    "pattern": "bullish_engulfing",
    "zone_type": "support",
    "zone_price_high": 2032.5,
    "zone_price_low": 2030.0,
    "zone_coordinates": {"x1": 300, "y1": 120, "x2": 360, "y2": 160},
    "confidence": 0.85,
    "reasoning": "Higher highs, engulfing candle at support",
})

ENTRY_REPLY = json.dumps({
    "pattern": "bullish_engulfing",
    "zone_price_high": 2032.0,
    "zone_price_low": 2029.8,
    "zone_coordinates": {"x1": 310, "y1": 130, "x2": 350, "y2": 150},
    "inside_primary_zone": True,
    "confidence": 0.70,
})


class ScriptedVision:
    """Stand-in for ``VisionClient``.

    Each reply is raw text to parse, ``None`` to take the local fallback,
    or an exception to raise.
    """

    def __init__(self, replies, on_call=None) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []
        self.on_call = on_call

    async def analyze_with_fallback(self, image, prompt, parse, fallback=None):
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            return await asyncio.to_thread(fallback), "fallback"
        return parse(reply), "vision"


class TrackingSession(DirectoryCaptureSession):
    instances: list = []

    def __init__(self, capture_dir: str) -> None:
        super().__init__(capture_dir)
        self.closed = False
        TrackingSession.instances.append(self)

    async def close(self) -> None:
        await super().close()
        self.closed = True


def _make_pipeline(tmp_path, replies, strategy="swing", cancel_token=None, on_call=None, drawer=None):
    captures = tmp_path / "captures"
    captures.mkdir(exist_ok=True)
    config = _make_config(str(captures))
    TrackingSession.instances = []
    vision = ScriptedVision(replies, on_call=on_call)
    orchestrator = PipelineOrchestrator(
        config=config,
        strategy=get_strategy(strategy, config),
        vision=vision,
        session_factory=lambda: TrackingSession(str(captures)),
        repo=ReportRepo(str(tmp_path / "reports"), str(tmp_path / "output")),
        drawer=drawer,
        cancel_token=cancel_token,
    )
    return orchestrator, vision, captures


# ── Tests ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_confirmed_swing_job(tmp_path):
    """Both timeframes valid → CONFIRMED, two rendered charts, one report."""
    pipeline, vision, captures = _make_pipeline(tmp_path, [PRIMARY_REPLY, ENTRY_REPLY])
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")

    result = await pipeline.run("XAUUSD")

    decision = result.decision
    assert decision.status is DecisionStatus.CONFIRMED
    assert decision.valid is True
    assert decision.signal is Signal.BUY
    assert decision.confidence == pytest.approx(0.775)

    assert len(result.image_paths) == 2
    for path in result.image_paths:
        with Image.open(path) as img:
            assert img.size == (400, 300)

    with open(result.report_path, encoding="utf-8") as fh:
        report = json.load(fh)
    assert report["status"] == "CONFIRMED"
    assert report["images"] == result.image_paths

    # entry prompt carries the primary context
    assert "DAILY Signal: BUY" in vision.prompts[1]
    assert TrackingSession.instances[0].closed


@pytest.mark.asyncio
async def test_entry_capture_failure_yields_primary_only_decision(tmp_path):
    pipeline, vision, captures = _make_pipeline(tmp_path, [PRIMARY_REPLY])
    _write_chart(captures / "XAUUSD_1D.png")

    result = await pipeline.run("XAUUSD")

    assert result.decision.status is DecisionStatus.FORMING
    assert result.decision.entry_zone is None
    assert result.decision.entry_validation.errors == ("Entry capture failed for XAUUSD 30",)
    assert result.decision.confidence == pytest.approx(0.85)
    assert result.image_paths == []
    assert os.path.exists(result.report_path)


@pytest.mark.asyncio
async def test_entry_analysis_failure_is_not_fatal(tmp_path):
    replies = [PRIMARY_REPLY, VisionError("service unavailable")]
    pipeline, _, captures = _make_pipeline(tmp_path, replies)
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")

    result = await pipeline.run("XAUUSD")

    assert result.decision.status is DecisionStatus.FORMING
    assert result.decision.entry_validation.errors[0].startswith("Entry analysis failed")


@pytest.mark.asyncio
async def test_missing_primary_screenshot_fails_job(tmp_path):
    pipeline, vision, _ = _make_pipeline(tmp_path, [PRIMARY_REPLY])

    with pytest.raises(CaptureError, match="Primary capture failed"):
        await pipeline.run("XAUUSD")

    assert vision.prompts == []
    assert TrackingSession.instances[0].closed
    assert not (tmp_path / "reports").exists()


@pytest.mark.asyncio
async def test_primary_vision_failure_propagates(tmp_path):
    pipeline, _, captures = _make_pipeline(tmp_path, [VisionError("down")])
    _write_chart(captures / "XAUUSD_1D.png")

    with pytest.raises(VisionError):
        await pipeline.run("XAUUSD")
    assert TrackingSession.instances[0].closed


@pytest.mark.asyncio
async def test_vision_outage_falls_back_locally(tmp_path):
    """Local fallback on both timeframes still produces a drawn decision."""
    pipeline, _, captures = _make_pipeline(tmp_path, [None, None])
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")

    result = await pipeline.run("XAUUSD")

    decision = result.decision
    assert decision.primary_result.source == "fallback"
    assert decision.entry_result.pattern == "bearish_engulfing"
    assert decision.status is DecisionStatus.CONFIRMED
    assert decision.confidence == pytest.approx(0.6)
    assert len(result.image_paths) == 2


@pytest.mark.asyncio
async def test_scalping_fallback_stays_forming(tmp_path):
    pipeline, _, captures = _make_pipeline(tmp_path, [None, None], strategy="scalping")
    _write_chart(captures / "XAUUSD_15.png")
    _write_chart(captures / "XAUUSD_5.png")

    result = await pipeline.run("XAUUSD")

    # 0.6 is below the 0.8 scalping threshold
    assert result.decision.status is DecisionStatus.FORMING
    assert result.image_paths == []


@pytest.mark.asyncio
async def test_cancel_before_start(tmp_path):
    token = CancelToken()
    token.cancel()
    pipeline, vision, _ = _make_pipeline(tmp_path, [PRIMARY_REPLY], cancel_token=token)

    with pytest.raises(JobCancelled) as exc_info:
        await pipeline.run("XAUUSD")
    assert exc_info.value.stage == "acquire_session"
    assert TrackingSession.instances == []


@pytest.mark.asyncio
async def test_cancel_between_stages_closes_session(tmp_path):
    token = CancelToken()
    pipeline, _, captures = _make_pipeline(
        tmp_path, [PRIMARY_REPLY, ENTRY_REPLY], cancel_token=token, on_call=token.cancel,
    )
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")

    with pytest.raises(JobCancelled) as exc_info:
        await pipeline.run("XAUUSD")

    assert exc_info.value.stage == "capture_entry"
    assert TrackingSession.instances[0].closed
    assert not (tmp_path / "reports").exists()


@pytest.mark.asyncio
async def test_price_scale_sidecar_places_zone(tmp_path):
    """A sidecar price axis maps the zone from its prices."""
    pipeline, _, captures = _make_pipeline(tmp_path, [PRIMARY_REPLY, ENTRY_REPLY])
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")
    (captures / "XAUUSD_1D.txt").write_text("2040.00\n2020.00\n", encoding="utf-8")

    result = await pipeline.run("XAUUSD")

    primary_png = [p for p in result.image_paths if "_1D_" in p][0]
    with Image.open(primary_png) as img:
        rgb = img.convert("RGB")
        # 2032.5 → y 113, 2030.0 → y 150 on a 300px tall chart; the vision
        # rectangle alone would have covered 120..160
        assert rgb.getpixel((330, 117))[2] > 60
        assert rgb.getpixel((330, 156)) == (12, 12, 18)


@pytest.mark.asyncio
async def test_pair_with_separator_is_normalized(tmp_path):
    """Outputs for "XAU/USD" land in the configured directories under XAUUSD."""
    pipeline, _, captures = _make_pipeline(tmp_path, [PRIMARY_REPLY, ENTRY_REPLY])
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")

    result = await pipeline.run("XAU/USD")

    assert result.decision.pair == "XAUUSD"
    assert result.decision.status is DecisionStatus.CONFIRMED
    assert os.path.dirname(result.report_path) == str(tmp_path / "reports")
    assert len(result.image_paths) == 2
    for path in result.image_paths:
        assert os.path.dirname(path) == str(tmp_path / "output")
        assert os.path.basename(path).startswith("XAUUSD_swing_")


@pytest.mark.asyncio
async def test_pair_without_symbol_fails_before_session(tmp_path):
    pipeline, vision, _ = _make_pipeline(tmp_path, [PRIMARY_REPLY])

    with pytest.raises(CaptureError, match="Invalid pair"):
        await pipeline.run("/../")

    assert TrackingSession.instances == []
    assert vision.prompts == []


@pytest.mark.asyncio
async def test_report_lists_drawn_zones(tmp_path):
    pipeline, _, captures = _make_pipeline(tmp_path, [PRIMARY_REPLY, ENTRY_REPLY])
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")

    result = await pipeline.run("XAUUSD")

    with open(result.report_path, encoding="utf-8") as fh:
        zones = json.load(fh)["zones"]
    assert [(z["timeframe"], z["role"]) for z in zones] == [("1D", "primary"), ("30", "entry")]
    for zone in zones:
        rect, relative = zone["rect"], zone["relative"]
        assert relative["rx1"] == pytest.approx(rect["x1"] / 400)
        assert relative["ry1"] == pytest.approx(rect["y1"] / 300)
        assert relative["rx2"] == pytest.approx(rect["x2"] / 400)
        assert relative["ry2"] == pytest.approx(rect["y2"] / 300)
        assert 0 <= relative["rx1"] < relative["rx2"] <= 1


class RecordingDrawer(ZoneDrawer):
    def __init__(self, settings) -> None:
        super().__init__(settings)
        self.threads: list[int] = []

    def render(self, image, instructions, watermark=None):
        self.threads.append(threading.get_ident())
        return super().render(image, instructions, watermark=watermark)


@pytest.mark.asyncio
async def test_rendering_runs_off_the_event_loop(tmp_path):
    drawer = RecordingDrawer(_make_config("captures").zones)
    pipeline, _, captures = _make_pipeline(tmp_path, [PRIMARY_REPLY, ENTRY_REPLY], drawer=drawer)
    _write_chart(captures / "XAUUSD_1D.png")
    _write_chart(captures / "XAUUSD_30.png")

    result = await pipeline.run("XAUUSD")

    assert len(result.image_paths) == 2
    assert len(drawer.threads) == 2
    assert threading.get_ident() not in drawer.threads
