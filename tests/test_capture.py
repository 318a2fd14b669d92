"""Tests for chartsop.capture.session — directory session, retry, scoping."""

import asyncio

import pytest

from chartsop.capture.session import (
    CaptureSession,
    DirectoryCaptureSession,
    acquire_session,
    capture_with_retry,
)
from chartsop.errors import CaptureError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FlakySession:
    """Fails ``failures`` times, then returns an image."""

    def __init__(self, failures: int = 0, healthy: bool = True, error: bool = False) -> None:
        self.failures = failures
        self.healthy = healthy
        self.error = error
        self.calls = 0
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def health_check(self) -> bool:
        return self.healthy

    async def capture(self, pair, timeframe):
        self.calls += 1
        if self.calls <= self.failures:
            if self.error:
                raise CaptureError("browser crashed")
            return None
        return PNG_BYTES

    async def close(self) -> None:
        self.closed = True


class TestDirectorySession:
    @pytest.mark.asyncio
    async def test_reads_named_screenshot(self, tmp_path):
        (tmp_path / "XAUUSD_1D.png").write_bytes(PNG_BYTES)
        session = DirectoryCaptureSession(str(tmp_path))
        assert isinstance(session, CaptureSession)
        await session.open()
        assert await session.health_check() is True
        assert await session.capture("xauusd", "1D") == PNG_BYTES
        assert await session.capture("XAUUSD", "30") is None

    @pytest.mark.asyncio
    async def test_pair_separators_resolve_inside_capture_dir(self, tmp_path):
        captures = tmp_path / "captures"
        captures.mkdir()
        (captures / "XAUUSD_1D.png").write_bytes(PNG_BYTES)
        (tmp_path / "XAU_1D.png").write_bytes(PNG_BYTES)
        session = DirectoryCaptureSession(str(captures))
        await session.open()
        assert await session.capture("XAU/USD", "1D") == PNG_BYTES
        assert await session.capture("../XAU", "1D") is None

    @pytest.mark.asyncio
    async def test_rejects_non_png(self, tmp_path):
        (tmp_path / "EURUSD_15.png").write_bytes(b"GIF89a....")
        session = DirectoryCaptureSession(str(tmp_path))
        await session.open()
        assert await session.capture("EURUSD", "15") is None

    @pytest.mark.asyncio
    async def test_capture_before_open_raises(self, tmp_path):
        with pytest.raises(CaptureError):
            await DirectoryCaptureSession(str(tmp_path)).capture("EURUSD", "15")

    @pytest.mark.asyncio
    async def test_missing_directory_is_unhealthy(self, tmp_path):
        session = DirectoryCaptureSession(str(tmp_path / "nope"))
        await session.open()
        assert await session.health_check() is False

    def test_price_scale_from_sidecar(self, tmp_path):
        (tmp_path / "XAUUSD_1D.txt").write_text("2045.30\n2030.15\n1998.70\n", encoding="utf-8")
        session = DirectoryCaptureSession(str(tmp_path))
        scale = session.price_scale("XAUUSD", "1D", 1280, 720)
        assert scale.price_high == pytest.approx(2045.30)
        assert scale.price_low == pytest.approx(1998.70)
        assert session.price_scale("XAUUSD", "30", 1280, 720) is None


class TestCaptureWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_retries(self):
        session = FlakySession(failures=2)
        image = await capture_with_retry(session, "EURUSD", "15", retries=3, delay=0)
        assert image == PNG_BYTES
        assert session.calls == 3

    @pytest.mark.asyncio
    async def test_capture_errors_are_retried(self):
        session = FlakySession(failures=1, error=True)
        assert await capture_with_retry(session, "EURUSD", "15", retries=2, delay=0) == PNG_BYTES

    @pytest.mark.asyncio
    async def test_exhausted_returns_none(self):
        session = FlakySession(failures=5)
        assert await capture_with_retry(session, "EURUSD", "15", retries=3, delay=0) is None
        assert session.calls == 3

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        class SlowSession(FlakySession):
            async def capture(self, pair, timeframe):
                await asyncio.sleep(1)
                return PNG_BYTES

        assert await capture_with_retry(SlowSession(), "EURUSD", "15", timeout=0.05) is None


class TestAcquireSession:
    @pytest.mark.asyncio
    async def test_closed_after_use(self):
        session = FlakySession()
        async with acquire_session(lambda: session) as active:
            assert active is session
            assert session.opened
        assert session.closed

    @pytest.mark.asyncio
    async def test_closed_when_body_raises(self):
        session = FlakySession()
        with pytest.raises(RuntimeError):
            async with acquire_session(lambda: session):
                raise RuntimeError("boom")
        assert session.closed

    @pytest.mark.asyncio
    async def test_unhealthy_session_raises_and_closes(self):
        session = FlakySession(healthy=False)
        with pytest.raises(CaptureError, match="health check"):
            async with acquire_session(lambda: session):
                pass
        assert session.closed
