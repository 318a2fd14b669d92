"""Chart capture sessions — scoped acquisition of screenshot sources.

A session is opened per job, health-checked, and always closed, whatever
happens in between.  Nothing here is shared between jobs.
"""

import asyncio
import logging
import pathlib
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional, Protocol, runtime_checkable

from chartsop.analysis.schema import price_scale_from_text
from chartsop.analysis.models import PriceScale
from chartsop.analysis.pips import normalize_pair
from chartsop.errors import CaptureError

logger = logging.getLogger("chartsop.capture")

_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@runtime_checkable
class CaptureSession(Protocol):
    """Interface every screenshot source must satisfy."""

    async def open(self) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    async def capture(self, pair: str, timeframe: str) -> Optional[bytes]:
        ...

    async def close(self) -> None:
        ...


class DirectoryCaptureSession:
    """Reads pre-captured screenshots named ``{PAIR}_{TIMEFRAME}.png``.

    An optional sidecar ``{PAIR}_{TIMEFRAME}.txt`` holding price-axis label
    text yields a ``PriceScale`` for exact zone placement.
    """

    def __init__(self, capture_dir: str) -> None:
        self._dir = pathlib.Path(capture_dir)
        self._open = False

    async def open(self) -> None:
        self._open = True

    async def health_check(self) -> bool:
        return self._open and self._dir.is_dir()

    def _path(self, pair: str, timeframe: str, suffix: str) -> pathlib.Path:
        return self._dir / f"{normalize_pair(pair)}_{timeframe}{suffix}"

    async def capture(self, pair: str, timeframe: str) -> Optional[bytes]:
        if not self._open:
            raise CaptureError("Capture session is not open")
        path = self._path(pair, timeframe, ".png")
        if not path.exists():
            logger.warning("No screenshot for %s %s at %s", pair, timeframe, path)
            return None
        data = await asyncio.to_thread(path.read_bytes)
        if not data.startswith(_PNG_MAGIC):
            logger.warning("Screenshot %s is not a PNG image", path)
            return None
        return data

    def price_scale(
        self,
        pair: str,
        timeframe: str,
        image_width: int,
        image_height: int,
    ) -> Optional[PriceScale]:
        """Best-effort price scale from the sidecar text, or ``None``."""
        path = self._path(pair, timeframe, ".txt")
        if not path.exists():
            return None
        return price_scale_from_text(
            path.read_text(encoding="utf-8"), image_width, image_height,
        )

    async def close(self) -> None:
        self._open = False


async def capture_with_retry(
    session: CaptureSession,
    pair: str,
    timeframe: str,
    retries: int = 3,
    delay: float = 2.0,
    timeout: float = 30.0,
) -> Optional[bytes]:
    """Capture one timeframe with bounded retries under an overall timeout.

    Returns ``None`` when every attempt fails; a failed timeframe never
    breaks the whole run.
    """

    async def _attempts() -> Optional[bytes]:
        for attempt in range(max(1, retries)):
            try:
                image = await session.capture(pair, timeframe)
            except CaptureError as exc:
                logger.warning(
                    "Capture %s %s failed (%s) — attempt %d/%d",
                    pair, timeframe, exc, attempt + 1, retries,
                )
                image = None
            if image:
                return image
            if attempt + 1 < retries:
                await asyncio.sleep(delay * (2 ** attempt))
        return None

    try:
        image = await asyncio.wait_for(_attempts(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Capture %s %s timed out after %.0fs", pair, timeframe, timeout)
        return None

    if image is None:
        logger.error("Capture %s %s failed after %d attempts", pair, timeframe, retries)
    return image


@asynccontextmanager
async def acquire_session(
    factory: Callable[[], CaptureSession],
) -> AsyncIterator[CaptureSession]:
    """Open and health-check a session; always close it on exit.

    Raises ``CaptureError`` if the session is unhealthy.
    """
    session = factory()
    await session.open()
    try:
        if not await session.health_check():
            raise CaptureError("Capture session failed its health check")
        yield session
    finally:
        await session.close()
