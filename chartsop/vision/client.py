"""Vision analysis async client.

Sends a chart screenshot plus an SOP prompt to an OpenAI-compatible
``chat/completions`` endpoint and parses the reply strictly.  Every call
runs under an explicit timeout; on failure the caller-supplied local
fallback analyzer takes over when enabled.
"""

import asyncio
import base64
import logging
from typing import Callable, Optional

import httpx

from chartsop.analysis.models import TimeframeResult
from chartsop.config import Config
from chartsop.errors import SchemaError, VisionError, VisionTimeout

logger = logging.getLogger("chartsop.vision")

_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}
_TEMPERATURE = 0.1


class VisionClient:
    """Async client for the vision-capable analysis service."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._url = f"{config.vision_base_url.rstrip('/')}/chat/completions"
        self._headers = {
            "Authorization": f"Bearer {config.vision_api_key}",
            "Content-Type": "application/json",
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        retries = max(1, self._config.max_retries)
        base_delay = self._config.retry_delay_seconds
        last_exc: Optional[Exception] = None

        for attempt in range(retries):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=self._config.vision_timeout_seconds,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        "Vision %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, retries, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    if attempt + 1 < retries:
                        await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "Vision %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, retries, delay,
                )
                last_exc = exc
                if attempt + 1 < retries:
                    await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    # ── Completion ───────────────────────────────────────────────────────

    def _payload(self, image: bytes, prompt: str) -> dict:
        encoded = base64.b64encode(image).decode("ascii")
        return {
            "model": self._config.vision_model,
            "max_tokens": self._config.vision_max_tokens,
            "temperature": _TEMPERATURE,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{encoded}"},
                        },
                    ],
                }
            ],
        }

    async def _complete(self, image: bytes, prompt: str) -> str:
        try:
            resp = await self._request_with_retry("post", self._url, json=self._payload(image, prompt))
        except httpx.HTTPError as exc:
            raise VisionError(f"Vision request failed: {exc}") from exc

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise VisionError("Malformed vision response envelope") from exc
        if not isinstance(content, str) or not content.strip():
            raise VisionError("Vision response contained no text")
        return content

    async def complete(self, image: bytes, prompt: str) -> str:
        """Return the raw reply text for *image* + *prompt*.

        Raises:
            VisionTimeout: the whole call exceeded the configured timeout.
            VisionError: any other transport or envelope failure.
        """
        if not image:
            raise VisionError("No image supplied for vision analysis")
        timeout = self._config.vision_timeout_seconds
        try:
            return await asyncio.wait_for(self._complete(image, prompt), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise VisionTimeout(f"Vision analysis timed out after {timeout:.0f}s") from exc

    # ── Analysis ─────────────────────────────────────────────────────────

    async def analyze(
        self,
        image: bytes,
        prompt: str,
        parse: Callable[[str], TimeframeResult],
    ) -> TimeframeResult:
        """Call the service and strictly parse its reply with *parse*."""
        text = await self.complete(image, prompt)
        return parse(text)

    async def analyze_with_fallback(
        self,
        image: bytes,
        prompt: str,
        parse: Callable[[str], TimeframeResult],
        fallback: Optional[Callable[[], TimeframeResult]] = None,
    ) -> tuple[TimeframeResult, str]:
        """Analyze, falling back to the local analyzer on any vision failure.

        Returns ``(result, source)`` with source ``"vision"`` or
        ``"fallback"``.  Without an enabled fallback the typed error
        propagates.
        """
        try:
            return await self.analyze(image, prompt, parse), "vision"
        except (VisionError, SchemaError) as exc:
            if fallback is None or not self._config.enable_local_fallback:
                raise
            logger.warning("Vision analysis failed (%s) — using local fallback", exc)
            return await asyncio.to_thread(fallback), "fallback"
