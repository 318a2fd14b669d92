"""Report repository — JSON decisions and rendered chart images on disk."""

import json
import pathlib
from datetime import datetime
from typing import Optional

from chartsop.analysis.models import CombinedDecision
from chartsop.analysis.pips import normalize_pair
from chartsop.errors import PersistenceError


def _stamp(created_at: str) -> str:
    return datetime.fromisoformat(created_at).strftime("%Y%m%dT%H%M%S%fZ")


def _safe(part: str) -> str:
    return "".join(ch for ch in str(part) if ch.isalnum() or ch in "-_")


def _stem(decision: CombinedDecision) -> str:
    pair = normalize_pair(decision.pair)
    if not pair:
        raise PersistenceError(f"Pair {decision.pair!r} has no usable characters")
    return f"{pair}_{_safe(decision.strategy)}"


class ReportRepo:
    """File-backed storage for job outputs.

    Args:
        reports_dir: Directory for ``{PAIR}_{strategy}_{timestamp}.json``.
        output_dir: Directory for ``{PAIR}_{strategy}_{timeframe}_{timestamp}.png``.
    """

    def __init__(self, reports_dir: str, output_dir: str) -> None:
        self._reports_dir = pathlib.Path(reports_dir)
        self._output_dir = pathlib.Path(output_dir)

    # ── Write ────────────────────────────────────────────────────────────

    def save_image(
        self,
        decision: CombinedDecision,
        timeframe: str,
        image: bytes,
    ) -> str:
        """Write a rendered chart and return its path."""
        name = f"{_stem(decision)}_{_safe(timeframe)}_{_stamp(decision.created_at)}.png"
        path = self._output_dir / name
        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image)
        except OSError as exc:
            raise PersistenceError(f"Could not write image {path}: {exc}") from exc
        return str(path)

    def save_decision(
        self,
        decision: CombinedDecision,
        image_paths: Optional[list[str]] = None,
        zones: Optional[list[dict]] = None,
    ) -> str:
        """Write *decision* as pretty-printed JSON and return its path.

        *zones* lists the drawn rectangles, each with absolute pixels and
        image-relative ratios.
        """
        payload = decision.to_dict()
        payload["images"] = list(image_paths or [])
        payload["zones"] = list(zones or [])
        path = self._reports_dir / f"{_stem(decision)}_{_stamp(decision.created_at)}.json"
        try:
            self._reports_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Could not write report {path}: {exc}") from exc
        return str(path)

    # ── Read ─────────────────────────────────────────────────────────────

    def list_reports(self, limit: int = 20) -> list[dict]:
        """Return the most recent reports, newest first."""
        if not self._reports_dir.is_dir():
            return []
        paths = sorted(
            self._reports_dir.glob("*.json"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        reports = []
        for path in paths[:limit]:
            try:
                reports.append(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError) as exc:
                raise PersistenceError(f"Could not read report {path}: {exc}") from exc
        return reports
