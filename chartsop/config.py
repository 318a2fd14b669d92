"""ChartSOP — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import json
import os
import pathlib
from dataclasses import dataclass, field, replace

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "VISION_API_KEY",
]


@dataclass(frozen=True)
class StrategySettings:
    """Per-strategy SOP settings."""

    primary_timeframe: str
    entry_timeframe: str
    confidence_threshold: float
    patterns: tuple[str, ...] = ("bullish_engulfing", "bearish_engulfing")
    zone_style: str = "wick_to_wick"  # or "body_to_body"
    sessions: tuple[str, ...] = ()
    news_blackout_min: int = 0


@dataclass(frozen=True)
class ZoneSettings:
    """Zone size constraint and drawing style."""

    min_pips: float = 20
    max_pips: float = 30
    buy_color: str = "#0066FF"
    sell_color: str = "#FF0033"
    opacity: float = 0.3
    border_width: int = 2
    min_thickness: int = 8
    minimal: bool = False
    draw_labels: bool = True
    font_size: int = 16
    watermark: bool = True


@dataclass(frozen=True)
class JobConfig:
    """One pair × strategy job."""

    pair: str
    strategy: str  # strategy registry key, e.g. "swing"
    enabled: bool = True

    @property
    def name(self) -> str:
        return f"{self.pair}:{self.strategy}"


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    vision_api_key: str
    vision_base_url: str
    vision_model: str
    vision_max_tokens: int
    vision_timeout_seconds: float
    max_retries: int
    retry_delay_seconds: float
    enable_local_fallback: bool
    trading_pairs: tuple[str, ...]
    active_strategies: tuple[str, ...]
    capture_dir: str
    capture_timeout_seconds: float
    output_dir: str
    reports_dir: str
    max_concurrent_jobs: int
    log_level: str
    health_port: int
    swing: StrategySettings = field(
        default_factory=lambda: StrategySettings("1D", "30", 0.5)
    )
    scalping: StrategySettings = field(
        default_factory=lambda: StrategySettings(
            "15", "5", 0.8,
            patterns=("bullish_engulfing", "bearish_engulfing", "pin_bar", "breakout", "breakdown"),
            sessions=("LDN", "NY"),
        )
    )
    zones: ZoneSettings = field(default_factory=ZoneSettings)

    def strategy_settings(self, name: str) -> StrategySettings:
        """Return the settings group for strategy *name*."""
        if name not in ("swing", "scalping"):
            raise KeyError(f"No settings for strategy '{name}'")
        return getattr(self, name)


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    swing = StrategySettings(
        primary_timeframe=os.environ.get("SWING_DAILY_TIMEFRAME", "1D"),
        entry_timeframe=os.environ.get("SWING_ENTRY_TIMEFRAME", "30"),
        confidence_threshold=float(os.environ.get("SWING_CONFIDENCE_THRESHOLD", "0.5")),
        zone_style="wick_to_wick",
    )
    scalping = StrategySettings(
        primary_timeframe=os.environ.get("SCALPING_PRIMARY_TIMEFRAME", "15"),
        entry_timeframe=os.environ.get("SCALPING_ENTRY_TIMEFRAME", "5"),
        confidence_threshold=float(os.environ.get("SCALPING_CONFIDENCE_THRESHOLD", "0.80")),
        patterns=_csv(os.environ.get(
            "SCALPING_PATTERNS",
            "bullish_engulfing,bearish_engulfing,pin_bar,breakout,breakdown",
        )),
        zone_style=os.environ.get("SCALPING_ZONE_STYLE", "wick_to_wick"),
        sessions=_csv(os.environ.get("SCALPING_SESSIONS", "LDN,NY")),
        news_blackout_min=int(os.environ.get("SCALPING_NEWS_BLACKOUT_MIN", "0")),
    )
    zones = ZoneSettings(
        min_pips=float(os.environ.get("ZONE_MIN_PIPS", "20")),
        max_pips=float(os.environ.get("ZONE_MAX_PIPS", "30")),
        buy_color=os.environ.get("BUY_ZONE_COLOR", "#0066FF"),
        sell_color=os.environ.get("SELL_ZONE_COLOR", "#FF0033"),
        opacity=float(os.environ.get("ZONE_OPACITY", "0.3")),
        border_width=int(os.environ.get("ZONE_BORDER_WIDTH", "2")),
        min_thickness=int(os.environ.get("ZONE_MIN_THICKNESS", "8")),
        minimal=_flag("ZONE_MINIMAL", "false"),
        draw_labels=_flag("ZONE_DRAW_LABELS", "true"),
        font_size=int(os.environ.get("ZONE_FONT_SIZE", "16")),
        watermark=_flag("ZONE_WATERMARK", "true"),
    )

    return Config(
        vision_api_key=os.environ["VISION_API_KEY"],
        vision_base_url=os.environ.get("VISION_BASE_URL", "https://api.openai.com/v1"),
        vision_model=os.environ.get("VISION_MODEL", "gpt-4o"),
        vision_max_tokens=int(os.environ.get("VISION_MAX_TOKENS", "4096")),
        vision_timeout_seconds=float(os.environ.get("VISION_TIMEOUT_SECONDS", "60")),
        max_retries=int(os.environ.get("MAX_RETRIES", "3")),
        retry_delay_seconds=float(os.environ.get("RETRY_DELAY_SECONDS", "2.0")),
        enable_local_fallback=_flag("ENABLE_LOCAL_FALLBACK", "true"),
        trading_pairs=_csv(os.environ.get("TRADING_PAIRS", "XAUUSD,EURUSD,GBPUSD")),
        active_strategies=tuple(
            s.lower() for s in _csv(os.environ.get("ACTIVE_STRATEGIES", "swing,scalping"))
        ),
        capture_dir=os.environ.get("CAPTURE_DIR", "./captures"),
        capture_timeout_seconds=float(os.environ.get("CAPTURE_TIMEOUT_SECONDS", "30")),
        output_dir=os.environ.get("OUTPUT_DIR", "./output"),
        reports_dir=os.environ.get("REPORTS_DIR", "./reports"),
        max_concurrent_jobs=int(os.environ.get("MAX_CONCURRENT_JOBS", "2")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
        swing=swing,
        scalping=scalping,
        zones=zones,
    )


def with_overrides(config: Config, **groups: dict) -> Config:
    """Return a copy of *config* with runtime overrides applied.

    Example::

        with_overrides(cfg, zones={"min_pips": 10}, swing={"confidence_threshold": 0.7})
    """
    changes = {}
    for group, values in groups.items():
        if group not in ("swing", "scalping", "zones"):
            raise KeyError(f"Unknown override group '{group}'")
        if values:
            changes[group] = replace(getattr(config, group), **values)
    return replace(config, **changes)


def load_jobs(config: Config, path: str | pathlib.Path | None = None) -> list[JobConfig]:
    """Load the job list from ``chartsop.json``, or synthesise it from env.

    The file format is ``{"jobs": [{"pair": "EURUSD", "strategy": "swing"}]}``.
    Disabled jobs are dropped.
    """
    if path is not None and pathlib.Path(path).exists():
        data = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
        jobs = [
            JobConfig(
                pair=item["pair"],
                strategy=item["strategy"].lower(),
                enabled=item.get("enabled", True),
            )
            for item in data.get("jobs", [])
        ]
    else:
        jobs = [
            JobConfig(pair=pair, strategy=strategy)
            for pair in config.trading_pairs
            for strategy in config.active_strategies
        ]
    return [j for j in jobs if j.enabled]
