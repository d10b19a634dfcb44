"""
Configuration Validation Module

Validates app.yaml against Pydantic schemas and returns a typed BotConfig.
Ensures the config file is correct before the trading loop starts.

Usage:
    from tools.config_validator import validate_config_file

    errors = validate_config_file("config/app.yaml")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.stops import DEFAULT_STOP_LEVELS, STOP_MODES, StopConfig

logger = logging.getLogger(__name__)


class AppSection(BaseModel):
    """Runtime mode and universe"""
    mode: str = Field(default="DRY_RUN", pattern="^(DRY_RUN|LIVE)$", description="Trading mode")
    poll_seconds: int = Field(default=15, gt=0, description="Seconds between cycles")
    symbols: List[str] = Field(min_length=1, description="Symbols stepped every cycle")
    data_dir: str = Field(default="data/candles", description="Candle CSV directory for paper trading")


class QtyConfig(BaseModel):
    """Quantity resolution fallbacks"""
    default_buy: int = Field(default=1, ge=0)
    default_sell: int = Field(default=1, ge=0)
    per_symbol: Dict[str, int] = Field(default_factory=dict)

    @field_validator("per_symbol")
    @classmethod
    def validate_per_symbol(cls, v: Dict[str, int]) -> Dict[str, int]:
        for symbol, qty in v.items():
            if qty < 0:
                raise ValueError(f"per_symbol quantity for {symbol} must be >= 0, got {qty}")
        return v


class RiskConfig(BaseModel):
    """Per-trade risk parameters"""
    per_trade_risk_pct: float = Field(default=0.0, ge=0, le=100, description="Max exposure % per entry (0 disables)")
    max_daily_drawdown_pct: float = Field(default=0.0, ge=0, le=100, description="Passed to the oracle as context")
    account_value: float = Field(default=100.0, gt=0, description="Account value baseline for exposure %")


class StopSection(BaseModel):
    """Stop-loss parameters"""
    mode: str = Field(default="ATR", description="PCT | ATR | VOLATILITY")
    pct: float = Field(default=1.0, ge=0, lt=100)
    atr_mult: float = Field(default=1.5, ge=0)
    min_tick: float = Field(default=0.05, ge=0)
    trailing: bool = False
    max_hold_seconds: int = Field(default=3600, gt=0)
    levels: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_STOP_LEVELS))

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        mode = v.upper()
        if mode not in STOP_MODES:
            raise ValueError(f"stop.mode must be one of {STOP_MODES}, got '{v}'")
        return mode

    def to_stop_config(self) -> StopConfig:
        return StopConfig(
            mode=self.mode,
            pct=self.pct,
            atr_mult=self.atr_mult,
            min_tick=self.min_tick,
            trailing=self.trailing,
            max_hold_seconds=self.max_hold_seconds,
            levels=dict(self.levels),
        )


class IndicatorConfig(BaseModel):
    sma_windows: List[int] = Field(default_factory=lambda: [20, 50, 200])
    rsi_period: int = Field(default=14, gt=0)
    bb_window: int = Field(default=20, gt=0)
    bb_stddev: float = Field(default=2.0, gt=0)
    atr_period: int = Field(default=14, gt=0)


class EngineConfig(BaseModel):
    candle_count: int = Field(default=250, gt=0)
    min_candles: int = Field(default=50, gt=0)
    cycle_timeout_seconds: Optional[float] = Field(default=None, gt=0)


class LLMConfig(BaseModel):
    provider: str = Field(default="NOOP", pattern="^(OPENAI|CLAUDE|ANTHROPIC|NOOP)$")
    model: str = ""
    max_tokens: int = Field(default=512, gt=0)
    temperature: float = Field(default=0.2, ge=0, le=2)
    timeout_seconds: float = Field(default=20.0, gt=0)
    system: str = ""
    schema_: str = Field(default="", alias="schema")

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class NewsConfig(BaseModel):
    enabled: bool = False
    min_confidence: float = Field(default=0.5, ge=0, le=1)
    cache_ttl_seconds: float = Field(default=3600, gt=0)
    sweep_interval_seconds: float = Field(default=600, gt=0)
    fetcher: Optional[str] = Field(default=None, description="module:callable returning NewsSentiment")


class AuditConfig(BaseModel):
    log_dir: str = "logs"
    timezone: Optional[str] = None
    retention_days: int = Field(default=0, ge=0)


class EodConfig(BaseModel):
    """End-of-day per-symbol CSV summary"""
    enabled: bool = True
    close_time: str = Field(default="15:40", description="Local HH:MM after which the day's summary is written")
    output_dir: Optional[str] = Field(default=None, description="Defaults to <audit.log_dir>/eod")

    @field_validator("close_time")
    @classmethod
    def validate_close_time(cls, v: str) -> str:
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"eod.close_time must be HH:MM, got '{v}'")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"eod.close_time out of range: '{v}'")
        return f"{hour:02d}:{minute:02d}"


class MetricsConfig(BaseModel):
    enabled: bool = False
    port: int = Field(default=9100, gt=0, lt=65536)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    file: str = "logs/steptrader.log"


class BotConfig(BaseModel):
    """Complete app.yaml schema"""
    app: AppSection
    qty: QtyConfig = Field(default_factory=QtyConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    stop: StopSection = Field(default_factory=StopSection)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    news: NewsConfig = Field(default_factory=NewsConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    eod: EodConfig = Field(default_factory=EodConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _format_errors(exc: ValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        errors.append(f"{location}: {err['msg']}")
    return errors


def parse_config(data: Dict) -> BotConfig:
    """Validate an already-loaded mapping. Raises ValidationError."""
    return BotConfig.model_validate(data or {})


def load_config(path: str) -> BotConfig:
    """
    Load and validate a YAML config file.

    Raises:
        FileNotFoundError: config file missing
        ValueError: YAML or schema errors
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    try:
        return parse_config(data)
    except ValidationError as e:
        details = "; ".join(_format_errors(e))
        raise ValueError(f"config validation failed: {details}") from e


def validate_config_file(path: str) -> List[str]:
    """
    Validate a config file.

    Returns:
        List of error messages (empty if valid)
    """
    config_path = Path(path)
    if not config_path.exists():
        return [f"Config file not found: {config_path}"]

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        return [f"Invalid YAML in {config_path}: {e}"]

    try:
        config = parse_config(data)
    except ValidationError as e:
        return [f"{config_path.name}: {msg}" for msg in _format_errors(e)]

    errors = []
    if config.engine.min_candles > config.engine.candle_count:
        errors.append(
            f"engine.min_candles ({config.engine.min_candles}) must be <= "
            f"engine.candle_count ({config.engine.candle_count})"
        )
    if config.news.enabled and not config.news.fetcher:
        errors.append("news.fetcher is required when news.enabled is true")
    if config.stop.mode == "PCT" and config.stop.pct <= 0:
        errors.append("stop.pct must be > 0 when stop.mode is PCT")
    return errors
