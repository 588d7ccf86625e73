from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Optional, List, Literal


def to_naive_utc(value: datetime) -> datetime:
    """Aware datetimes are converted to UTC and stripped so they compare with naive ones."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SessionStatus(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class StrategyType(str, Enum):
    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"
    BREAKOUT = "breakout"
    AI_DYNAMIC = "ai_dynamic"


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class TradeStatus(str, Enum):
    FILLED = "FILLED"
    REJECTED = "REJECTED"


class RiskEventKind(str, Enum):
    MAX_DRAWDOWN_EXCEEDED = "MAX_DRAWDOWN_EXCEEDED"
    HIGH_RISK_UTILIZATION = "HIGH_RISK_UTILIZATION"


class TickData(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    timestamp: datetime
    price: float
    volume: float = 0.0
    open: float
    high: float
    low: float
    close: float

    @model_validator(mode="before")
    @classmethod
    def _fill_ohlc(cls, data: Any) -> Any:
        # A bare price observation doubles as a flat OHLC bar
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("price") is None and data.get("close") is not None:
            data["price"] = data["close"]
        if data.get("price") is not None:
            for field in ("open", "high", "low", "close"):
                if data.get(field) is None:
                    data[field] = data["price"]
        return data

    @field_validator("timestamp")
    @classmethod
    def _naive_timestamp(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class RiskLimits(BaseModel):
    max_drawdown: float = Field(default=0.20, gt=0)
    max_exposure: float = Field(default=0.95, gt=0)


class EngineConfig(BaseModel):
    """Engine-wide defaults shared by every session of a manager."""
    initial_capital: float = Field(default=100000.0, gt=0)
    risk_per_trade: float = Field(default=0.02, gt=0, le=1)
    base_tick_interval_ms: float = Field(default=1000.0, ge=0)
    min_tick_interval_ms: float = Field(default=10.0, ge=0)
    history_window: int = Field(default=20, ge=1)
    max_position_size: int = Field(default=1000, gt=0)
    risk_limits: RiskLimits = RiskLimits()
    symbols: List[str] = ["AAPL", "GOOGL", "MSFT", "TSLA", "NVDA"]


class SessionConfig(BaseModel):
    """Immutable configuration of one backtest session."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    start_date: datetime
    end_date: datetime
    strategy: StrategyType = StrategyType.MOMENTUM
    initial_capital: Optional[float] = Field(default=None, gt=0)
    speed: float = Field(default=1.0, gt=0)
    risk_per_trade: Optional[float] = Field(default=None, gt=0, le=1)

    @field_validator("symbol")
    @classmethod
    def _symbol_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("symbol is required")
        return value.upper()

    @field_validator("start_date", "end_date")
    @classmethod
    def _naive_dates(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def _dates_ordered(self) -> "SessionConfig":
        if self.start_date >= self.end_date:
            raise ValueError(
                f"start_date ({self.start_date}) must be before end_date ({self.end_date})"
            )
        return self

    def with_defaults(self, engine: EngineConfig) -> "SessionConfig":
        """Fill the optional money settings from the engine configuration."""
        return self.model_copy(
            update={
                "initial_capital": self.initial_capital or engine.initial_capital,
                "risk_per_trade": self.risk_per_trade or engine.risk_per_trade,
            }
        )


class TickSourceConfig(BaseModel):
    source_type: Literal["synthetic", "csv"] = "synthetic"
    seed: Optional[int] = None
    interval_minutes: int = Field(default=5, gt=0)
    csv_path: Optional[str] = None

    @model_validator(mode="after")
    def _csv_needs_path(self) -> "TickSourceConfig":
        if self.source_type == "csv" and not self.csv_path:
            raise ValueError("csv_path is required when source_type is 'csv'")
        return self


class AppConfig(BaseModel):
    """Complete application configuration"""
    engine: EngineConfig = EngineConfig()
    tick_source: TickSourceConfig = TickSourceConfig()
    sessions: List[SessionConfig] = []
