"""Dataclasses for market observations fed to the evaluators."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from utils.clock import from_iso, to_iso


@dataclass(frozen=True)
class Subject:
    """Asset identifier plus timeframe; opaque to the engine."""
    asset: str
    timeframe: str = "1h"

    def __str__(self):
        return f"{self.asset}@{self.timeframe}"


@dataclass
class IndicatorReading:
    triggered: bool = False
    value: Optional[str] = None


@dataclass
class Observation:
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    price: float = 0.0
    volume: float = 0.0
    trades: float = 0.0
    holder_delta_6h: float = 0.0
    holder_delta_30m: float = 0.0
    indicators: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "timestamp": to_iso(self.timestamp),
            "price": self.price,
            "volume": self.volume,
            "trades": self.trades,
            "holder_delta_6h": self.holder_delta_6h,
            "holder_delta_30m": self.holder_delta_30m,
            "indicators": {
                k: {"triggered": r.triggered, "value": r.value}
                for k, r in self.indicators.items()
            },
        }

    @classmethod
    def from_dict(cls, d):
        """Rebuild from a dict (stored snapshot or HTTP payload)."""
        raw_indicators = d.get("indicators") or {}
        indicators = {}
        for key, reading in raw_indicators.items():
            if isinstance(reading, dict):
                indicators[key] = IndicatorReading(
                    triggered=bool(reading.get("triggered", False)),
                    value=reading.get("value"),
                )
            else:
                indicators[key] = IndicatorReading(triggered=bool(reading))
        return cls(
            timestamp=from_iso(d.get("timestamp")) or datetime.now(timezone.utc),
            price=float(d.get("price", 0) or 0),
            volume=float(d.get("volume", 0) or 0),
            trades=float(d.get("trades", 0) or 0),
            holder_delta_6h=float(d.get("holder_delta_6h", 0) or 0),
            holder_delta_30m=float(d.get("holder_delta_30m", 0) or 0),
            indicators=indicators,
        )
