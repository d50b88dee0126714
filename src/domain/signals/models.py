"""
Signal Engine Domain Models.

Defines core domain models for the strategy rule engine:
- Instrument: Tradable symbol (read-only to the engine)
- Sample: One OHLCV candle for an instrument at a timeframe
- IndicatorSnapshot: EMA values computed as of a sample
- Condition / Strategy: Structured or formula-based rule definitions
- Signal: Output event of an edge-triggered strategy
- Enums: Asset classes, combine operators, directions, delivery status
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from src.utils.timezone import now_utc, parse_timestamp, to_iso

# Seconds per supported candle timeframe
TIMEFRAME_SECONDS: Dict[str, int] = {
    "5m": 5 * 60,
    "15m": 15 * 60,
}

# Fixed variable set every compiled predicate reads from
INPUT_VARIABLES: Tuple[str, ...] = (
    "price", "ema50", "ema200", "open", "high", "low", "close", "volume", "timestamp",
)

InputRecord = Dict[str, float]

OHLCV_FIELDS: Tuple[str, ...] = ("open", "high", "low", "close", "volume")


class AssetClass(Enum):
    """Asset class of an instrument."""

    EQUITY = "equity"
    FUTURE = "future"
    FOREX = "forex"


class CombineOperator(Enum):
    """Operator applied uniformly across a strategy's conditions."""

    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, value: Any) -> "CombineOperator":
        """Accept enum members or case-insensitive strings ("and", "OR")."""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown combine operator: {value!r}") from None


class SignalDirection(Enum):
    """Direction of a fired signal."""

    BULLISH = "bullish"
    BEARISH = "bearish"

    @classmethod
    def from_signal_type(cls, signal_type: str) -> "SignalDirection":
        """
        Infer direction from a signal type key.

        Types mentioning "bullish", "reversal" or "above" are bullish;
        everything else is bearish.
        """
        lowered = signal_type.lower()
        if any(marker in lowered for marker in ("bullish", "reversal", "above")):
            return cls.BULLISH
        return cls.BEARISH


class DeliveryStatus(Enum):
    """How far a signal has travelled through the delivery pipeline."""

    PENDING = "pending"      # Persisted, not yet broadcast
    BROADCAST = "broadcast"  # Pushed to open connections
    NOTIFIED = "notified"    # Notification fan-out completed


@dataclass(frozen=True)
class Instrument:
    """Tradable symbol. Managed by admin CRUD, read-only to the engine."""

    id: str
    symbol: str
    name: str = ""
    asset_class: AssetClass = AssetClass.FUTURE
    exchange: str = "NSE"
    enabled: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.symbol

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.display_name,
            "assetClass": self.asset_class.value,
            "exchange": self.exchange,
            "enabled": self.enabled,
        }


@dataclass(frozen=True, slots=True)
class Sample:
    """
    One OHLCV observation for an instrument at a timeframe.

    Immutable once produced; samples for one (instrument, timeframe) form an
    ordered, append-only sequence.
    """

    instrument_id: str
    timeframe: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: datetime

    def __post_init__(self) -> None:
        for name in OHLCV_FIELDS:
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ValueError(f"Sample {name} must be finite, got {value!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any], instrument_id: str = "", timeframe: str = "") -> "Sample":
        """
        Build a sample from a JSON payload.

        Raises:
            ValueError: If a required field is missing, not numeric or not finite.
        """
        try:
            return cls(
                instrument_id=str(data.get("instrumentId", instrument_id)),
                timeframe=str(data.get("timeframe", timeframe)),
                open=float(data["open"]),
                high=float(data["high"]),
                low=float(data["low"]),
                close=float(data["close"]),
                volume=float(data.get("volume", 0.0)),
                timestamp=parse_timestamp(data["timestamp"]),
            )
        except KeyError as e:
            raise ValueError(f"Sample missing field {e}") from e
        except TypeError as e:
            raise ValueError(f"Invalid sample: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instrumentId": self.instrument_id,
            "timeframe": self.timeframe,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "timestamp": to_iso(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class IndicatorSnapshot:
    """
    EMA values computed as of one sample.

    Derived only from samples at or before ``timestamp``. An EMA is None
    until its period has been seeded.
    """

    instrument_id: str
    timeframe: str
    timestamp: datetime
    sample_count: int
    ema50: Optional[float] = None
    ema200: Optional[float] = None

    @property
    def is_ready(self) -> bool:
        """True once both EMAs are available."""
        return self.ema50 is not None and self.ema200 is not None


def make_input_record(sample: Sample, snapshot: IndicatorSnapshot) -> InputRecord:
    """
    Build the fixed predicate input record for one sample.

    ``price`` is the candle close; ``timestamp`` is epoch seconds.
    """
    return {
        "price": sample.close,
        "open": sample.open,
        "high": sample.high,
        "low": sample.low,
        "close": sample.close,
        "volume": sample.volume,
        "ema50": snapshot.ema50 if snapshot.ema50 is not None else float("nan"),
        "ema200": snapshot.ema200 if snapshot.ema200 is not None else float("nan"),
        "timestamp": sample.timestamp.timestamp(),
    }


@dataclass(frozen=True)
class Condition:
    """Atomic rule element: one kind from the condition catalog."""

    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind}


def _parse_enabled(value: Any) -> bool:
    # bool("false") is True, so only real booleans are accepted
    if not isinstance(value, bool):
        raise ValueError(f"enabled must be true or false, got {value!r}")
    return value


@dataclass(frozen=True)
class Strategy:
    """
    A trading rule owned by the engine's registry.

    Declares either a list of catalog conditions joined by one operator, or a
    raw formula; never both. Only ``enabled`` changes after creation; any
    structural change is a new Strategy.
    """

    id: str
    name: str
    timeframe: str
    conditions: Tuple[Condition, ...] = ()
    operator: CombineOperator = CombineOperator.AND
    formula: Optional[str] = None
    enabled: bool = True
    description: str = ""
    signal_type: str = "custom"

    def __post_init__(self) -> None:
        if self.conditions and self.formula is not None:
            raise ValueError(
                f"Strategy {self.id!r} declares both conditions and a formula; use one"
            )
        if self.timeframe not in TIMEFRAME_SECONDS:
            raise ValueError(f"Unsupported timeframe {self.timeframe!r} for strategy {self.id!r}")
        # Normalize list input from callers
        if not isinstance(self.conditions, tuple):
            object.__setattr__(self, "conditions", tuple(self.conditions))

    @property
    def is_formula_based(self) -> bool:
        return self.formula is not None

    @property
    def structural_hash(self) -> str:
        """Hash of the rule content (conditions/operator/formula), not of enabled/name."""
        if self.formula is not None:
            material = f"formula:{self.formula}"
        else:
            kinds = ",".join(c.kind for c in self.conditions)
            material = f"conditions:{self.operator.value}:{kinds}"
        return hashlib.sha1(material.encode("utf-8")).hexdigest()[:16]

    @property
    def direction(self) -> SignalDirection:
        return SignalDirection.from_signal_type(self.signal_type)

    def with_enabled(self, enabled: bool) -> "Strategy":
        return replace(self, enabled=enabled)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Strategy":
        """
        Build a strategy from an API payload.

        Accepts ``conditions`` as a list of kind strings or ``{"type": kind}``
        objects, and ``operator``/``logic`` as "AND"/"OR".
        """
        raw_conditions = data.get("conditions") or []
        conditions = tuple(
            Condition(c["type"] if isinstance(c, dict) else str(c)) for c in raw_conditions
        )
        formula = data.get("formula")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            timeframe=str(data.get("timeframe", "5m")),
            conditions=conditions,
            operator=CombineOperator.parse(data.get("operator", data.get("logic", "AND"))),
            formula=formula if formula not in ("", None) else None,
            enabled=_parse_enabled(data.get("enabled", True)),
            description=str(data.get("description", "")),
            signal_type=str(data.get("signalType", data.get("type", "custom"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "timeframe": self.timeframe,
            "conditions": [c.to_dict() for c in self.conditions],
            "operator": self.operator.value,
            "formula": self.formula,
            "enabled": self.enabled,
            "description": self.description,
            "signalType": self.signal_type,
            "isCustom": self.is_formula_based,
        }


@dataclass
class Signal:
    """
    Output event of a strategy firing on one sample.

    Created exactly once per edge-trigger event. Only ``id`` (assigned by the
    store), ``asset`` (resolved before commit) and ``delivery_status`` change
    afterwards.
    """

    strategy_id: str
    instrument_id: str
    timeframe: str
    signal_type: str
    price: float
    timestamp: datetime = field(default_factory=now_utc)
    ema50: Optional[float] = None
    ema200: Optional[float] = None
    direction: Optional[SignalDirection] = None
    id: Optional[str] = None
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    dismissed: bool = False
    created_at: datetime = field(default_factory=now_utc)
    metadata: Dict[str, Any] = field(default_factory=dict)
    asset: Optional[Instrument] = None  # Resolved by the pipeline from its instrument registry

    def __post_init__(self) -> None:
        if self.direction is None:
            self.direction = SignalDirection.from_signal_type(self.signal_type)

    @property
    def type_label(self) -> str:
        """Human label, e.g. "15m_above_50_bullish" -> "15M ABOVE 50 BULLISH"."""
        return self.signal_type.replace("_", " ").upper()

    @property
    def instrument_name(self) -> str:
        """Display name of the instrument, falling back to its id."""
        return self.asset.display_name if self.asset is not None else self.instrument_id

    def asset_dict(self) -> Dict[str, str]:
        symbol = self.asset.symbol if self.asset is not None else self.instrument_id
        return {"symbol": symbol, "name": self.instrument_name}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire payload."""
        return {
            "id": self.id,
            "strategyId": self.strategy_id,
            "instrumentId": self.instrument_id,
            "asset": self.asset_dict(),
            "timeframe": self.timeframe,
            "signalType": self.signal_type,
            "direction": self.direction.value,
            "price": self.price,
            "ema50": self.ema50,
            "ema200": self.ema200,
            "timestamp": to_iso(self.timestamp),
            "createdAt": to_iso(self.created_at),
            "deliveryStatus": self.delivery_status.value,
            "dismissed": self.dismissed,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signal":
        """Rebuild a signal from its wire payload."""
        direction = data.get("direction")
        asset = data.get("asset")
        instrument = None
        if isinstance(asset, dict):
            instrument = Instrument(
                id=data["instrumentId"],
                symbol=asset.get("symbol") or data["instrumentId"],
                name=asset.get("name", ""),
            )
        return cls(
            id=data.get("id"),
            strategy_id=data["strategyId"],
            instrument_id=data["instrumentId"],
            timeframe=data.get("timeframe", ""),
            signal_type=data["signalType"],
            price=float(data["price"]),
            timestamp=parse_timestamp(data["timestamp"]),
            ema50=data.get("ema50"),
            ema200=data.get("ema200"),
            direction=SignalDirection(direction) if direction else None,
            delivery_status=DeliveryStatus(data.get("deliveryStatus", "pending")),
            dismissed=bool(data.get("dismissed", False)),
            created_at=parse_timestamp(data.get("createdAt", data["timestamp"])),
            metadata=dict(data.get("metadata") or {}),
            asset=instrument,
        )

    def __str__(self) -> str:
        return (
            f"{self.direction.value.upper()} {self.instrument_id} {self.timeframe} "
            f"{self.signal_type} @ {self.price:.2f}"
        )
