"""
Built-in EMA strategies offered as presets.

Each preset is a formula-based Strategy whose id doubles as its signal
type, so the direction is inferred from the id.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, List, Mapping

from src.domain.exceptions import ConfigurationError
from .models import Strategy

_TOUCH_200 = "((low <= ema200 && price >= ema200) || abs(price - ema200) < 0.01)"

_PRESETS = (
    Strategy(
        id="15m_above_50_bullish",
        name="15m Bullish - Price Above 50 EMA (Uptrend)",
        timeframe="15m",
        formula="price >= ema50 && ema50 > ema200",
        description="Candle closes on or above the 50 EMA while EMA50 > EMA200.",
        signal_type="15m_above_50_bullish",
    ),
    Strategy(
        id="5m_above_200_reversal",
        name="5m Bullish - Price Above 200 EMA (Reversal)",
        timeframe="5m",
        formula="price >= ema200 && ema200 > ema50",
        description="Candle closes on or above the 200 EMA while EMA200 > EMA50.",
        signal_type="5m_above_200_reversal",
    ),
    Strategy(
        id="5m_pullback_to_200",
        name="5m Pullback - Price Touches 200 EMA (Uptrend)",
        timeframe="5m",
        formula=f"{_TOUCH_200} && price > ema50 && ema50 > ema200",
        description="Price touches the 200 EMA in an uptrend without losing the 50 EMA.",
        signal_type="5m_pullback_to_200",
    ),
    Strategy(
        id="5m_below_200_bearish",
        name="5m Bearish - Price Below 200 EMA (Uptrend Break)",
        timeframe="5m",
        formula="price <= ema200 && ema50 > ema200",
        description="Candle closes on or below the 200 EMA while EMA50 > EMA200.",
        signal_type="5m_below_200_bearish",
    ),
    Strategy(
        id="5m_touch_200_downtrend",
        name="5m Bearish Pullback - Price Touches 200 EMA (Downtrend)",
        timeframe="5m",
        formula=f"{_TOUCH_200} && ema200 > ema50 && ema50 > price",
        description="Price touches the 200 EMA in a downtrend (EMA200 > EMA50 > price).",
        signal_type="5m_touch_200_downtrend",
    ),
    Strategy(
        id="15m_below_200_breakdown",
        name="15m Bearish - Price Below 200 EMA (Downtrend)",
        timeframe="15m",
        formula="ema50 > ema200 && ema200 > price",
        description="Candle closes below the 200 EMA while EMA50 > EMA200.",
        signal_type="15m_below_200_breakdown",
    ),
)

PRESET_STRATEGIES: Mapping[str, Strategy] = MappingProxyType({s.id: s for s in _PRESETS})


def get_presets(names: Iterable[str]) -> List[Strategy]:
    """
    Resolve preset ids from configuration.

    Raises:
        ConfigurationError: If a name is not a known preset.
    """
    strategies = []
    for name in names:
        preset = PRESET_STRATEGIES.get(name)
        if preset is None:
            raise ConfigurationError(f"Unknown preset strategy: {name!r}")
        strategies.append(preset)
    return strategies
