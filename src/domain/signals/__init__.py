"""
Strategy rule engine - conditions, formulas, EMAs and edge-triggered signals.

This module provides:
- Strategy / Condition / Sample / Signal: domain models
- RuleCompiler: restricted formula compiler with a shared cache
- IndicatorCalculator: incremental EMA50/EMA200 per (instrument, timeframe)
- RuleEvaluator / StrategyRegistry: edge-triggered evaluation
- SignalPipeline: ingest, register and disable entry points

Usage:
    from src.domain.signals import SignalPipeline, Strategy, Condition

    pipeline = SignalPipeline(store=store, broadcaster=broadcaster)
    pipeline.register_strategy(
        Strategy(
            id="cross",
            name="EMA50 cross",
            timeframe="5m",
            conditions=(Condition("price_above_ema50"), Condition("ema50_above_ema200")),
        )
    )
    signals = await pipeline.ingest("NIFTY50", "5m", sample)
"""

from .candle_aggregator import CandleAggregator, Tick
from .conditions import CONDITION_CATALOG, join_conditions, list_catalog
from .formula import CompiledPredicate, FormulaValidationResult, RuleCompiler
from .indicator_calculator import IndicatorCalculator
from .instruments import InstrumentRegistry
from .models import (
    CombineOperator,
    Condition,
    DeliveryStatus,
    IndicatorSnapshot,
    Instrument,
    Sample,
    Signal,
    SignalDirection,
    Strategy,
    make_input_record,
)
from .pipeline import SignalPipeline
from .presets import PRESET_STRATEGIES, get_presets
from .rule_engine import RuleEvaluator, StrategyRegistry
from .signal_state_tracker import EdgeState, SignalStateTracker

__all__ = [
    # Models
    "CombineOperator",
    "Condition",
    "DeliveryStatus",
    "IndicatorSnapshot",
    "Instrument",
    "InstrumentRegistry",
    "Sample",
    "Signal",
    "SignalDirection",
    "Strategy",
    "make_input_record",
    # Conditions and formulas
    "CONDITION_CATALOG",
    "join_conditions",
    "list_catalog",
    "CompiledPredicate",
    "FormulaValidationResult",
    "RuleCompiler",
    # Engine
    "CandleAggregator",
    "Tick",
    "IndicatorCalculator",
    "RuleEvaluator",
    "StrategyRegistry",
    "EdgeState",
    "SignalStateTracker",
    "SignalPipeline",
    "PRESET_STRATEGIES",
    "get_presets",
]
