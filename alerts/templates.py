"""Indicator templates for confirmation rules."""
from models.rules import IndicatorState

TEMPLATE_INDICATORS = {
    "TREND_MOMENTUM_STRUCTURE": [
        {"id": "ema_cross", "label": "EMA 9/21 Cross", "category": "Trend", "params": "EMA(9) > EMA(21)"},
        {"id": "rsi_momentum", "label": "RSI Momentum", "category": "Momentum", "params": "RSI(14) > 50"},
        {"id": "structure_hh", "label": "Higher High", "category": "Structure", "params": "New swing high"},
    ],
    "MACD_RSI_VOLUME": [
        {"id": "macd_signal", "label": "MACD Signal", "category": "Trend", "params": "MACD > Signal"},
        {"id": "rsi_threshold", "label": "RSI Above 55", "category": "Momentum", "params": "RSI(14) > 55"},
        {"id": "volume_spike", "label": "Volume Spike", "category": "Volume", "params": "Vol > 1.5x avg"},
    ],
    "BREAKOUT_RETEST_VOLUME": [
        {"id": "breakout", "label": "Resistance Break", "category": "Structure", "params": "Close > R1"},
        {"id": "retest", "label": "Successful Retest", "category": "Structure", "params": "Retest support"},
        {"id": "breakout_vol", "label": "Breakout Volume", "category": "Volume", "params": "Vol > 2x avg"},
    ],
}


def template_names():
    return sorted(TEMPLATE_INDICATORS)


def indicators_for(template):
    """Fresh, untriggered indicator states for a template; None if unknown."""
    entries = TEMPLATE_INDICATORS.get(template)
    if entries is None:
        return None
    return [IndicatorState(triggered=False, **entry) for entry in entries]
