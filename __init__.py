"""
Strategy health monitoring engine.

Judges whether a live-trading strategy instance still behaves the way its
backtest predicted: windowed live metrics, sample-size-aware tolerance bands
against a backtest baseline, CUSUM edge-decay detection, and a hysteretic
status state machine.
"""

__version__ = "1.0.0"
