"""
Household budget insights engine.
"""
from .engine import InsightsEngine, get_engine, reset_engine

__version__ = "1.0.0"

__all__ = [
    "InsightsEngine",
    "get_engine",
    "reset_engine",
]
