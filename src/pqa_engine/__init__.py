"""PQA Engine: product-qualified account scoring.

Turns raw product-usage signals into a 0-100 score, a tier and a trend per
account, persisted as an append-only snapshot history.

Public API::

    from pqa_engine import ScoringEngine, load_config
    from pqa_engine.sources import MemorySignalSource, load_signal_file
    from pqa_engine.api import create_app
"""

from pqa_engine.config import ScoringConfig, load_config
from pqa_engine.engine import ScoringEngine
from pqa_engine.errors import PQAEngineError, UnknownAccount
from pqa_engine.models import AccountScore, ScoreSnapshot, Signal, Tier, Trend

__all__ = [
    "AccountScore",
    "PQAEngineError",
    "ScoreSnapshot",
    "ScoringConfig",
    "ScoringEngine",
    "Signal",
    "Tier",
    "Trend",
    "UnknownAccount",
    "load_config",
]
__version__ = "0.1.0"
