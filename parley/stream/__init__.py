"""Stream module -- turns raw completion fragments into committed turn text.

Public API:
    DeltaClassifier  - Visible/reasoning split across fragment boundaries
    FlushScheduler   - Adaptive commit cadence
    StreamProcessor  - Per-session middleware -> classifier -> commit pipeline
    resolve_middleware - Model-specific fragment rewriting
"""

from parley.stream.classifier import Channel, ClassifierState, DeltaClassifier, Emission, Region
from parley.stream.flush import FlushScheduler, FlushTuning, backpressure_factor, base_tuning
from parley.stream.middleware import PrependOpenMarker, StreamMiddleware, resolve_middleware
from parley.stream.processor import CommitCallback, StreamProcessor

__all__ = [
    "Channel",
    "ClassifierState",
    "DeltaClassifier",
    "Emission",
    "Region",
    "FlushScheduler",
    "FlushTuning",
    "backpressure_factor",
    "base_tuning",
    "PrependOpenMarker",
    "StreamMiddleware",
    "resolve_middleware",
    "CommitCallback",
    "StreamProcessor",
]
