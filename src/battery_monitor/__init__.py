"""
battery-monitor: Battery Telemetry Diagnostics Daemon

This package replays a pre-recorded battery telemetry dataset and, on a
fixed cadence, derives risk and health indicators from the current sample.

Architecture:
    enc_data.json → CyclingScheduler → derive() → latest record → HTTP API

The derivation is a heuristic rule set, not a learned model. It provides:
    1. Overall and fire risk classification
    2. Health prediction, performance band and maintenance condition
    3. A 0-100 health score and a remaining-useful-life estimate
    4. An ordered list of anomalies

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.diagnostic_record import (
    TelemetrySample,
    Diagnostics,
    DiagnosticRecord,
    RiskLevel,
)
from .engine.derivation import derive, normalize
from .errors import ConfigError, DatasetError, SampleValidationError

__all__ = [
    "TelemetrySample",
    "Diagnostics",
    "DiagnosticRecord",
    "RiskLevel",
    "derive",
    "normalize",
    "ConfigError",
    "DatasetError",
    "SampleValidationError",
    "__version__",
]
