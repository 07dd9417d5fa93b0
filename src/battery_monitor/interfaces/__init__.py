"""Data contracts shared between the engine and its consumers."""

from .diagnostic_record import (
    TelemetrySample,
    Diagnostics,
    DiagnosticRecord,
    RiskLevel,
    HealthPrediction,
    Performance,
    Condition,
)

__all__ = [
    'TelemetrySample', 'Diagnostics', 'DiagnosticRecord',
    'RiskLevel', 'HealthPrediction', 'Performance', 'Condition',
]
