"""
Diagnostic Record Data Models

These dataclasses define the contract between battery-monitor and its
consumers. A DiagnosticRecord is serialized to JSON and served to the
dashboard and any other application polling the web API.

Records are frozen: the scheduler publishes a new record each tick by
replacing its reference, so readers never see a half-built one.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Tuple
import json


class RiskLevel(str, Enum):
    """Overall and fire risk classification."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class HealthPrediction(str, Enum):
    """Predicted battery health from state-of-health."""
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class Performance(str, Enum):
    """Battery performance band from state-of-charge."""
    NORMAL = "NORMAL"
    DEGRADED = "DEGRADED"
    LOW = "LOW"


class Condition(str, Enum):
    """Maintenance recommendation from state-of-health."""
    HEALTHY = "HEALTHY"
    WATCH = "WATCH"
    REPLACE_SUGGESTED = "REPLACE_SUGGESTED"


@dataclass(frozen=True)
class TelemetrySample:
    """
    One battery telemetry reading.

    Only the five fields the derivation uses are kept; any extra keys the
    dataset carries stay in the raw sample and never reach a record.
    """
    temp: float       # Cell temperature, °C
    voltage: float    # Pack voltage, V
    current: float    # Pack current, A (positive = charging)
    soc: float        # State of charge, %
    soh: float        # State of health, %

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Diagnostics:
    """
    Risk and health indicators derived from one TelemetrySample.

    Attribute names are Python-style; to_dict() produces the wire names
    the dashboard expects (fireRisk, RUL_months, ...).
    """
    risk: RiskLevel
    fire_risk: RiskLevel
    high_voltage: bool
    high_current: bool
    charging: bool
    battery_health_pred: HealthPrediction
    battery_performance: Performance
    battery_condition: Condition
    health_score: int
    anomalies: Tuple[str, ...]
    rul_months: int
    summary: str

    def to_dict(self) -> dict:
        return {
            "risk": self.risk.value,
            "fireRisk": self.fire_risk.value,
            "highVoltage": self.high_voltage,
            "highCurrent": self.high_current,
            "charging": self.charging,
            "batteryHealthPred": self.battery_health_pred.value,
            "batteryPerformance": self.battery_performance.value,
            "batteryCondition": self.battery_condition.value,
            "healthScore": self.health_score,
            "anomalies": list(self.anomalies),
            "RUL_months": self.rul_months,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Diagnostics":
        return cls(
            risk=RiskLevel(data["risk"]),
            fire_risk=RiskLevel(data["fireRisk"]),
            high_voltage=bool(data["highVoltage"]),
            high_current=bool(data["highCurrent"]),
            charging=bool(data["charging"]),
            battery_health_pred=HealthPrediction(data["batteryHealthPred"]),
            battery_performance=Performance(data["batteryPerformance"]),
            battery_condition=Condition(data["batteryCondition"]),
            health_score=int(data["healthScore"]),
            anomalies=tuple(data.get("anomalies", ())),
            rul_months=int(data["RUL_months"]),
            summary=data["summary"],
        )


@dataclass(frozen=True)
class DiagnosticRecord:
    """
    Complete record published by battery-monitor.

    This is the top-level structure served on /api/latest. It represents
    the diagnostics for one telemetry sample at the moment it was captured.
    """
    timestamp: str                 # ISO-8601 capture time, e.g. 2024-01-01T00:00:00.000Z
    telemetry: TelemetrySample
    diagnostics: Diagnostics

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "telemetry": self.telemetry.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
        }

    def to_json(self) -> str:
        """Serialize to JSON for the web API."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiagnosticRecord":
        return cls(
            timestamp=data["timestamp"],
            telemetry=TelemetrySample(**data["telemetry"]),
            diagnostics=Diagnostics.from_dict(data["diagnostics"]),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "DiagnosticRecord":
        """Deserialize from JSON."""
        return cls.from_dict(json.loads(json_str))
