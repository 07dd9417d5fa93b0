"""
Derivation Engine

Maps one telemetry sample plus a capture timestamp to a DiagnosticRecord.

Everything here is a pure function: no I/O, no shared state, and the input
sample is never modified. The thresholds are heuristics for a
high-voltage traction pack (roughly 350-380 V nominal) and are exact as
written; ties fall on the side given by each comparison below.

Usage:
    from battery_monitor.engine.derivation import derive

    record = derive({'temp': 47, 'voltage': 376, 'current': -130,
                     'soc': 12, 'soh': 70}, '2024-01-01T00:00:00.000Z')
"""

import math
from typing import Any, List, Mapping, Union

from ..errors import SampleValidationError
from ..interfaces.diagnostic_record import (
    Condition,
    DiagnosticRecord,
    Diagnostics,
    HealthPrediction,
    Performance,
    RiskLevel,
    TelemetrySample,
)

TELEMETRY_FIELDS = ('temp', 'voltage', 'current', 'soc', 'soh')

# Overall risk tiers (first match wins, HIGH checked first)
RISK_HIGH_TEMP_C = 46
RISK_HIGH_CURRENT_A = 150
RISK_HIGH_VOLTAGE_V = 380
RISK_MEDIUM_TEMP_C = 42
RISK_MEDIUM_CURRENT_A = 120
RISK_MEDIUM_VOLTAGE_V = 370

# Fire risk tiers
FIRE_HIGH_TEMP_C = 50
FIRE_HOT_TEMP_C = 46
FIRE_HOT_CURRENT_A = 140
FIRE_MEDIUM_TEMP_C = 42

HIGH_VOLTAGE_V = 375
HIGH_CURRENT_A = 120

# Anomaly triggers
ANOMALY_TEMP_C = 46
ANOMALY_VOLTAGE_V = 375
ANOMALY_CURRENT_A = 140
ANOMALY_SOC_PCT = 15

# Health score model
REFERENCE_TEMP_C = 25
TEMP_PENALTY_PER_C = 0.2
HIGH_CURRENT_PENALTY = 5

# Remaining useful life (toy linear model)
RUL_SOH_FLOOR_PCT = 50
RUL_MONTHS_PER_PCT = 1.5

SampleLike = Union[TelemetrySample, Mapping[str, Any]]


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, ties toward +infinity.

    Python's round() uses banker's rounding (round(60.5) == 60); the
    dashboard contract rounds 60.5 up to 61 and -0.5 up to 0.
    """
    return int(math.floor(value + 0.5))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize(raw: SampleLike) -> TelemetrySample:
    """
    Extract the five telemetry fields from a raw dataset entry.

    Accepts a flat mapping ({'temp': ..., 'voltage': ...}) or one nested
    under 'enc' ({'enc': {'temp': ...}, 'id': ...}). The nested form wins
    when it is present; a null 'enc' falls back to the flat fields.

    Args:
        raw: Dataset entry, or an already-normalized TelemetrySample

    Returns:
        TelemetrySample carrying the original numeric values

    Raises:
        SampleValidationError: If the entry or its 'enc' block is not a
            mapping, or a field is missing, non-numeric or non-finite
    """
    if isinstance(raw, TelemetrySample):
        return raw
    if not isinstance(raw, Mapping):
        raise SampleValidationError(f"expected an object, got {type(raw).__name__}")

    enc = raw.get('enc')
    if enc is None:
        source = raw
    elif isinstance(enc, Mapping):
        source = enc
    else:
        raise SampleValidationError(
            f"field 'enc' must be an object, got {type(enc).__name__}", field='enc'
        )

    values = {}
    for name in TELEMETRY_FIELDS:
        if name not in source:
            raise SampleValidationError(f"missing field '{name}'", field=name)
        value = source[name]
        if not _is_number(value):
            raise SampleValidationError(
                f"field '{name}' must be a number, got {value!r}", field=name
            )
        try:
            finite = math.isfinite(value)
        except OverflowError:
            # ints too large for a float
            raise SampleValidationError(f"field '{name}' is out of range", field=name)
        if not finite:
            raise SampleValidationError(f"field '{name}' is not finite", field=name)
        values[name] = value

    return TelemetrySample(**values)


def classify_risk(temp: float, voltage: float, current: float) -> RiskLevel:
    """Overall risk from temperature, current magnitude and voltage."""
    amps = abs(current)
    if temp >= RISK_HIGH_TEMP_C or amps >= RISK_HIGH_CURRENT_A or voltage >= RISK_HIGH_VOLTAGE_V:
        return RiskLevel.HIGH
    if temp >= RISK_MEDIUM_TEMP_C or amps >= RISK_MEDIUM_CURRENT_A or voltage >= RISK_MEDIUM_VOLTAGE_V:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def classify_fire_risk(temp: float, current: float) -> RiskLevel:
    """Fire risk: extreme heat, or heat combined with a heavy current."""
    if temp >= FIRE_HIGH_TEMP_C or (temp >= FIRE_HOT_TEMP_C and abs(current) >= FIRE_HOT_CURRENT_A):
        return RiskLevel.HIGH
    if temp >= FIRE_MEDIUM_TEMP_C:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def predict_health(soh: float) -> HealthPrediction:
    if soh < 75:
        return HealthPrediction.POOR
    if soh < 85:
        return HealthPrediction.FAIR
    return HealthPrediction.GOOD


def classify_performance(soc: float) -> Performance:
    if soc > 80:
        return Performance.NORMAL
    if soc > 50:
        return Performance.DEGRADED
    return Performance.LOW


def classify_condition(soh: float) -> Condition:
    if soh > 85:
        return Condition.HEALTHY
    if soh > 70:
        return Condition.WATCH
    return Condition.REPLACE_SUGGESTED


def compute_health_score(soh: float, temp: float, high_current: bool) -> int:
    """
    Health score in [0, 100].

    Starts from SoH, loses 0.2 points per °C above 25 °C (gains below it)
    and 5 points while the pack is under high current.
    """
    raw = soh - (temp - REFERENCE_TEMP_C) * TEMP_PENALTY_PER_C
    if high_current:
        raw -= HIGH_CURRENT_PENALTY
    return max(0, min(100, round_half_up(raw)))


def detect_anomalies(sample: TelemetrySample) -> List[str]:
    """Anomaly labels in fixed order; each condition is checked once."""
    anomalies = []
    if sample.temp >= ANOMALY_TEMP_C:
        anomalies.append("High Temperature")
    if sample.voltage >= ANOMALY_VOLTAGE_V:
        anomalies.append("Overvoltage")
    if abs(sample.current) >= ANOMALY_CURRENT_A:
        anomalies.append("Very High Current")
    if sample.soc <= ANOMALY_SOC_PCT:
        anomalies.append("Low SoC")
    return anomalies


def estimate_rul_months(soh: float) -> int:
    """Remaining useful life in months, never less than one."""
    return max(1, round_half_up((soh - RUL_SOH_FLOOR_PCT) * RUL_MONTHS_PER_PCT))


def derive(sample: SampleLike, timestamp: str) -> DiagnosticRecord:
    """
    Derive the diagnostic record for one sample.

    Args:
        sample: TelemetrySample, or a raw flat or 'enc'-nested mapping
        timestamp: ISO-8601 capture time, copied into the record as-is

    Returns:
        Frozen DiagnosticRecord
    """
    s = normalize(sample)

    risk = classify_risk(s.temp, s.voltage, s.current)
    fire_risk = classify_fire_risk(s.temp, s.current)
    high_voltage = s.voltage >= HIGH_VOLTAGE_V
    high_current = abs(s.current) >= HIGH_CURRENT_A
    charging = s.current > 0
    health_pred = predict_health(s.soh)

    diagnostics = Diagnostics(
        risk=risk,
        fire_risk=fire_risk,
        high_voltage=high_voltage,
        high_current=high_current,
        charging=charging,
        battery_health_pred=health_pred,
        battery_performance=classify_performance(s.soc),
        battery_condition=classify_condition(s.soh),
        health_score=compute_health_score(s.soh, s.temp, high_current),
        anomalies=tuple(detect_anomalies(s)),
        rul_months=estimate_rul_months(s.soh),
        summary=(
            f"Risk:{risk.value} | Health:{health_pred.value} | "
            f"{'Charging' if charging else 'Not Charging'}"
        ),
    )

    return DiagnosticRecord(timestamp=timestamp, telemetry=s, diagnostics=diagnostics)
