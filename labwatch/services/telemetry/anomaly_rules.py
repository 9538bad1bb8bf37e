from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from labwatch.core.config import settings
from labwatch.models.shared.enums import AlertType, Severity


@dataclass(frozen=True)
class CandidateAlert:
    alert_type: AlertType
    severity: Severity
    title: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Thresholds:
    temperature: float = settings.TEMPERATURE_ALERT_THRESHOLD
    temperature_critical: float = settings.TEMPERATURE_CRITICAL_THRESHOLD
    vibration: float = settings.VIBRATION_ALERT_THRESHOLD
    vibration_critical: float = settings.VIBRATION_CRITICAL_THRESHOLD
    energy: float = settings.ENERGY_ALERT_THRESHOLD


def evaluate_report(equipment_name: str, metrics: Dict[str, Optional[float]],
                    thresholds: Thresholds = None) -> List[CandidateAlert]:
    """
    Evaluate one telemetry report against the static threshold rules.

    Only the values present in this report are checked; each rule that
    fires yields its own candidate, in rule order.
    """
    thresholds = thresholds or Thresholds()
    candidates = []

    temperature = metrics.get("temperature")
    if temperature is not None and temperature > thresholds.temperature:
        severity = Severity.CRITICAL if temperature > thresholds.temperature_critical else Severity.HIGH
        candidates.append(CandidateAlert(
            alert_type=AlertType.HIGH_TEMPERATURE,
            severity=severity,
            title="High Temperature Alert",
            message=f"{equipment_name} temperature is {temperature}°C",
            metadata={"temperature": temperature, "threshold": thresholds.temperature},
        ))

    vibration = metrics.get("vibration")
    if vibration is not None and vibration > thresholds.vibration:
        severity = Severity.CRITICAL if vibration > thresholds.vibration_critical else Severity.HIGH
        candidates.append(CandidateAlert(
            alert_type=AlertType.ABNORMAL_VIBRATION,
            severity=severity,
            title="Abnormal Vibration Detected",
            message=f"{equipment_name} vibration level is {vibration} mm/s",
            metadata={"vibration": vibration, "threshold": thresholds.vibration},
        ))

    energy = metrics.get("energy_consumption")
    if energy is not None and energy > thresholds.energy:
        candidates.append(CandidateAlert(
            alert_type=AlertType.HIGH_ENERGY_CONSUMPTION,
            severity=Severity.MEDIUM,
            title="High Energy Consumption",
            message=f"{equipment_name} energy consumption is {energy} kWh",
            metadata={"energy_consumption": energy, "threshold": thresholds.energy},
        ))

    return candidates
