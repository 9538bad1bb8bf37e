import pytest
from labwatch.models.shared.enums import AlertType, Severity
from labwatch.services.telemetry.anomaly_rules import Thresholds, evaluate_report

THRESHOLDS = Thresholds(
    temperature=80.0,
    temperature_critical=100.0,
    vibration=10.0,
    vibration_critical=15.0,
    energy=50.0,
)


def evaluate(**metrics):
    return evaluate_report("CNC Lathe", metrics, THRESHOLDS)


class TestAnomalyRules:
    """Static threshold rules applied to a single report"""

    def test_normal_report_raises_nothing(self):
        assert evaluate(temperature=45.0, vibration=2.0, energy_consumption=10.0) == []

    @pytest.mark.parametrize("temperature, expected", [
        (80.0, None),
        (80.1, Severity.HIGH),
        (100.0, Severity.HIGH),
        (100.5, Severity.CRITICAL),
    ])
    def test_temperature_boundaries(self, temperature, expected):
        candidates = evaluate(temperature=temperature)
        if expected is None:
            assert candidates == []
        else:
            assert [c.severity for c in candidates] == [expected]
            assert candidates[0].alert_type is AlertType.HIGH_TEMPERATURE
            assert candidates[0].title == "High Temperature Alert"
            assert f"{temperature}°C" in candidates[0].message

    @pytest.mark.parametrize("vibration, expected", [
        (10.0, None),
        (12.0, Severity.HIGH),
        (15.0, Severity.HIGH),
        (15.1, Severity.CRITICAL),
    ])
    def test_vibration_boundaries(self, vibration, expected):
        candidates = evaluate(vibration=vibration)
        if expected is None:
            assert candidates == []
        else:
            assert [c.severity for c in candidates] == [expected]
            assert candidates[0].alert_type is AlertType.ABNORMAL_VIBRATION

    def test_energy_is_always_medium(self):
        assert evaluate(energy_consumption=50.0) == []
        candidates = evaluate(energy_consumption=500.0)
        assert len(candidates) == 1
        assert candidates[0].alert_type is AlertType.HIGH_ENERGY_CONSUMPTION
        assert candidates[0].severity is Severity.MEDIUM
        assert candidates[0].metadata == {"energy_consumption": 500.0, "threshold": 50.0}

    def test_every_fired_rule_yields_its_own_candidate_in_rule_order(self):
        candidates = evaluate(temperature=120.0, vibration=11.0, energy_consumption=60.0)
        assert [c.alert_type for c in candidates] == [
            AlertType.HIGH_TEMPERATURE,
            AlertType.ABNORMAL_VIBRATION,
            AlertType.HIGH_ENERGY_CONSUMPTION,
        ]
        assert [c.severity for c in candidates] == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM]

    def test_missing_metrics_are_not_evaluated(self):
        assert evaluate(temperature=None, vibration=None) == []
        assert evaluate(health_score=5.0) == []
