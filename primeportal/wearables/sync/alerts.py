"""Threshold alerts raised after a sync.

Doctors keep per-patient thresholds in ``alert_thresholds``.  Once a user's
metrics are written, the latest synced day is checked against every active
threshold and one ``alerts`` row is stored per breach.  Checking the same
day twice creates nothing new: ``alerts`` is unique on
(patient_id, doctor_id, metric_name, metric_date, priority).

Metrics that can be thresholded:
    - recovery_score, hrv_rmssd, resting_heart_rate   (recovery_metrics)
    - sleep_duration_minutes, sleep_efficiency_percentage   (main sleep)
    - strain_score   (sum of the day's workout strain)
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Mapping, Protocol, Sequence
from uuid import UUID

logger = logging.getLogger("primeportal.wearables.sync.alerts")

PRIORITY_CRITICAL = "critical"
PRIORITY_WARNING = "warning"

METRIC_LABELS: dict[str, str] = {
    "recovery_score": "Recovery",
    "hrv_rmssd": "HRV",
    "resting_heart_rate": "Resting HR",
    "sleep_duration_minutes": "Sleep",
    "sleep_efficiency_percentage": "Sleep efficiency",
    "strain_score": "Strain",
}

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}

# (metric, operator, critical, warning) for a newly assigned patient
DEFAULT_THRESHOLDS: tuple[tuple[str, str, float, float], ...] = (
    ("recovery_score", "<", 33, 50),
    ("hrv_rmssd", "<", 30, 40),
    ("sleep_duration_minutes", "<", 300, 360),
    ("resting_heart_rate", ">", 100, 85),
    ("strain_score", ">", 20, 18),
)


@dataclass
class AlertThreshold:
    """One active row of ``alert_thresholds``."""

    doctor_id: UUID
    patient_id: UUID
    metric_name: str
    threshold_value: float
    comparison_operator: str
    priority: str = PRIORITY_WARNING


@dataclass
class Alert:
    patient_id: UUID
    doctor_id: UUID
    metric_name: str
    metric_value: float
    threshold_value: float
    priority: str
    message: str
    metric_date: date


class AlertStore(Protocol):
    async def get_active_thresholds(self, patient_id: UUID) -> list[AlertThreshold]: ...

    async def get_day_metric_values(
        self, user_id: UUID, metric_date: date
    ) -> dict[str, float]:
        """Metric name → value for one day; metrics with no data are absent."""
        ...

    async def create_alerts(self, alerts: Sequence[Alert]) -> int:
        """Insert alerts, skipping ones already raised.  Returns rows inserted."""
        ...


def default_thresholds(doctor_id: UUID, patient_id: UUID) -> list[AlertThreshold]:
    thresholds: list[AlertThreshold] = []
    for metric, op, critical, warning in DEFAULT_THRESHOLDS:
        thresholds.append(
            AlertThreshold(doctor_id, patient_id, metric, critical, op, PRIORITY_CRITICAL)
        )
        thresholds.append(
            AlertThreshold(doctor_id, patient_id, metric, warning, op, PRIORITY_WARNING)
        )
    return thresholds


def breaches(value: float | None, threshold: AlertThreshold) -> bool:
    """True when ``value`` crosses the threshold; missing data never does."""
    compare = _OPERATORS.get(threshold.comparison_operator)
    if value is None or compare is None:
        return False
    return compare(value, threshold.threshold_value)


def alert_message(threshold: AlertThreshold, value: float) -> str:
    label = METRIC_LABELS.get(threshold.metric_name, threshold.metric_name)
    return (
        f"{label}: {value:g} "
        f"(threshold: {threshold.comparison_operator} {threshold.threshold_value:g})"
    )


def evaluate_thresholds(
    thresholds: Iterable[AlertThreshold],
    values: Mapping[str, float],
    metric_date: date,
) -> list[Alert]:
    alerts: list[Alert] = []
    for threshold in thresholds:
        value = values.get(threshold.metric_name)
        if not breaches(value, threshold):
            continue
        alerts.append(
            Alert(
                patient_id=threshold.patient_id,
                doctor_id=threshold.doctor_id,
                metric_name=threshold.metric_name,
                metric_value=value,
                threshold_value=threshold.threshold_value,
                priority=threshold.priority,
                message=alert_message(threshold, value),
                metric_date=metric_date,
            )
        )
    return alerts


async def check_patient_metrics(store: AlertStore, patient_id: UUID, metric_date: date) -> int:
    """Raise alerts for one patient and day.  Returns the number created.

    Raises:
        PortalError: When the store cannot be read or written.
    """
    thresholds = await store.get_active_thresholds(patient_id)
    if not thresholds:
        return 0

    values = await store.get_day_metric_values(patient_id, metric_date)
    alerts = evaluate_thresholds(thresholds, values, metric_date)
    if not alerts:
        return 0

    created = await store.create_alerts(alerts)
    if created:
        logger.info(
            "Created %d alerts for patient %s on %s", created, patient_id, metric_date
        )
    return created
