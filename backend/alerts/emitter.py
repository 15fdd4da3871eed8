"""
Threshold alert emitter for DockerFlow

Compares observed resource usage against each user's configured thresholds
and records an alert per breach. Every breach creates a new PENDING alert;
open alerts for the same metric are not deduplicated.

Alert lifecycle:
    PENDING -> RESOLVED
    PENDING -> DISMISSED
Acknowledgement is a side annotation and does not depend on status.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Union

from audit import ActivityType, log_activity
from auth.shared import is_admin
from database import DatabaseManager, Alert, utcnow
from errors import NotFound, InvalidStateTransition

logger = logging.getLogger(__name__)


class AlertType(str, Enum):
    CONTAINER = 'CONTAINER'
    SYSTEM = 'SYSTEM'
    USER = 'USER'


class AlertSeverity(str, Enum):
    INFO = 'INFO'
    WARNING = 'WARNING'
    ERROR = 'ERROR'
    CRITICAL = 'CRITICAL'


class AlertStatus(str, Enum):
    PENDING = 'PENDING'
    RESOLVED = 'RESOLVED'
    DISMISSED = 'DISMISSED'


class Metric(str, Enum):
    CPU = 'CPU'
    MEMORY = 'MEMORY'


# Legal status transitions
TRANSITIONS = {
    AlertStatus.PENDING: {AlertStatus.RESOLVED, AlertStatus.DISMISSED},
    AlertStatus.RESOLVED: set(),
    AlertStatus.DISMISSED: set(),
}

_METRIC_LABELS = {
    Metric.CPU: 'CPU',
    Metric.MEMORY: 'Memory',
}


def _format_percent(value: float) -> str:
    return f"{float(value):g}"


class AlertEmitter:
    """Creates and manages threshold alerts"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    # ==================== Evaluation ====================

    def threshold_for(self, owner_id: str, metric: Metric, tier: Optional[str] = None) -> float:
        quota = self.db.get_or_create_quota(owner_id, tier)
        if metric == Metric.CPU:
            return float(quota.cpu_threshold)
        return float(quota.memory_threshold)

    def evaluate(
        self,
        owner_id: str,
        metric: Union[Metric, str],
        observed_percent: float,
        tier: Optional[str] = None
    ) -> List[Alert]:
        """
        Create an alert when observed_percent is strictly above the owner's threshold.

        Returns:
            The alerts created (empty when within threshold)
        """
        if not isinstance(metric, Metric):
            metric = Metric(str(metric).upper())
        threshold = self.threshold_for(owner_id, metric, tier)

        if not observed_percent > threshold:
            return []

        label = _METRIC_LABELS[metric]
        alert = Alert(
            type=AlertType.CONTAINER.value,
            severity=AlertSeverity.WARNING.value,
            title=f"{label} Threshold Exceeded",
            message=(
                f"{label} usage ({_format_percent(observed_percent)}%) exceeds "
                f"threshold ({_format_percent(threshold)}%)"
            ),
            user_id=owner_id,
            acknowledged=False,
            status=AlertStatus.PENDING.value,
        )

        with self.db.get_session() as session:
            session.add(alert)
            session.commit()

        logger.info(f"Created new alert: {alert.title} for user {owner_id} ({alert.message})")
        return [alert]

    def evaluate_usage(
        self,
        owner_id: str,
        cpu_percent: Optional[float] = None,
        memory_percent: Optional[float] = None,
        tier: Optional[str] = None
    ) -> List[Alert]:
        """Evaluate a resource usage report covering both metrics"""
        alerts = []
        if cpu_percent is not None:
            alerts.extend(self.evaluate(owner_id, Metric.CPU, cpu_percent, tier))
        if memory_percent is not None:
            alerts.extend(self.evaluate(owner_id, Metric.MEMORY, memory_percent, tier))
        return alerts

    # ==================== Alert Lifecycle ====================

    def _load(self, session, alert_id: str, actor: dict) -> Alert:
        alert = session.query(Alert).filter(Alert.id == alert_id).first()
        if alert is None or (not is_admin(actor) and alert.user_id != actor['user_id']):
            raise NotFound("Alert not found")
        return alert

    def list_alerts(
        self,
        actor: dict,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Dict[str, Any]:
        """Alerts visible to actor, newest first. Admins may filter by user."""
        with self.db.get_session() as session:
            query = session.query(Alert)
            if is_admin(actor):
                if user_id:
                    query = query.filter(Alert.user_id == user_id)
            else:
                query = query.filter(Alert.user_id == actor['user_id'])
            if status:
                query = query.filter(Alert.status == AlertStatus(status.upper()).value)

            total = query.count()
            alerts = query.order_by(Alert.created_at.desc()).offset(offset).limit(limit).all()
            return {'alerts': alerts, 'total': total}

    def acknowledge(self, alert_id: str, actor: dict, client_info: Optional[Dict[str, str]] = None) -> Alert:
        """Mark an alert acknowledged by actor. A pending alert is resolved as well."""
        client_info = client_info or {}
        with self.db.get_session() as session:
            alert = self._load(session, alert_id, actor)

            alert.acknowledged = True
            alert.acknowledged_by_id = actor['user_id']
            alert.acknowledged_at = utcnow()
            if alert.status == AlertStatus.PENDING.value:
                alert.status = AlertStatus.RESOLVED.value
                log_activity(
                    session,
                    ActivityType.ALERT_RESOLVED,
                    f"Alert acknowledged: {alert.title}",
                    actor['user_id'],
                    details={'alertId': alert.id, 'status': alert.status},
                    **client_info,
                )

            session.commit()
            logger.info(f"Alert {alert_id} acknowledged by {actor['user_id']}")
            return alert

    def transition(
        self,
        alert_id: str,
        status: Union[AlertStatus, str],
        actor: dict,
        client_info: Optional[Dict[str, str]] = None
    ) -> Alert:
        """Move an alert to RESOLVED or DISMISSED. Only PENDING alerts can move."""
        try:
            target = status if isinstance(status, AlertStatus) else AlertStatus(str(status).upper())
        except ValueError:
            raise InvalidStateTransition(f"Invalid alert status: {status}")

        client_info = client_info or {}
        with self.db.get_session() as session:
            alert = self._load(session, alert_id, actor)
            current = AlertStatus(alert.status)

            if target not in TRANSITIONS[current]:
                raise InvalidStateTransition(
                    f"Cannot change alert status from {current.value} to {target.value}"
                )

            alert.status = target.value
            log_activity(
                session,
                ActivityType.ALERT_RESOLVED,
                f"Alert {target.value.lower()}: {alert.title}",
                actor['user_id'],
                details={'alertId': alert.id, 'previousStatus': current.value, 'status': target.value},
                **client_info,
            )
            session.commit()
            logger.info(f"Alert {alert_id}: {current.value} -> {target.value}")
            return alert

    def delete(self, alert_id: str, actor: dict):
        with self.db.get_session() as session:
            alert = self._load(session, alert_id, actor)
            session.delete(alert)
            session.commit()
            logger.info(f"Alert {alert_id} deleted by {actor['user_id']}")

    def purge(self, status: Optional[str] = None, older_than: Optional[datetime] = None) -> int:
        """Bulk delete alerts (admin). Returns the number removed."""
        with self.db.get_session() as session:
            query = session.query(Alert)
            if status:
                query = query.filter(Alert.status == AlertStatus(status.upper()).value)
            if older_than:
                query = query.filter(Alert.created_at < older_than)

            count = query.delete(synchronize_session=False)
            session.commit()
            logger.info(f"Purged {count} alerts (status={status}, older_than={older_than})")
            return count
