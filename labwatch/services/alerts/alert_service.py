import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, func, desc
from sqlalchemy.exc import OperationalError
from labwatch.auth.permissions import Actor, EquipmentScope, require_scope, scope_conditions
from labwatch.core.config import settings
from labwatch.core.exceptions import ForbiddenError, NotFoundError, UnavailableError
from labwatch.models.alerts.alert import Alert
from labwatch.models.alerts.notification import Notification
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.shared.enums import AlertType, NotificationType, Severity
from labwatch.services.directory.directory_service import Audience, DirectoryService
from labwatch.services.realtime.publisher import ALL_ALERTS_TOPIC
from labwatch.utils.date_time_serializer import as_utc, utcnow

logger = logging.getLogger(__name__)


def alert_to_dict(alert: Alert, equipment: Optional[Equipment] = None) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "equipment_id": equipment.equipment_id if equipment else None,
        "equipment_name": equipment.name if equipment else None,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "title": alert.title,
        "message": alert.message,
        "metadata": alert.alert_metadata or {},
        "is_resolved": alert.is_resolved,
        "resolved_at": as_utc(alert.resolved_at),
        "resolved_by": alert.resolved_by,
        "resolution_notes": alert.resolution_notes,
        "created_at": as_utc(alert.created_at),
    }


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "alert_id": notification.alert_id,
        "notification_type": notification.notification_type,
        "title": notification.title,
        "message": notification.message,
        "is_read": notification.is_read,
        "read_at": as_utc(notification.read_at),
        "created_at": as_utc(notification.created_at),
    }


class AlertService:
    """Persists alerts with their notification fan-out and pushes them in real time"""

    def __init__(self, db: AsyncSession, publisher=None):
        self.db = db
        self.publisher = publisher
        self.directory = DirectoryService(db)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def raise_alert(
        self,
        alert_type: AlertType,
        severity: Severity,
        title: str,
        message: str,
        equipment: Optional[Equipment] = None,
        audience: Audience = Audience.EQUIPMENT_WATCHERS,
        notification_type: NotificationType = NotificationType.ALERT,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        """
        Store an alert and one notification per recipient in one transaction.

        The write is retried as a whole on transient storage errors and
        surfaces UnavailableError once retries are exhausted. Returns None
        when the alert was suppressed as a duplicate.
        """
        if equipment is not None and await self._is_suppressed(alert_type, equipment):
            logger.info(
                f"Suppressed duplicate {AlertType(alert_type).value} alert for {equipment.equipment_id}"
            )
            return None

        recipients = await self.directory.resolve_audience(audience, equipment)

        attempts = settings.ALERT_WRITE_RETRIES + 1
        for attempt in range(1, attempts + 1):
            try:
                if attempt > 1 and equipment is not None:
                    # The rollback expired it
                    await self.db.refresh(equipment)
                alert, notifications = await self._write_alert(
                    alert_type, severity, title, message, equipment,
                    notification_type, metadata, recipients,
                )
                break
            except OperationalError as e:
                await self.db.rollback()
                if attempt >= attempts:
                    logger.error(f"Alert write failed after {attempts} attempts: {e}")
                    raise UnavailableError("Could not store alert, please retry")
                delay = settings.ALERT_WRITE_RETRY_DELAY_SECONDS * (2 ** (attempt - 1))
                logger.warning(f"Alert write attempt {attempt} failed, retrying in {delay:.2f}s: {e}")
                await asyncio.sleep(delay)

        logger.info(
            f"Alert {alert.id} {alert.alert_type}/{alert.severity} raised "
            f"for {equipment.equipment_id if equipment else 'system'} to {len(notifications)} recipients"
        )
        await self._publish_alert(alert, equipment, notifications)
        return alert

    async def _is_suppressed(self, alert_type: AlertType, equipment: Equipment) -> bool:
        window = settings.ALERT_SUPPRESSION_WINDOW_SECONDS
        if window <= 0:
            return False
        since = utcnow() - timedelta(seconds=window)
        result = await self.db.execute(
            select(func.count(Alert.id)).where(and_(
                Alert.equipment_id == equipment.id,
                Alert.alert_type == AlertType(alert_type).value,
                Alert.is_resolved == False,
                Alert.created_at >= since,
            ))
        )
        return result.scalar() > 0

    async def _write_alert(self, alert_type, severity, title, message, equipment,
                           notification_type, metadata, recipients) -> Tuple[Alert, List[Notification]]:
        now = utcnow()
        alert = Alert(
            equipment_id=equipment.id if equipment else None,
            alert_type=AlertType(alert_type).value,
            severity=Severity(severity).value,
            title=title,
            message=message,
            alert_metadata=metadata or {},
            is_resolved=False,
            resolved_by=None,
            resolved_at=None,
            resolution_notes=None,
            created_at=now,
        )
        self.db.add(alert)
        await self.db.flush()  # Get the ID

        notifications = self._stage(recipients, notification_type, title, message, alert.id, now)
        await self.db.commit()
        return alert, notifications

    def _stage(self, user_ids: Iterable[int], notification_type: NotificationType, title: str,
               message: str, alert_id: Optional[int], now) -> List[Notification]:
        notifications = [
            Notification(
                user_id=user_id,
                alert_id=alert_id,
                notification_type=NotificationType(notification_type).value,
                title=title,
                message=message,
                is_read=False,
                read_at=None,
                created_at=now,
            )
            for user_id in user_ids
        ]
        self.db.add_all(notifications)
        return notifications

    def stage_notifications(self, user_ids: Iterable[int], notification_type: NotificationType,
                            title: str, message: str) -> List[Notification]:
        """Add alert-less notices to the caller's transaction; publish them after commit"""
        return self._stage(sorted(set(user_ids)), notification_type, title, message, None, utcnow())

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def _publish_alert(self, alert: Alert, equipment: Optional[Equipment],
                             notifications: List[Notification]):
        if self.publisher is None:
            return
        try:
            payload = alert_to_dict(alert, equipment)
            if equipment is not None:
                await self.publisher.publish_to_equipment(equipment.equipment_id, "alert:new", payload)
            await self.publisher.publish(ALL_ALERTS_TOPIC, "alert:new", payload)
            await self.publish_notifications(notifications)
        except Exception:
            logger.exception(f"Publishing alert {alert.id} failed")

    async def publish_notifications(self, notifications: List[Notification]):
        if self.publisher is None:
            return
        for notification in notifications:
            try:
                await self.publisher.publish_to_user(
                    notification.user_id, "notification:new", notification_to_dict(notification)
                )
            except Exception:
                logger.exception(f"Publishing notification {notification.id} failed")

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def get_alert_with_equipment(self, alert_id: int) -> Tuple[Alert, Optional[Equipment]]:
        result = await self.db.execute(
            select(Alert, Equipment)
            .outerjoin(Equipment, Equipment.id == Alert.equipment_id)
            .where(and_(Alert.id == alert_id, Alert.is_deleted == False))
        )
        row = result.first()
        if not row:
            raise NotFoundError(f"Alert {alert_id} not found")
        return row[0], row[1]

    def check_access(self, actor: Actor, equipment: Optional[Equipment]):
        if equipment is None:
            if not actor.is_policy_level:
                raise ForbiddenError("System alerts can only be handled by policy makers")
            return
        require_scope(actor, EquipmentScope.of(equipment))

    async def mark_resolved(self, alert: Alert, actor: Actor, notes: Optional[str] = None) -> bool:
        """Flip an unresolved alert to resolved inside the caller's transaction"""
        now = utcnow()
        result = await self.db.execute(
            update(Alert)
            .where(and_(Alert.id == alert.id, Alert.is_resolved == False))
            .values(
                is_resolved=True,
                resolved_at=now,
                resolved_by=actor.user_id,
                resolution_notes=notes,
                updated_at=now,
                updated_by=actor.user_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def resolve_alert(self, alert_id: int, actor: Actor, notes: Optional[str] = None) -> Dict[str, Any]:
        """Resolve an alert; resolving an already-resolved alert is a no-op"""
        alert, equipment = await self.get_alert_with_equipment(alert_id)
        self.check_access(actor, equipment)

        if alert.is_resolved:
            logger.info(f"Alert {alert_id} already resolved, nothing to do")
            return alert_to_dict(alert, equipment)

        changed = await self.mark_resolved(alert, actor, notes)
        await self.db.commit()

        alert, equipment = await self.refresh(alert_id)
        if changed:
            logger.info(f"Alert {alert_id} resolved by user {actor.user_id}")
            await self.publish_resolution(alert, equipment)
        return alert_to_dict(alert, equipment)

    async def refresh(self, alert_id: int) -> Tuple[Alert, Optional[Equipment]]:
        result = await self.db.execute(
            select(Alert, Equipment)
            .outerjoin(Equipment, Equipment.id == Alert.equipment_id)
            .where(Alert.id == alert_id)
            .execution_options(populate_existing=True)
        )
        row = result.one()
        return row[0], row[1]

    async def publish_resolution(self, alert: Alert, equipment: Optional[Equipment]):
        if self.publisher is None:
            return
        try:
            payload = alert_to_dict(alert, equipment)
            if equipment is not None:
                await self.publisher.publish_to_equipment(equipment.equipment_id, "alert:resolved", payload)
            await self.publisher.publish(ALL_ALERTS_TOPIC, "alert:resolved", payload)
        except Exception:
            logger.exception(f"Publishing resolution of alert {alert.id} failed")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_alerts(
        self,
        actor: Actor,
        page_index: int = 1,
        page_size: int = 50,
        is_resolved: Optional[bool] = None,
        severity: Optional[Severity] = None,
        equipment_external_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        conditions = [Alert.is_deleted == False]
        if not actor.is_policy_level:
            conditions.extend(scope_conditions(actor, Equipment))
            conditions.append(Equipment.id.is_not(None))
        if is_resolved is not None:
            conditions.append(Alert.is_resolved == is_resolved)
        if severity is not None:
            conditions.append(Alert.severity == Severity(severity).value)
        if equipment_external_id:
            conditions.append(Equipment.equipment_id == equipment_external_id)

        base = (
            select(Alert, Equipment)
            .outerjoin(Equipment, Equipment.id == Alert.equipment_id)
            .where(and_(*conditions))
        )
        total = await self.db.execute(select(func.count()).select_from(base.subquery()))
        result = await self.db.execute(
            base.order_by(desc(Alert.created_at), desc(Alert.id))
            .offset((page_index - 1) * page_size)
            .limit(page_size)
        )
        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total.scalar() or 0,
            "data": [alert_to_dict(alert, equipment) for alert, equipment in result.all()],
        }
