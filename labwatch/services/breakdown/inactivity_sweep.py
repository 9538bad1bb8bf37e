import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, and_
from redis.exceptions import RedisError
from labwatch.core.config import settings
from labwatch.core.exceptions import ConflictError, UnavailableError
from labwatch.core.redis import RedisClient
from labwatch.models.alerts.alert import Alert
from labwatch.models.breakdown.breakdown_record import BreakdownRecord
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.equipment.equipment_status import EquipmentStatus
from labwatch.models.shared.enums import (
    OPEN_BREAKDOWN_STATUSES, SWEEP_EXCLUDED_STATUSES,
    AlertType, NotificationType, Severity, SweepTrigger,
)
from labwatch.services.alerts.alert_service import AlertService
from labwatch.services.directory.directory_service import Audience
from labwatch.utils.date_time_serializer import as_utc, utcnow

logger = logging.getLogger(__name__)


class SweepLock:
    """
    Non-blocking mutual exclusion for the sweep.

    The asyncio lock covers one process. Given a redis client, a redis lock
    with a ttl covers every API process and the celery worker; when redis
    cannot be reached the sweep fails closed with UnavailableError. Without
    a client the lock is process-local, which only suits a single process.
    """

    def __init__(self, redis_client: Optional[RedisClient] = None, name: str = "labwatch:inactivity-sweep",
                 timeout: int = None):
        self._local = asyncio.Lock()
        self._redis = redis_client if redis_client is not None and redis_client.enabled else None
        self._name = name
        self._timeout = timeout or settings.SWEEP_LOCK_TIMEOUT_SECONDS
        self._remote = None

    @property
    def locked(self) -> bool:
        return self._local.locked()

    async def acquire(self) -> bool:
        if self._local.locked():
            return False
        await self._local.acquire()

        if self._redis is None:
            return True
        try:
            remote = await self._redis.lock(self._name, timeout=self._timeout)
            if not await remote.acquire():
                self._local.release()
                return False
        except RedisError as e:
            self._local.release()
            logger.error(f"Sweep lock unavailable: {e}")
            raise UnavailableError("Sweep lock is unavailable")
        self._remote = remote
        return True

    async def release(self):
        if self._remote is not None:
            try:
                await self._remote.release()
            except RedisError as e:
                # Expires on its own after the ttl
                logger.warning(f"Releasing sweep lock failed: {e}")
            self._remote = None
        if self._local.locked():
            self._local.release()

    async def close(self):
        if self._redis is not None:
            await self._redis.disconnect()


@dataclass
class SweepResult:
    trigger: SweepTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    threshold_days: int = 0
    matched: int = 0
    alerted: int = 0
    failed: int = 0
    skipped: bool = False
    alert_ids: List[int] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "threshold_days": self.threshold_days,
            "matched": self.matched,
            "alerted": self.alerted,
            "failed": self.failed,
            "skipped": self.skipped,
            "alert_ids": list(self.alert_ids),
        }


class InactivitySweep:
    """Raises BREAKDOWN_CHECK alerts for equipment that has sat unused past the threshold"""

    def __init__(self, session_factory: async_sessionmaker, publisher=None, lock: Optional[SweepLock] = None,
                 threshold_days: Optional[int] = None):
        self.session_factory = session_factory
        self.publisher = publisher
        self.lock = lock or SweepLock()
        self.threshold_days = threshold_days or settings.BREAKDOWN_CHECK_DAYS

    async def run(self, trigger: SweepTrigger = SweepTrigger.MANUAL, now: Optional[datetime] = None) -> SweepResult:
        now = as_utc(now) if now is not None else utcnow()

        if not await self.lock.acquire():
            if trigger is SweepTrigger.MANUAL:
                raise ConflictError("An inactivity sweep is already running")
            logger.warning("Scheduled inactivity sweep skipped: another sweep is still running")
            return SweepResult(trigger=trigger, started_at=now, finished_at=utcnow(),
                               threshold_days=self.threshold_days, skipped=True)

        try:
            return await self._sweep(trigger, now)
        finally:
            await self.lock.release()

    async def _sweep(self, trigger: SweepTrigger, now: datetime) -> SweepResult:
        result = SweepResult(trigger=trigger, started_at=now, threshold_days=self.threshold_days)
        cutoff = now - timedelta(days=self.threshold_days)
        logger.info(f"Inactivity sweep ({trigger.value}) started, cutoff {cutoff.isoformat()}")

        async with self.session_factory() as session:
            inactive = [
                (equipment.id, equipment.equipment_id, last_used_at)
                for equipment, last_used_at in await self.find_inactive_equipment(session, cutoff)
            ]
            result.matched = len(inactive)
            alert_service = AlertService(session, self.publisher)

            for equipment_pk, external_id, last_used_at in inactive:
                days_inactive = (now - as_utc(last_used_at)).days
                try:
                    # A rollback after a failed check expires everything loaded so far
                    equipment = await session.get(Equipment, equipment_pk, populate_existing=True)
                    alert = await alert_service.raise_alert(
                        alert_type=AlertType.BREAKDOWN_CHECK,
                        severity=Severity.MEDIUM,
                        title="Equipment Breakdown Check",
                        message=(
                            f"{equipment.name} ({equipment.equipment_id}) has not been used for "
                            f"{days_inactive} days. Please confirm whether it has broken down."
                        ),
                        equipment=equipment,
                        audience=Audience.LAB_MANAGERS,
                        notification_type=NotificationType.BREAKDOWN_ALERT,
                        metadata={
                            "days_inactive": days_inactive,
                            "last_used_at": as_utc(last_used_at).isoformat(),
                        },
                    )
                except Exception:
                    result.failed += 1
                    await session.rollback()
                    logger.exception(f"Breakdown check for {external_id} failed")
                    continue
                if alert is not None:
                    result.alerted += 1
                    result.alert_ids.append(alert.id)

        result.finished_at = utcnow()
        logger.info(
            f"Inactivity sweep finished: {result.matched} inactive, "
            f"{result.alerted} alerted, {result.failed} failed"
        )
        return result

    async def find_inactive_equipment(self, session: AsyncSession,
                                      cutoff: datetime) -> List[Tuple[Equipment, datetime]]:
        open_breakdown = (
            select(BreakdownRecord.id)
            .where(and_(
                BreakdownRecord.equipment_id == Equipment.id,
                BreakdownRecord.status.in_(OPEN_BREAKDOWN_STATUSES),
            ))
            .exists()
        )
        conditions = [
            Equipment.is_active == True,
            Equipment.is_deleted == False,
            EquipmentStatus.status.not_in(SWEEP_EXCLUDED_STATUSES),
            EquipmentStatus.last_used_at <= cutoff,
            ~open_breakdown,
        ]
        if settings.SWEEP_SKIP_PENDING_CHECKS:
            pending_check = (
                select(Alert.id)
                .where(and_(
                    Alert.equipment_id == Equipment.id,
                    Alert.alert_type == AlertType.BREAKDOWN_CHECK.value,
                    Alert.is_resolved == False,
                ))
                .exists()
            )
            conditions.append(~pending_check)

        rows = await session.execute(
            select(Equipment, EquipmentStatus.last_used_at)
            .join(EquipmentStatus, EquipmentStatus.equipment_id == Equipment.id)
            .where(and_(*conditions))
            .order_by(EquipmentStatus.last_used_at, Equipment.id)
        )
        return [(row[0], row[1]) for row in rows.all()]
