import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from labwatch.auth.permissions import Actor, EquipmentScope, require_scope
from labwatch.core.database import async_session_maker
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.equipment.equipment_status import EquipmentStatus
from labwatch.models.shared.enums import EquipmentStatusType
from labwatch.services.alerts.alert_service import AlertService
from labwatch.services.directory.directory_service import Audience
from labwatch.services.telemetry.anomaly_rules import CandidateAlert, evaluate_report
from labwatch.services.telemetry.telemetry_store import READING_FIELDS, TelemetryStore
from labwatch.utils.background import BackgroundDispatcher
from labwatch.utils.date_time_serializer import as_utc, utcnow

logger = logging.getLogger(__name__)


def status_to_dict(equipment: Equipment, status: Optional[EquipmentStatus]) -> Dict[str, Any]:
    data = {
        "equipment_id": equipment.equipment_id,
        "name": equipment.name,
        "institute_id": equipment.institute_id,
        "department": equipment.department,
        "lab_id": equipment.lab_id,
        "status": None,
        "health_score": None,
        "temperature": None,
        "vibration": None,
        "energy_consumption": None,
        "last_used_at": None,
        "updated_at": None,
    }
    if status is not None:
        data.update(
            status=EquipmentStatusType(status.status).value,
            health_score=status.health_score,
            temperature=status.temperature,
            vibration=status.vibration,
            energy_consumption=status.energy_consumption,
            last_used_at=as_utc(status.last_used_at),
            updated_at=as_utc(status.updated_at),
        )
    return data


class TelemetryService:
    """
    Device telemetry intake.

    The status upsert and the raw reading are committed before anything
    else happens; anomaly alerts and status pushes run as detached jobs so
    a failing alert pipeline never fails ingestion.
    """

    def __init__(self, db: AsyncSession, publisher=None, dispatcher=None,
                 session_factory: Optional[async_sessionmaker] = None):
        self.db = db
        self.store = TelemetryStore(db)
        self.publisher = publisher
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.session_factory = session_factory or async_session_maker

    async def report_telemetry(self, external_id: str, report: Dict[str, Any]) -> Dict[str, Any]:
        equipment = await self.store.find_equipment_by_external_id(external_id)

        metrics = {key: value for key, value in report.items() if value is not None}
        status = await self.store.upsert_status(equipment.id, metrics)
        await self.store.append_reading(equipment.id, metrics)
        await self.db.commit()

        payload = status_to_dict(equipment, status)
        logger.debug(f"Status updated for {external_id}: {payload['status']}")

        candidates = evaluate_report(equipment.name, metrics)
        if candidates:
            logger.info(f"{len(candidates)} anomaly rule(s) fired for {external_id}")
            self.dispatcher.submit(self._raise_candidates(equipment.id, external_id, candidates), name=f"anomaly alerts for {external_id}")

        if self.publisher is not None:
            self.dispatcher.submit(self._publish_status(external_id, payload), name=f"status push for {external_id}")
        return payload

    async def _raise_candidates(self, equipment_pk: int, external_id: str, candidates: List[CandidateAlert]):
        async with self.session_factory() as session:
            alert_service = AlertService(session, self.publisher)
            for candidate in candidates:
                try:
                    # Reload each time; a failed write rolls back and expires it
                    equipment = await session.get(Equipment, equipment_pk, populate_existing=True)
                    await alert_service.raise_alert(
                        alert_type=candidate.alert_type,
                        severity=candidate.severity,
                        title=candidate.title,
                        message=candidate.message,
                        equipment=equipment,
                        audience=Audience.EQUIPMENT_WATCHERS,
                        metadata=candidate.metadata,
                    )
                except Exception:
                    logger.exception(
                        f"Dispatching {candidate.alert_type.value} alert for {external_id} failed"
                    )

    async def _publish_status(self, external_id: str, payload: Dict[str, Any]):
        await self.publisher.publish_to_equipment(external_id, "equipment:status", payload)
        await self.publisher.publish_to_all("equipment:status:update", payload)

    async def get_realtime_status(self, actor: Actor) -> List[Dict[str, Any]]:
        rows = await self.store.list_status(actor)
        return [status_to_dict(equipment, status) for equipment, status in rows]

    async def get_sensor_data(self, external_id: str, actor: Actor, hours: int = 24) -> Dict[str, Any]:
        equipment = await self.store.find_equipment_by_external_id(external_id)
        require_scope(actor, EquipmentScope.of(equipment))

        since = utcnow() - timedelta(hours=hours)
        readings = await self.store.get_readings(equipment.id, since)
        return {
            "equipment_id": equipment.equipment_id,
            "hours": hours,
            "count": len(readings),
            "readings": [
                {"timestamp": as_utc(reading.timestamp), **{key: getattr(reading, key) for key in READING_FIELDS}}
                for reading in readings
            ],
        }
