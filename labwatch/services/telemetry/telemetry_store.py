from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from labwatch.auth.permissions import Actor, scope_conditions
from labwatch.core.exceptions import NotFoundError
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.equipment.equipment_status import EquipmentStatus
from labwatch.models.equipment.sensor_reading import SensorReading
from labwatch.utils.date_time_serializer import utcnow

STATUS_FIELDS = ("status", "health_score", "temperature", "vibration", "energy_consumption")
READING_FIELDS = ("temperature", "vibration", "energy_consumption", "pressure", "humidity", "rpm", "voltage", "current")

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class TelemetryStore:
    """Storage primitives for equipment status and raw readings"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_equipment_by_external_id(self, external_id: str) -> Equipment:
        result = await self.db.execute(
            select(Equipment).where(Equipment.equipment_id == external_id)
        )
        equipment = result.scalar_one_or_none()
        if not equipment or not equipment.is_active or equipment.is_deleted:
            raise NotFoundError(f"Equipment {external_id} not found")
        return equipment

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"Atomic status upsert is not supported on {dialect}")

    async def upsert_status(self, equipment_id: int, patch: Dict[str, Any],
                            used_at: Optional[datetime] = None) -> EquipmentStatus:
        """
        Create or merge the status row in one INSERT .. ON CONFLICT statement.

        Only keys present in ``patch`` are overwritten; last_used_at is always
        refreshed. Concurrent reports for the same equipment serialize on the
        unique equipment_id key, so no update is lost.
        """
        now = used_at or utcnow()
        changes = {key: value for key, value in patch.items() if key in STATUS_FIELDS}
        changes["last_used_at"] = now
        changes["updated_at"] = now

        insert = self._insert()
        stmt = insert(EquipmentStatus).values(equipment_id=equipment_id, created_at=now, **changes)
        stmt = stmt.on_conflict_do_update(
            index_elements=[EquipmentStatus.equipment_id],
            set_=changes,
        ).returning(EquipmentStatus)

        result = await self.db.execute(stmt, execution_options={"populate_existing": True})
        return result.scalars().one()

    async def append_reading(self, equipment_id: int, metrics: Dict[str, Any],
                             timestamp: Optional[datetime] = None) -> SensorReading:
        reading = SensorReading(
            equipment_id=equipment_id,
            timestamp=timestamp or utcnow(),
            **{key: metrics.get(key) for key in READING_FIELDS},
        )
        self.db.add(reading)
        await self.db.flush()
        return reading

    async def get_readings(self, equipment_id: int, since: datetime) -> List[SensorReading]:
        result = await self.db.execute(
            select(SensorReading)
            .where(and_(
                SensorReading.equipment_id == equipment_id,
                SensorReading.timestamp >= since,
            ))
            .order_by(SensorReading.timestamp.asc(), SensorReading.id.asc())
        )
        return list(result.scalars().all())

    async def get_status(self, equipment_id: int) -> Optional[EquipmentStatus]:
        result = await self.db.execute(
            select(EquipmentStatus).where(EquipmentStatus.equipment_id == equipment_id)
        )
        return result.scalar_one_or_none()

    async def list_status(self, actor: Actor) -> List[Tuple[Equipment, Optional[EquipmentStatus]]]:
        """Active equipment visible to ``actor`` with its latest status, if any"""
        conditions = [Equipment.is_active == True, Equipment.is_deleted == False]
        conditions.extend(scope_conditions(actor, Equipment))

        result = await self.db.execute(
            select(Equipment, EquipmentStatus)
            .outerjoin(EquipmentStatus, EquipmentStatus.equipment_id == Equipment.id)
            .where(and_(*conditions))
            .order_by(Equipment.equipment_id)
        )
        return [(row[0], row[1]) for row in result.all()]
