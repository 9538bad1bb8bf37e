import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, desc
from sqlalchemy.exc import IntegrityError
from labwatch.auth.permissions import (
    Actor, BREAKDOWN_ROLES, POLICY_ROLES, EquipmentScope,
    require_role, require_scope, scope_conditions,
)
from labwatch.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from labwatch.models.breakdown.breakdown_record import BreakdownRecord
from labwatch.models.breakdown.reorder_request import ReorderRequest
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.shared.enums import (
    OPEN_BREAKDOWN_STATUSES, BreakdownStatus, NotificationType, ReorderStatus, Role, Urgency,
)
from labwatch.services.alerts.alert_service import AlertService, alert_to_dict
from labwatch.services.directory.directory_service import Audience, DirectoryService
from labwatch.services.telemetry.telemetry_store import TelemetryStore
from labwatch.utils.date_time_serializer import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_REASON = "Confirmed via automatic check"

# States from which "mark resolved" is accepted
RESOLVABLE_STATUSES = (
    BreakdownStatus.REPORTED,
    BreakdownStatus.REORDER_PENDING,
    BreakdownStatus.REORDER_APPROVED,
    BreakdownStatus.REORDER_REJECTED,
)

REVIEW_OUTCOMES = {
    ReorderStatus.APPROVED: (BreakdownStatus.REORDER_APPROVED, NotificationType.REORDER_APPROVED),
    ReorderStatus.REJECTED: (BreakdownStatus.REORDER_REJECTED, NotificationType.REORDER_REJECTED),
}


def breakdown_to_dict(record: BreakdownRecord, equipment: Equipment,
                      reorders: Optional[List[ReorderRequest]] = None) -> Dict[str, Any]:
    data = {
        "id": record.id,
        "equipment_id": equipment.equipment_id,
        "equipment_name": equipment.name,
        "institute_id": equipment.institute_id,
        "department": equipment.department,
        "status": BreakdownStatus(record.status).value,
        "reported_by": record.reported_by,
        "reason": record.reason,
        "is_auto_detected": record.is_auto_detected,
        "alert_id": record.alert_id,
        "reported_at": as_utc(record.reported_at),
        "resolved_at": as_utc(record.resolved_at),
        "resolved_by": record.resolved_by,
    }
    if reorders is not None:
        data["reorder_requests"] = [reorder_to_dict(r) for r in reorders]
    return data


def reorder_to_dict(request: ReorderRequest, equipment: Optional[Equipment] = None) -> Dict[str, Any]:
    data = {
        "id": request.id,
        "breakdown_id": request.breakdown_id,
        "requested_by": request.requested_by,
        "equipment_name": request.equipment_name,
        "quantity": request.quantity,
        "urgency": Urgency(request.urgency).value,
        "reason": request.reason,
        "estimated_cost": float(request.estimated_cost) if request.estimated_cost is not None else None,
        "status": ReorderStatus(request.status).value,
        "requested_at": as_utc(request.requested_at),
        "reviewed_by": request.reviewed_by,
        "reviewed_at": as_utc(request.reviewed_at),
        "review_comments": request.review_comments,
    }
    if equipment is not None:
        data["equipment_id"] = equipment.equipment_id
    return data


class BreakdownService:
    """
    Breakdown record state machine and its reorder sub-workflow.

    Every transition is a conditional UPDATE on the current status, so two
    concurrent callers cannot both move a record out of the same state.
    """

    def __init__(self, db: AsyncSession, publisher=None):
        self.db = db
        self.publisher = publisher
        self.alerts = AlertService(db, publisher)
        self.directory = DirectoryService(db)
        self.store = TelemetryStore(db)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def respond_to_alert(self, alert_id: int, is_breakdown, actor: Actor,
                               reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Answer a breakdown check. The alert is resolved either way; a
        confirmed breakdown opens an auto-detected record unless one is
        already open for the equipment, in which case that record is
        returned with created=False.
        """
        if not isinstance(is_breakdown, bool):
            raise InvalidInputError("isBreakdown must be a boolean")
        require_role(actor, BREAKDOWN_ROLES, "respond to breakdown checks")

        alert, equipment = await self.alerts.get_alert_with_equipment(alert_id)
        if equipment is None:
            raise InvalidInputError("System alerts are not linked to equipment")
        require_scope(actor, EquipmentScope.of(equipment))

        notes = "Breakdown confirmed" if is_breakdown else "No breakdown, equipment is fine"
        alert_changed = await self.alerts.mark_resolved(alert, actor, notes)

        record = None
        created = False
        if is_breakdown:
            record = await self._open_record_for(equipment.id)
            if record is None:
                record = self._new_record(equipment, actor, reason or DEFAULT_CONFIRMATION_REASON,
                                          auto_detected=True, alert_id=alert.id)
                created = True
            else:
                logger.info(f"{equipment.equipment_id} already has open breakdown {record.id}, reusing it")

        await self._commit_open_record()

        alert, equipment = await self.alerts.refresh(alert_id)
        if alert_changed:
            await self.alerts.publish_resolution(alert, equipment)
        if created:
            record = await self._reload_record(record.id)
            logger.info(f"Breakdown {record.id} opened for {equipment.equipment_id} from alert {alert_id}")
            await self._publish(equipment, "breakdown:reported", breakdown_to_dict(record, equipment))

        return {
            "alert": alert_to_dict(alert, equipment),
            "breakdown": breakdown_to_dict(record, equipment) if record is not None else None,
            "created": created,
        }

    async def report_breakdown(self, equipment_external_id: str, actor: Actor,
                               reason: Optional[str] = None) -> Dict[str, Any]:
        require_role(actor, BREAKDOWN_ROLES, "report breakdowns")
        equipment = await self.store.find_equipment_by_external_id(equipment_external_id)
        require_scope(actor, EquipmentScope.of(equipment))

        if await self._open_record_for(equipment.id) is not None:
            raise ConflictError(f"{equipment.name} is already in the breakdown list")

        record = self._new_record(equipment, actor, reason, auto_detected=False)
        await self._commit_open_record()

        record = await self._reload_record(record.id)
        logger.info(f"Breakdown {record.id} reported for {equipment.equipment_id} by user {actor.user_id}")
        payload = breakdown_to_dict(record, equipment)
        await self._publish(equipment, "breakdown:reported", payload)
        return payload

    # ------------------------------------------------------------------
    # Reorder sub-workflow
    # ------------------------------------------------------------------

    async def submit_reorder(
        self,
        breakdown_id: int,
        actor: Actor,
        reason: Optional[str],
        quantity: int = 1,
        urgency: Urgency = Urgency.MEDIUM,
        estimated_cost: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        if not reason or not reason.strip():
            raise InvalidInputError("Reason is required")
        if quantity is None or quantity < 1:
            raise InvalidInputError("Quantity must be at least 1")
        try:
            urgency = Urgency(urgency)
        except ValueError:
            raise InvalidInputError(f"Invalid urgency: {urgency}")
        require_role(actor, BREAKDOWN_ROLES, "request reorders")

        record, equipment = await self._get_record(breakdown_id)
        require_scope(actor, EquipmentScope.of(equipment))

        current_status = BreakdownStatus(record.status)
        moved = await self._transition(record.id, (BreakdownStatus.REPORTED,), BreakdownStatus.REORDER_PENDING, actor)
        if not moved:
            await self.db.rollback()
            raise ConflictError(
                f"A reorder can only be requested for a REPORTED breakdown "
                f"(current status: {current_status.value})"
            )

        now = utcnow()
        request = ReorderRequest(
            breakdown_id=record.id,
            requested_by=actor.user_id,
            equipment_name=equipment.name,
            quantity=quantity,
            urgency=urgency,
            reason=reason.strip(),
            estimated_cost=estimated_cost,
            status=ReorderStatus.PENDING,
            requested_at=now,
            created_at=now,
            created_by=actor.user_id,
        )
        self.db.add(request)

        policy_makers = await self.directory.resolve_audience(Audience.POLICY_MAKERS)
        notifications = self.alerts.stage_notifications(
            policy_makers,
            NotificationType.REORDER_REQUEST,
            "New Reorder Request",
            f"Reorder requested for {equipment.name} ({equipment.equipment_id}): "
            f"{quantity} unit(s), urgency {urgency.value}",
        )
        await self.db.commit()

        request = await self._get_request(request.id)
        logger.info(f"Reorder {request.id} submitted for breakdown {record.id} by user {actor.user_id}")
        await self.alerts.publish_notifications(notifications)
        payload = reorder_to_dict(request, equipment)
        await self._publish(equipment, "reorder:requested", payload)
        return payload

    async def review_reorder(self, request_id: int, action, actor: Actor,
                             comments: Optional[str] = None) -> Dict[str, Any]:
        try:
            outcome = ReorderStatus(action)
        except ValueError:
            outcome = None
        if outcome not in REVIEW_OUTCOMES:
            raise InvalidInputError("Action must be APPROVED or REJECTED")
        require_role(actor, POLICY_ROLES, "review reorder requests")

        request = await self._get_request(request_id)
        now = utcnow()
        result = await self.db.execute(
            update(ReorderRequest)
            .where(and_(ReorderRequest.id == request.id, ReorderRequest.status == ReorderStatus.PENDING))
            .values(
                status=outcome,
                reviewed_by=actor.user_id,
                reviewed_at=now,
                review_comments=comments,
                updated_at=now,
                updated_by=actor.user_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Only pending requests can be reviewed")

        parent_status, notification_type = REVIEW_OUTCOMES[outcome]
        moved = await self._transition(
            request.breakdown_id, (BreakdownStatus.REORDER_PENDING,), parent_status, actor
        )
        if not moved:
            await self.db.rollback()
            raise ConflictError("Breakdown is no longer awaiting a reorder decision")

        record, equipment = await self._get_record(request.breakdown_id)
        verdict = "approved" if outcome is ReorderStatus.APPROVED else "rejected"
        message = f"Your reorder request for {request.equipment_name} has been {verdict}"
        if comments:
            message = f"{message}: {comments}"
        notifications = self.alerts.stage_notifications(
            [request.requested_by], notification_type, f"Reorder Request {verdict.capitalize()}", message,
        )
        await self.db.commit()

        request = await self._get_request(request_id)
        logger.info(f"Reorder {request.id} {verdict} by user {actor.user_id}")
        await self.alerts.publish_notifications(notifications)
        payload = reorder_to_dict(request, equipment)
        await self._publish(equipment, "reorder:reviewed", payload)
        return payload

    async def resolve_breakdown(self, breakdown_id: int, actor: Actor) -> Dict[str, Any]:
        """Close a breakdown; still-pending reorder requests are cancelled"""
        require_role(actor, BREAKDOWN_ROLES, "resolve breakdowns")
        record, equipment = await self._get_record(breakdown_id)
        require_scope(actor, EquipmentScope.of(equipment))

        now = utcnow()
        result = await self.db.execute(
            update(BreakdownRecord)
            .where(and_(BreakdownRecord.id == record.id, BreakdownRecord.status.in_(RESOLVABLE_STATUSES)))
            .values(
                status=BreakdownStatus.RESOLVED,
                resolved_at=now,
                resolved_by=actor.user_id,
                updated_at=now,
                updated_by=actor.user_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Breakdown is already resolved")

        cancelled = await self.db.execute(
            update(ReorderRequest)
            .where(and_(ReorderRequest.breakdown_id == record.id, ReorderRequest.status == ReorderStatus.PENDING))
            .values(
                status=ReorderStatus.CANCELLED,
                review_comments="Cancelled: breakdown resolved",
                updated_at=now,
                updated_by=actor.user_id,
            )
            .execution_options(synchronize_session=False)
        )

        notifications = []
        if record.reported_by != actor.user_id:
            notifications = self.alerts.stage_notifications(
                [record.reported_by],
                NotificationType.BREAKDOWN_RESOLVED,
                "Breakdown Resolved",
                f"The breakdown you reported for {equipment.name} has been marked resolved",
            )
        await self.db.commit()

        if cancelled.rowcount:
            logger.info(f"Cancelled {cancelled.rowcount} pending reorder(s) of breakdown {record.id}")
        record = await self._reload_record(record.id)
        logger.info(f"Breakdown {record.id} resolved by user {actor.user_id}")
        await self.alerts.publish_notifications(notifications)
        payload = breakdown_to_dict(record, equipment)
        await self._publish(equipment, "breakdown:resolved", payload)
        return payload

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_open_breakdowns(self, actor: Actor, include_closed: bool = False) -> List[Dict[str, Any]]:
        conditions = [BreakdownRecord.is_deleted == False]
        conditions.extend(scope_conditions(actor, Equipment))
        if not include_closed:
            conditions.append(BreakdownRecord.status.in_(OPEN_BREAKDOWN_STATUSES))

        result = await self.db.execute(
            select(BreakdownRecord, Equipment)
            .join(Equipment, Equipment.id == BreakdownRecord.equipment_id)
            .where(and_(*conditions))
            .order_by(desc(BreakdownRecord.reported_at), desc(BreakdownRecord.id))
        )
        rows = result.all()

        reorders: Dict[int, List[ReorderRequest]] = {record.id: [] for record, _ in rows}
        if reorders:
            reorder_result = await self.db.execute(
                select(ReorderRequest)
                .where(ReorderRequest.breakdown_id.in_(list(reorders)))
                .order_by(ReorderRequest.requested_at, ReorderRequest.id)
            )
            for request in reorder_result.scalars().all():
                reorders[request.breakdown_id].append(request)

        return [breakdown_to_dict(record, equipment, reorders[record.id]) for record, equipment in rows]

    async def list_reorder_requests(self, actor: Actor,
                                    status: Optional[ReorderStatus] = None) -> List[Dict[str, Any]]:
        conditions = [ReorderRequest.is_deleted == False]
        conditions.extend(scope_conditions(actor, Equipment))
        if status is not None:
            conditions.append(ReorderRequest.status == ReorderStatus(status))

        result = await self.db.execute(
            select(ReorderRequest, Equipment)
            .join(BreakdownRecord, BreakdownRecord.id == ReorderRequest.breakdown_id)
            .join(Equipment, Equipment.id == BreakdownRecord.equipment_id)
            .where(and_(*conditions))
            .order_by(desc(ReorderRequest.requested_at), desc(ReorderRequest.id))
        )
        return [reorder_to_dict(request, equipment) for request, equipment in result.all()]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_record(self, equipment: Equipment, actor: Actor, reason: Optional[str],
                    auto_detected: bool, alert_id: Optional[int] = None) -> BreakdownRecord:
        now = utcnow()
        record = BreakdownRecord(
            equipment_id=equipment.id,
            status=BreakdownStatus.REPORTED,
            reported_by=actor.user_id,
            reason=reason,
            is_auto_detected=auto_detected,
            alert_id=alert_id,
            reported_at=now,
            created_at=now,
            created_by=actor.user_id,
        )
        self.db.add(record)
        return record

    async def _commit_open_record(self):
        """Commit; the partial unique index turns a lost race into a Conflict"""
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Equipment is already in the breakdown list")

    async def _open_record_for(self, equipment_pk: int) -> Optional[BreakdownRecord]:
        result = await self.db.execute(
            select(BreakdownRecord).where(and_(
                BreakdownRecord.equipment_id == equipment_pk,
                BreakdownRecord.status.in_(OPEN_BREAKDOWN_STATUSES),
            ))
        )
        return result.scalars().first()

    async def _transition(self, breakdown_id: int, allowed: Tuple[BreakdownStatus, ...],
                          target: BreakdownStatus, actor: Actor) -> bool:
        now = utcnow()
        result = await self.db.execute(
            update(BreakdownRecord)
            .where(and_(BreakdownRecord.id == breakdown_id, BreakdownRecord.status.in_(allowed)))
            .values(status=target, updated_at=now, updated_by=actor.user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _get_record(self, breakdown_id: int) -> Tuple[BreakdownRecord, Equipment]:
        result = await self.db.execute(
            select(BreakdownRecord, Equipment)
            .join(Equipment, Equipment.id == BreakdownRecord.equipment_id)
            .where(and_(BreakdownRecord.id == breakdown_id, BreakdownRecord.is_deleted == False))
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if not row:
            raise NotFoundError(f"Breakdown {breakdown_id} not found")
        return row[0], row[1]

    async def _reload_record(self, breakdown_id: int) -> BreakdownRecord:
        record, _ = await self._get_record(breakdown_id)
        return record

    async def _get_request(self, request_id: int) -> ReorderRequest:
        result = await self.db.execute(
            select(ReorderRequest)
            .where(and_(ReorderRequest.id == request_id, ReorderRequest.is_deleted == False))
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise NotFoundError(f"Reorder request {request_id} not found")
        return request

    async def _publish(self, equipment: Equipment, event: str, payload: Dict[str, Any]):
        if self.publisher is None:
            return
        try:
            await self.publisher.publish_to_equipment(equipment.equipment_id, event, payload)
            await self.publisher.publish_to_role(Role.POLICY_MAKER, event, payload)
        except Exception:
            logger.exception(f"Publishing {event} for {equipment.equipment_id} failed")
