from enum import Enum
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from labwatch.models.auth.user import User
from labwatch.models.shared.enums import Role
import logging

logger = logging.getLogger(__name__)


class Audience(str, Enum):
    """Who an alert is routed to"""
    EQUIPMENT_WATCHERS = "EQUIPMENT_WATCHERS"  # policy makers + scoped managers + lab trainers
    LAB_MANAGERS = "LAB_MANAGERS"              # scoped managers only
    POLICY_MAKERS = "POLICY_MAKERS"


class DirectoryService:
    """Resolves which users receive an alert, by role and scope"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_users_by_role_and_scope(
        self,
        role: Role,
        institute_id: Optional[int] = None,
        department: Optional[str] = None,
        lab_id: Optional[int] = None,
    ) -> List[int]:
        conditions = [User.role == role, User.is_active == True, User.is_deleted == False]
        if institute_id is not None:
            conditions.append(User.institute_id == institute_id)
        if department is not None:
            conditions.append(User.department == department)
        if lab_id is not None:
            conditions.append(User.lab_id == lab_id)

        result = await self.db.execute(select(User.id).where(and_(*conditions)))
        return list(result.scalars().all())

    async def resolve_audience(self, audience: Audience, equipment=None) -> List[int]:
        """Unique, sorted recipient ids; system alerts (no equipment) go to policy makers"""
        recipients = set()

        if audience in (Audience.EQUIPMENT_WATCHERS, Audience.POLICY_MAKERS) or equipment is None:
            recipients.update(await self.find_users_by_role_and_scope(Role.POLICY_MAKER))

        if equipment is not None and audience in (Audience.EQUIPMENT_WATCHERS, Audience.LAB_MANAGERS):
            recipients.update(await self.find_users_by_role_and_scope(
                Role.LAB_MANAGER,
                institute_id=equipment.institute_id,
                department=equipment.department,
            ))

        if equipment is not None and audience is Audience.EQUIPMENT_WATCHERS:
            recipients.update(await self.find_users_by_role_and_scope(
                Role.TRAINER,
                institute_id=equipment.institute_id,
                department=equipment.department,
                lab_id=equipment.lab_id,
            ))

        logger.debug(f"Resolved {len(recipients)} recipients for audience {audience.value}")
        return sorted(recipients)
